"""
Credential providers
====================

Read the Claude Code OAuth token.  Claude Code keeps it in
``~/.claude/.credentials.json`` (and, on macOS, in the login keychain under
the ``Claude Code-credentials`` service), wrapped in a ``claudeAiOauth``
object with ``expiresAt`` in epoch milliseconds.
"""
from __future__ import annotations

import json
import logging
import subprocess
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol, Sequence

from .errors import NoCredentialsError
from .models import Credentials, parse_timestamp

log = logging.getLogger(__name__)

CLAUDE_CREDENTIALS = Path.home() / '.claude' / '.credentials.json'
KEYCHAIN_SERVICE = 'Claude Code-credentials'
NEVER = datetime.max.replace(tzinfo=timezone.utc)


class CredentialProvider(Protocol):
    def get_token(self) -> Credentials:
        """Return the current credentials or raise :class:`NoCredentialsError`."""
        ...


def parse_credentials(raw: str) -> Credentials:
    """Parse the Claude Code credentials JSON (wrapped or bare)."""
    try:
        data: Any = json.loads(raw)
    except json.JSONDecodeError as e:
        raise NoCredentialsError('Claude Code credentials are not valid JSON.') from e
    if not isinstance(data, dict):
        raise NoCredentialsError()

    oauth = data.get('claudeAiOauth', data)
    token = oauth.get('accessToken') if isinstance(oauth, dict) else None
    if not token:
        raise NoCredentialsError()

    expires = oauth.get('expiresAt')
    if isinstance(expires, (int, float)) and not isinstance(expires, bool):
        expires_at = datetime.fromtimestamp(expires / 1000, tz=timezone.utc)  # ms to seconds
    elif isinstance(expires, str) and expires:
        try:
            expires_at = parse_timestamp(expires)
        except ValueError as e:
            raise NoCredentialsError(f'Unreadable token expiry {expires!r}.') from e
    else:
        expires_at = NEVER

    return Credentials(
        access_token=token,
        expires_at=expires_at,
        refresh_token=oauth.get('refreshToken') or '',
        subscription_type=oauth.get('subscriptionType') or 'pro',
    )


class FileCredentialProvider:
    def __init__(self, path: Path = CLAUDE_CREDENTIALS) -> None:
        self.path = path

    def get_token(self) -> Credentials:
        try:
            raw = self.path.read_text(encoding='utf-8')
        except FileNotFoundError as e:
            raise NoCredentialsError() from e
        except OSError as e:
            log.warning('Cannot read %s: %s', self.path, e)
            raise NoCredentialsError() from e
        return parse_credentials(raw)


class KeychainCredentialProvider:
    """Read the token through the macOS ``security`` CLI (no keychain prompt)."""

    def __init__(self, service: str = KEYCHAIN_SERVICE) -> None:
        self.service = service

    def get_token(self) -> Credentials:
        try:
            proc = subprocess.run(
                ['/usr/bin/security', 'find-generic-password', '-s', self.service, '-w'],
                capture_output=True, text=True, timeout=10, check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise NoCredentialsError() from e

        if proc.returncode != 0 or not proc.stdout.strip():
            raise NoCredentialsError()
        return parse_credentials(proc.stdout.strip())


class ChainCredentialProvider:
    """Try each provider in order; the first that yields credentials wins."""

    def __init__(self, providers: Sequence[CredentialProvider]) -> None:
        self.providers = list(providers)

    def get_token(self) -> Credentials:
        last: NoCredentialsError = NoCredentialsError()
        for provider in self.providers:
            try:
                return provider.get_token()
            except NoCredentialsError as e:
                last = e
        raise last


class StaticCredentialProvider:
    def __init__(self, credentials: Credentials | None = None) -> None:
        self.credentials = credentials

    def get_token(self) -> Credentials:
        if self.credentials is None:
            raise NoCredentialsError()
        return self.credentials


def default_provider() -> CredentialProvider:
    if sys.platform == 'darwin':
        return ChainCredentialProvider([KeychainCredentialProvider(), FileCredentialProvider()])
    return FileCredentialProvider()
