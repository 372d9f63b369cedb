"""
Usage API client
================

Fetches the current usage from the Anthropic OAuth usage endpoint.

The blocking ``requests`` call runs in a worker thread so the event loop
stays responsive.  Retry delays are awaited, which suspends only the
calling fetch, never the scheduler.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import requests

from .backoff import BackoffPolicy
from .config import ApiConfig
from .errors import (
    DecodingError,
    MaxRetriesExceededError,
    MeterError,
    NetworkError,
    RateLimitedError,
    ServerError,
    UnauthorizedError,
    UnexpectedStatusError,
)
from .models import UsageSnapshot

log = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def api_headers(token: str, config: ApiConfig) -> dict[str, str]:
    """Return auth headers for the Anthropic OAuth API."""
    return {
        'Authorization': f'Bearer {token}',
        'Accept': 'application/json',
        'Content-Type': 'application/json',
        'User-Agent': config.user_agent,
        'anthropic-beta': config.beta,
    }


def _retry_after(resp: requests.Response) -> float | None:
    try:
        return float(resp.headers.get('Retry-After', ''))
    except ValueError:
        return None


def classify_response(resp: requests.Response) -> UsageSnapshot:
    """Turn an HTTP response into a snapshot or raise the matching error."""
    code = resp.status_code
    if code == 200:
        try:
            payload = resp.json()
        except ValueError as e:
            raise DecodingError('body is not valid JSON') from e
        return UsageSnapshot.from_api(payload, fetched_at=datetime.now(timezone.utc))
    if code == 401:
        raise UnauthorizedError()
    if code == 429:
        raise RateLimitedError(_retry_after(resp))
    if code >= 500:
        raise ServerError(code)
    raise UnexpectedStatusError(code)


class UsageClient:
    """Retrying client for ``GET <base>/api/oauth/usage``."""

    def __init__(
        self,
        config: ApiConfig | None = None,
        backoff: BackoffPolicy | None = None,
        session: requests.Session | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config or ApiConfig()
        self.backoff = backoff or BackoffPolicy()
        self.session = session or requests.Session()
        self._sleep = sleep

    def _get(self, token: str) -> UsageSnapshot:
        try:
            resp = self.session.get(
                self.config.usage_url,
                headers=api_headers(token, self.config),
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as e:
            raise NetworkError(e) from e
        return classify_response(resp)

    async def fetch(self, token: str) -> UsageSnapshot:
        """Perform a single attempt without retry.

        Raises
        ------
        MeterError
            Classified failure of this attempt. A request exceeding the
            resource timeout is reported as :class:`NetworkError`.
        """
        try:
            return await asyncio.wait_for(asyncio.to_thread(self._get, token), timeout=self.config.resource_timeout)
        except asyncio.TimeoutError as e:
            raise NetworkError(e) from e

    async def fetch_with_retry(self, token: str) -> UsageSnapshot:
        """Fetch usage, retrying transient failures with backoff.

        Rate limiting, server errors and transport failures are retried up to
        ``max_retries`` attempts in total.  Authentication failures and any other
        status fail immediately.

        Raises
        ------
        MaxRetriesExceededError
            When every attempt failed with a retryable error; ``last_error``
            holds the final underlying failure.
        MeterError
            Non-retryable failures, raised on the attempt that produced them.
        """
        attempts = self.backoff.config.max_retries
        last_error: MeterError | None = None

        for attempt in range(attempts):
            try:
                return await self.fetch(token)
            except MeterError as e:
                delay = self.backoff.delay_for(attempt, e)
                if delay is None:
                    log.warning('Usage fetch failed, not retrying: %s', e)
                    raise
                last_error = e

            if attempt < attempts - 1:
                log.info('Usage fetch failed (%s), retry %d/%d in %.0fs', last_error, attempt + 1, attempts - 1, delay)
                await self._sleep(delay)

        log.warning('Usage fetch gave up after %d attempts: %s', attempts, last_error)
        raise MaxRetriesExceededError(last_error, attempts)

    async def validate_token(self, token: str) -> bool:
        """Return True if a single unretried fetch with *token* succeeds."""
        try:
            await self.fetch(token)
        except MeterError:
            return False
        return True

    def close(self) -> None:
        self.session.close()
