"""
Errors
======

Exception hierarchy for fetching and interpreting usage data.

Every error carries a :class:`ErrorCategory`.  Only the ``TRANSIENT``
category is retried by the fetch pipeline, and only transient errors let
the monitor fall back to cached data.  A superseded wake recovery is
plain :class:`asyncio.CancelledError` and never reaches the user.
"""
from __future__ import annotations

import enum

LOGIN_HINT = "Run 'claude login' in a terminal to authenticate."


class ErrorCategory(enum.Enum):
    AUTHENTICATION = 'authentication'
    TRANSIENT = 'transient'
    PROTOCOL = 'protocol'


class MeterError(Exception):
    """Base class for all Claude Meter errors."""

    category = ErrorCategory.PROTOCOL
    recovery_hint: str | None = None

    def __init__(self, message: str = '') -> None:
        super().__init__(message or self.default_message())

    def default_message(self) -> str:
        return 'Unexpected error.'

    @property
    def retryable(self) -> bool:
        return self.category is ErrorCategory.TRANSIENT

    @property
    def user_message(self) -> str:
        return str(self)


# ── Authentication ────────────────────────────────────────────

class AuthenticationError(MeterError):
    category = ErrorCategory.AUTHENTICATION
    recovery_hint = LOGIN_HINT


class NoCredentialsError(AuthenticationError):
    def default_message(self) -> str:
        return 'No Claude Code credentials found. Please log in to Claude Code first.'


class CredentialsExpiredError(AuthenticationError):
    def default_message(self) -> str:
        return 'Your credentials have expired. Please re-authenticate.'


class UnauthorizedError(AuthenticationError):
    status_code = 401

    def default_message(self) -> str:
        return 'Invalid credentials. Please re-authenticate with Claude Code.'


# ── Transient ─────────────────────────────────────────────────

class TransientError(MeterError):
    category = ErrorCategory.TRANSIENT


class RateLimitedError(TransientError):
    status_code = 429
    recovery_hint = 'The API is rate limited. Wait a moment before trying again.'

    def __init__(self, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        super().__init__()

    def default_message(self) -> str:
        if self.retry_after is not None:
            return f'Rate limited. Please wait {self.retry_after:.0f} seconds.'
        return 'Rate limited. Please wait and try again.'


class ServerError(TransientError):
    recovery_hint = 'The server may be experiencing issues. Try again later.'

    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(f'Server error: {status_code}')


class NetworkError(TransientError):
    """Transport failure, including a timed-out attempt."""

    recovery_hint = 'Check your internet connection and try again.'

    def __init__(self, cause: BaseException | None = None) -> None:
        self.cause = cause
        detail = f': {cause}' if cause is not None and str(cause) else ''
        super().__init__(f'Network error{detail}')


class MaxRetriesExceededError(TransientError):
    recovery_hint = 'Unable to reach the server. Please try again later.'

    def __init__(self, last_error: MeterError | None = None, attempts: int = 0) -> None:
        self.last_error = last_error
        self.attempts = attempts
        if last_error is not None:
            super().__init__(f'Maximum retries exceeded. Last error: {last_error}')
        else:
            super().__init__('Maximum retries exceeded')


# ── Protocol ──────────────────────────────────────────────────

class DecodingError(MeterError):
    def __init__(self, detail: str = '') -> None:
        self.detail = detail
        super().__init__(f'Failed to process server response: {detail}' if detail else 'Failed to decode response')


class UnexpectedStatusError(MeterError):
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(f'Unexpected HTTP status: {status_code}')
