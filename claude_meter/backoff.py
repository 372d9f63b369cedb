"""Retry delay policy for the usage fetch pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field

from .config import RetryConfig
from .errors import MeterError, NetworkError, RateLimitedError, ServerError


@dataclass(frozen=True)
class BackoffPolicy:
    config: RetryConfig = field(default_factory=RetryConfig)

    def delay(self, attempt: int) -> float:
        """Exponential delay for a 0-indexed *attempt*, capped at ``max_delay``."""
        cfg = self.config
        return min(cfg.initial_delay * cfg.multiplier ** max(attempt, 0), cfg.max_delay)

    def delay_for(self, attempt: int, error: MeterError) -> float | None:
        """Return the wait before retrying after *error*, or None if it must not be retried."""
        if isinstance(error, ServerError):
            # 5xx gets at least the server-error floor
            return max(self.delay(attempt), self.config.server_error_min_delay)
        if isinstance(error, (RateLimitedError, NetworkError)):
            return self.delay(attempt)
        return None
