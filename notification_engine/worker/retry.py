from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta

import httpx

DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_SECONDS = 60
_MAX_ERROR_LENGTH = 500
_SENSITIVE_PATTERNS = (
    re.compile(r"bearer\s+[a-z0-9\-_\.]+", re.IGNORECASE),
    re.compile(r"(api[_-]?key|token|secret|password)\s*[:=]\s*[^\s,;]+", re.IGNORECASE),
)


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    retry_count: int
    delay_seconds: int

    def next_attempt_at(self, now: datetime) -> datetime | None:
        if not self.retry:
            return None
        return now + timedelta(seconds=self.delay_seconds)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_seconds: int = DEFAULT_BACKOFF_SECONDS

    def should_retry(self, retry_count: int) -> RetryDecision:
        """Decide what happens after a failed cycle.

        ``retry_count`` is the count before this failure. Every failed cycle
        increments it; the cycle that reaches ``max_retries`` gives up.
        """
        next_count = max(0, retry_count) + 1
        if next_count >= self.max_retries:
            return RetryDecision(retry=False, retry_count=next_count, delay_seconds=0)
        return RetryDecision(
            retry=True,
            retry_count=next_count,
            delay_seconds=backoff_seconds(next_count, step=self.backoff_seconds),
        )


def backoff_seconds(retry_count: int, *, step: int = DEFAULT_BACKOFF_SECONDS) -> int:
    return max(1, retry_count) * max(1, step)


def sanitize_error(exc: BaseException, *, default_message: str) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        message = f"{default_message}: gateway responded with status {exc.response.status_code}"
    else:
        message = str(exc).strip()
    if not message:
        message = default_message

    sanitized = message
    for pattern in _SENSITIVE_PATTERNS:
        sanitized = pattern.sub("[redacted]", sanitized)
    return sanitized[:_MAX_ERROR_LENGTH]
