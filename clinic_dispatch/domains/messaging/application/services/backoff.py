"""Exponential backoff for ledger retries."""

from datetime import UTC, datetime, timedelta

DEFAULT_BACKOFF_BASE_SECONDS = 90


def backoff_delay(attempt: int, base_seconds: int = DEFAULT_BACKOFF_BASE_SECONDS) -> timedelta:
    """base × 2^(attempt-1); attempt 1 waits `base`."""
    base = base_seconds if base_seconds > 0 else DEFAULT_BACKOFF_BASE_SECONDS
    multiplier = max(0, attempt - 1)
    return timedelta(seconds=base * (2**multiplier))


def compute_next_retry_at(
    attempt: int,
    base_seconds: int = DEFAULT_BACKOFF_BASE_SECONDS,
    now: datetime | None = None,
) -> datetime:
    return (now or datetime.now(UTC)) + backoff_delay(attempt, base_seconds)
