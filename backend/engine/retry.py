"""Retry policy for failed transcode attempts."""

from dataclasses import dataclass

from config import settings


@dataclass(frozen=True)
class RetryPolicy:
    """
    Fixed attempt budget with exponential backoff between attempts.

    ``max_attempts`` counts every time a job starts processing, so the
    default of 3 means one first try and two retries.
    """

    max_attempts: int = 3
    backoff_base_seconds: float = 2.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, settings.max_attempts),
            backoff_base_seconds=max(0.0, settings.retry_backoff_seconds),
        )

    def can_retry(self, attempts: int) -> bool:
        return attempts < self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt`` (1-based)."""
        return self.backoff_base_seconds * (2 ** (max(1, attempt) - 1))
