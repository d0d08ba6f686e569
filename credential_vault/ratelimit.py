"""
Fixed-window attempt counter for sensitive token operations.

State lives in process memory only: it is a brute-force slow-down, not a
durable defense, and it resets on restart.

A denied attempt is not counted; the window only restarts once it has
elapsed.
"""
import time
import hashlib
import logging
from dataclasses import dataclass
from typing import Callable

from .exceptions import RateLimitExceeded

logger = logging.getLogger("credential_vault.ratelimit")

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_WINDOW_MS = 300_000  # 5 minutes


def hash_identifier(identifier: str) -> str:
    """Raw caller identities (IPs, user ids) are never stored."""
    return hashlib.sha256(identifier.encode("utf-8")).hexdigest()[:16]


@dataclass
class RateLimitRecord:
    count: int
    reset_at: float  # seconds, on the limiter clock


class RateLimiter:
    """Per-identifier fixed-window limiter.

    Args:
        clock: Monotonic clock returning seconds.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._attempts: dict[str, RateLimitRecord] = {}

    def check_limit(
        self,
        identifier: str,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        window_ms: int = DEFAULT_WINDOW_MS,
    ) -> bool:
        """Record an attempt and return whether it is allowed."""
        now = self._clock()
        key = hash_identifier(identifier)
        record = self._attempts.get(key)

        if record is None or now >= record.reset_at:
            self._attempts[key] = RateLimitRecord(
                count=1, reset_at=now + window_ms / 1000.0
            )
            return True

        if record.count >= max_attempts:
            logger.info("Rate limit reached for identifier %s", key)
            return False

        record.count += 1
        return True

    def enforce(
        self,
        identifier: str,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        window_ms: int = DEFAULT_WINDOW_MS,
    ) -> None:
        """Same as :meth:`check_limit`, raising instead of returning False.

        Raises:
            RateLimitExceeded: With the seconds left in the current window.
        """
        if not self.check_limit(identifier, max_attempts, window_ms):
            raise RateLimitExceeded(retry_after=self.retry_after(identifier))

    def retry_after(self, identifier: str) -> float:
        record = self._attempts.get(hash_identifier(identifier))
        if record is None:
            return 0.0
        return max(0.0, record.reset_at - self._clock())

    def reset(self, identifier: str) -> None:
        """Forget an identifier, e.g. after a successful sensitive operation."""
        self._attempts.pop(hash_identifier(identifier), None)

    def purge_expired(self) -> int:
        """Drop records whose window has elapsed. Returns the number dropped."""
        now = self._clock()
        expired = [k for k, rec in self._attempts.items() if now >= rec.reset_at]
        for key in expired:
            del self._attempts[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._attempts)
