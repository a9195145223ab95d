"""Per-caller sliding-window limiter for upload-intent minting."""

import time
from collections import defaultdict


class InMemoryRateLimiter:
    """Sliding-window rate limiter keyed by caller id.

    State lives in the process; with several workers each one enforces
    the limit on its own share of requests.
    """

    def __init__(self, max_requests: int, window_seconds: int = 60) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._requests: dict[str, list[float]] = defaultdict(list)

    def _prune(self, key: str, now: float) -> list[float]:
        cutoff = now - self.window_seconds
        timestamps = [t for t in self._requests[key] if t > cutoff]
        self._requests[key] = timestamps
        return timestamps

    def is_allowed(self, key: str) -> bool:
        """Record a request for ``key`` and report whether it is under the limit."""
        now = time.monotonic()
        timestamps = self._prune(key, now)
        if len(timestamps) >= self.max_requests:
            return False
        timestamps.append(now)
        return True

    def retry_after(self, key: str) -> int:
        """Seconds until ``key`` may make another request."""
        now = time.monotonic()
        timestamps = self._prune(key, now)
        if len(timestamps) < self.max_requests:
            return 0
        return max(1, int(timestamps[0] + self.window_seconds - now) + 1)

    def reset(self, key: str | None = None) -> None:
        """Clear state for one key, or for every key."""
        if key is None:
            self._requests.clear()
        else:
            self._requests.pop(key, None)
