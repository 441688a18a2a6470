"""Token bucket rate limiter for inbound WebSocket frames."""

import time


class TokenBucket:
    """Token bucket: refills at ``rate`` tokens per second up to ``burst``.

    Each consume() takes one token and returns False once the bucket is
    empty, at which point the caller should drop the frame.
    """

    def __init__(self, rate: float, burst: int, clock=time.monotonic) -> None:
        self._rate = rate
        self._burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last_refill = clock()

    @property
    def tokens(self) -> float:
        return self._tokens

    def consume(self) -> bool:
        now = self._clock()
        elapsed = now - self._last_refill
        self._tokens = min(self._burst, self._tokens + elapsed * self._rate)
        self._last_refill = now

        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return True
        return False
