import time
import asyncio


class TokenBucketRateLimiter:
    """Per-connector call budget, refilled continuously over a minute."""

    def __init__(self, rate_limit_per_minute: int):
        self.rate_limit = rate_limit_per_minute
        self.tokens = float(rate_limit_per_minute)
        self.last_refill = time.monotonic()
        self.lock = asyncio.Lock()

    async def acquire(self, tokens: int = 1):
        """
        Acquires `tokens` from the bucket. Blocks until tokens are available.
        """
        if self.rate_limit <= 0:
            return  # No limit

        while True:
            async with self.lock:
                now = time.monotonic()
                elapsed = now - self.last_refill
                self.tokens = min(self.rate_limit, self.tokens + elapsed * self.rate_limit / 60.0)
                self.last_refill = now

                if self.tokens >= tokens:
                    self.tokens -= tokens
                    return

                wait_time = (tokens - self.tokens) * 60.0 / self.rate_limit

            # Wait outside lock
            await asyncio.sleep(wait_time)
