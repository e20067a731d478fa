import asyncio
import logging
import random
from functools import wraps
from typing import Callable, Iterable, Optional, Union

from models.execution_log import ActionResult
from models.workflow import RetryPolicy

logger = logging.getLogger("workflow_engine")

TRANSIENT_KEYWORDS = [
    "timeout",
    "timed out",
    "connection",
    "rate limit",
    "429",
    "500", "502", "503", "504",
]


class RetryManager:
    """
    Manages retry logic with exponential backoff and jitter.

    Wrapped callables return an ActionResult rather than raising, so a
    failed result whose error looks transient is what triggers a retry.
    """

    @staticmethod
    def is_transient_error(error: Union[str, Exception, None], keywords: Optional[Iterable[str]] = None) -> bool:
        """
        Determines if an error is transient and worth retrying.
        """
        if not error:
            return False
        error_msg = str(error).lower()
        candidates = keywords if keywords else TRANSIENT_KEYWORDS
        return any(keyword.lower() in error_msg for keyword in candidates)

    @staticmethod
    def compute_delay(policy: RetryPolicy, attempt: int) -> float:
        """Delay in seconds before retry number `attempt` (1-based)."""
        delay_ms = policy.delay_ms * (policy.backoff_multiplier ** (attempt - 1))
        delay_ms = min(delay_ms, policy.max_delay_ms)
        jitter = random.uniform(0, 0.1 * delay_ms)
        return (delay_ms + jitter) / 1000.0

    @staticmethod
    def with_retry(policy: RetryPolicy):
        """
        Decorator to retry an async function returning ActionResult.
        """
        def decorator(func: Callable):
            @wraps(func)
            async def wrapper(*args, **kwargs) -> ActionResult:
                attempt = 0
                while True:
                    attempt += 1
                    result = await func(*args, **kwargs)
                    if result.success:
                        if attempt > 1:
                            result.data = _with_attempts(result.data, attempt)
                        return result

                    if attempt >= policy.max_attempts:
                        if policy.max_attempts > 1:
                            logger.warning(f"Max retry attempts ({policy.max_attempts}) reached for {func.__name__}. Last error: {result.error}")
                        result.data = _with_attempts(result.data, attempt)
                        return result

                    if not RetryManager.is_transient_error(result.error, policy.retry_on_error_types):
                        logger.warning(f"Non-transient error encountered in {func.__name__}: {result.error}. Not retrying.")
                        result.data = _with_attempts(result.data, attempt)
                        return result

                    final_delay = RetryManager.compute_delay(policy, attempt)
                    logger.info(f"Transient error in {func.__name__}: {result.error}. Retrying in {final_delay:.2f}s (Attempt {attempt}/{policy.max_attempts})")
                    await asyncio.sleep(final_delay)
            return wrapper
        return decorator


def _with_attempts(data, attempts: int):
    if data is None:
        return {"attempts": attempts}
    if isinstance(data, dict):
        return {**data, "attempts": attempts}
    return {"value": data, "attempts": attempts}
