"""
Logfeed - Retry Executor
Bounded exponential backoff for calls against rate-limited upstream APIs
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from logfeed.sources.errors import RateLimitedError, RemoteSourceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1`` (attempt is 0-based)"""
        return min(self.base_delay * (2 ** attempt), self.max_delay)


async def run_with_retry(
    call: Callable[[], Awaitable[Any]],
    policy: RetryPolicy,
    description: str = "remote call",
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> Any:
    """
    Run ``call`` until it succeeds, a non-transient error is raised, or the
    retry budget is spent. The last error is re-raised with ``attempts`` set.
    """
    sleep = sleep or asyncio.sleep
    attempt = 0

    while True:
        try:
            return await call()
        except RemoteSourceError as e:
            e.attempts = attempt + 1
            if not e.transient or attempt >= policy.max_retries:
                if e.transient:
                    logger.error(f"❌ {description} failed after {e.attempts} attempts: {e}")
                raise

            delay = policy.delay_for(attempt)
            if isinstance(e, RateLimitedError):
                if e.retry_after:
                    delay = min(max(delay, e.retry_after), policy.max_delay)
                logger.warning(f"⏳ Rate limited on {description}, retrying in {delay:.1f}s "
                               f"(attempt {attempt + 1}/{policy.max_retries})")
            else:
                logger.warning(f"🔄 {description} failed with {e}, retrying in {delay:.1f}s "
                               f"(attempt {attempt + 1}/{policy.max_retries})")

            await sleep(delay)
            attempt += 1
