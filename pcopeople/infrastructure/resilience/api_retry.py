"""Service for executing API calls with automatic retries.

Implements exponential backoff (`min(base * 2**(attempt-1), max_delay)`) for
transient failures such as rate limits (429), server errors (5xx) and
network problems. A 429 carrying `Retry-After` overrides the computed delay.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from pcopeople.core.exceptions import PcoError, should_not_retry
from pcopeople.domain.events.api_events import RetryScheduled

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_MAX_DELAY_SECONDS = 30.0

RetryCallback = Callable[[BaseException, int], Any]


def compute_backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before the retry that follows `attempt` (1-based)."""
    return min(base_delay * 2 ** (attempt - 1), max_delay)


class ApiRetryService:
    """Handles API call execution with retries and exponential backoff."""

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
        max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
        event_emitter: Optional[Any] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """Initializes the ApiRetryService.

        Args:
            max_retries: Total number of attempts before giving up.
            base_delay: Delay in seconds after the first failed attempt.
            max_delay: Upper bound for any single delay.
            event_emitter: Optional emitter receiving `RetryScheduled` events.
            sleep: Awaitable sleep function (defaults to asyncio.sleep).
        """
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.event_emitter = event_emitter
        self._sleep = sleep
        logger.debug(
            f"ApiRetryService initialized: max_retries={self.max_retries}, "
            f"base_delay={base_delay}s, max_delay={max_delay}s"
        )

    async def execute_with_retry(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        operation_name: Optional[str] = None,
        on_retry: Optional[RetryCallback] = None,
        **kwargs: Any,
    ) -> Any:
        """Executes an async function, retrying transient failures.

        Args:
            func: The async function (API call) to execute.
            *args: Positional arguments for the function.
            operation_name: Name used for logging and events.
            on_retry: Optional callback invoked as `on_retry(error, attempt)`
                before each retry sleep.
            **kwargs: Keyword arguments for the function.

        Returns:
            The result of the function call.

        Raises:
            Exception: The last error once retries are exhausted, or the first
                error that retrying cannot fix.
        """
        name = operation_name or getattr(func, "__name__", "operation")

        for attempt in range(1, self.max_retries + 1):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if should_not_retry(e):
                    logger.error(f"Non-retryable error calling {name} on attempt {attempt}: {e}")
                    raise
                if attempt >= self.max_retries:
                    logger.error(f"Max retries ({self.max_retries}) reached for {name}. Last error: {e}")
                    raise

                delay = compute_backoff_delay(attempt, self.base_delay, self.max_delay)
                if isinstance(e, PcoError) and e.status == 429 and e.retry_delay > 0:
                    delay = e.retry_delay

                logger.warning(
                    f"Retryable error calling {name} on attempt {attempt}/{self.max_retries}: "
                    f"{type(e).__name__}. Waiting {delay:.2f}s..."
                )
                self._dispatch_retry(name, attempt, delay, e)
                if on_retry is not None:
                    result = on_retry(e, attempt)
                    if asyncio.iscoroutine(result):
                        await result
                await (self._sleep or asyncio.sleep)(delay)

        # Unreachable: the last attempt either returns or raises
        raise RuntimeError(f"Retry loop for {name} exited without a result")

    def _dispatch_retry(self, name: str, attempt: int, delay: float, error: BaseException) -> None:
        if self.event_emitter is None:
            return
        self.event_emitter.emit(
            RetryScheduled(
                operation=name,
                attempt_number=attempt,
                delay_seconds=delay,
                error_type=type(error).__name__,
            )
        )


async def retry_with_backoff(
    fn: Callable[[], Awaitable[Any]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
    on_retry: Optional[RetryCallback] = None,
) -> Any:
    """Runs `fn` with exponential backoff; see `ApiRetryService.execute_with_retry`."""
    service = ApiRetryService(max_retries=max_retries, base_delay=base_delay, max_delay=max_delay)
    return await service.execute_with_retry(fn, on_retry=on_retry)
