"""
Retry Policy for Remote Operations

Subscription opening and transient repository fetches share one policy:
exponential backoff starting at the base delay, doubling per attempt,
capped per delay, bounded by an attempt ceiling.

Only errors classified as transient are retried. Anything else fails on
the first attempt so schema and permission problems surface at once.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from src.config import SyncSettings
from src.services.storage.interface import QueryError, is_transient_error


logger = structlog.get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class RetryPolicy:
    """
    Exponential backoff with a ceiling, driven by tenacity.

    sleep is injectable so tests can run the full schedule instantly and
    inspect the delays.
    """

    def __init__(
        self,
        max_attempts: int = 6,
        base_seconds: float = 1.0,
        cap_seconds: float = 32.0,
        sleep: Optional[Sleep] = None,
    ):
        self.max_attempts = max_attempts
        self.base_seconds = base_seconds
        self.cap_seconds = cap_seconds
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_settings(cls, settings: SyncSettings, sleep: Optional[Sleep] = None) -> 'RetryPolicy':
        return cls(
            max_attempts=settings.max_attempts,
            base_seconds=settings.backoff_base_seconds,
            cap_seconds=settings.backoff_cap_seconds,
            sleep=sleep,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay slept after the given (1-based) failed attempt."""
        return min(self.base_seconds * (2 ** (attempt - 1)), self.cap_seconds)

    def _retrying(self, operation: str) -> AsyncRetrying:
        def before_sleep(state: RetryCallState) -> None:
            logger.warning(
                "retrying_remote_operation",
                operation=operation,
                attempt=state.attempt_number,
                delay=state.next_action.sleep if state.next_action else None,
                error=str(state.outcome.exception()) if state.outcome else None,
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_seconds, max=self.cap_seconds),
            retry=retry_if_exception(is_transient_error),
            sleep=self._sleep,
            before_sleep=before_sleep,
            reraise=True,
        )

    async def run(
        self,
        operation: str,
        func: Callable[[], Awaitable[T]],
    ) -> tuple[T, int]:
        """
        Run func under the policy.

        Returns:
            (result, attempts used)

        Raises:
            The last error once attempts are exhausted, or the first
            non-transient error. A QueryError carries the attempt count.
        """
        retrying = self._retrying(operation)
        try:
            async for attempt in retrying:
                with attempt:
                    result = await func()
        except QueryError as e:
            e.attempts = retrying.statistics.get("attempt_number", 1)
            raise
        return result, retrying.statistics.get("attempt_number", 1)
