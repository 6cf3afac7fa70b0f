"""Retry wrapper for fallible async model calls."""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import httpx
from google.genai import errors as genai_errors
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import TransientServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_CODES = {429, 500, 503, 504}
TRANSIENT_STATUSES = {"RESOURCE_EXHAUSTED", "INTERNAL", "UNAVAILABLE", "DEADLINE_EXCEEDED"}

# Markers looked for in the message of errors that carry no status code
TRANSIENT_MARKERS = (
    "429",
    "500",
    "503",
    "504",
    "UNAVAILABLE",
    "RESOURCE_EXHAUSTED",
    "DEADLINE_EXCEEDED",
    "TIMEOUT",
    "timed out",
)


def is_transient(exc: BaseException) -> bool:
    """Classify an error as worth retrying (rate limit, unavailable, gateway timeout, timeout)."""
    if isinstance(exc, TransientServiceError):
        return True
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        return True
    if isinstance(exc, genai_errors.APIError):
        return exc.code in TRANSIENT_CODES or (exc.status or "") in TRANSIENT_STATUSES
    message = str(exc)
    return any(marker in message for marker in TRANSIENT_MARKERS)


class BackoffExecutor:
    """Runs an async operation, retrying transient failures with exponential backoff.

    Waits ``base_delay * 2**attempt_index`` between attempts (1s, 2s, 4s with the
    defaults). Fatal errors propagate immediately; the last transient error is
    re-raised unchanged once attempts run out.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: int | None = None,
        base_delay: float | None = None,
    ) -> T:
        """Await ``operation()`` with retries.

        Args:
            operation: Zero-argument callable returning a fresh awaitable per attempt
            max_attempts: Overrides the executor default
            base_delay: Overrides the executor default (seconds)

        Returns:
            Whatever the operation returns on its first successful attempt
        """
        attempts = max_attempts if max_attempts is not None else self.max_attempts
        delay = base_delay if base_delay is not None else self.base_delay

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=delay, exp_base=2, min=0),
            retry=retry_if_exception(is_transient),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        # Callers pass plain lambdas returning coroutines, so each attempt is awaited here
        async for attempt in retrying:
            with attempt:
                return await operation()

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "API attempt %d failed. Retrying in %.1fs: %s",
            retry_state.attempt_number,
            delay,
            exc,
        )
