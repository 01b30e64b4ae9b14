"""Bounded retry with a fixed cool-down between attempts."""

from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class AttemptResult(Generic[T]):
    """Outcome of :func:`attempt`: a value or the last error, never both."""

    value: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


def _log_retry(label: str, max_attempts: int) -> Callable[[RetryCallState], None]:
    def log(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome is not None else None
        logger.warning(
            "attempt_failed", label=label, attempt=state.attempt_number, max_attempts=max_attempts, error=str(error)
        )

    return log


async def attempt(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int,
    delay: float,
    label: str = "operation",
) -> AttemptResult[T]:
    """Await ``fn`` up to ``max_attempts`` times, sleeping ``delay`` between tries.

    Only ``Exception`` subclasses count as failures; cancellation propagates.
    """
    max_attempts = max(1, max_attempts)
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_fixed(max(0.0, delay)),
        retry=retry_if_exception_type(Exception),
        after=_log_retry(label, max_attempts),
    )
    try:
        async for trial in retrying:
            with trial:
                value = await fn()
            if not trial.retry_state.outcome.failed:
                return AttemptResult(value=value, attempts=trial.retry_state.attempt_number)
    except RetryError as exc:
        last = exc.last_attempt
        return AttemptResult(error=last.exception(), attempts=last.attempt_number)
    raise AssertionError("retry loop ended without an outcome")
