import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Generic, TypeVar

from ..errors import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class AttemptContext:
    """Where an attempt sits in the retry budget.

    ``attempt`` is 1-indexed; ``last_failure`` is ``None`` only on the first attempt.
    """

    attempt: int
    max_attempts: int
    last_failure: Exception | None = None


AttemptCallback = Callable[[AttemptContext], None]


class RetryRunner(Generic[T]):
    """Runs an async operation until it succeeds or the attempt budget is spent."""

    async def run(
        self,
        operation: Callable[[AttemptContext], Awaitable[T]],
        max_attempts: int,
        on_attempt_start: AttemptCallback | None = None,
        on_attempt_failed: AttemptCallback | None = None,
    ) -> T:
        max_attempts = max(1, max_attempts)
        last_failure: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            context = AttemptContext(
                attempt=attempt, max_attempts=max_attempts, last_failure=last_failure
            )
            if on_attempt_start:
                on_attempt_start(context)

            try:
                result = await operation(context)
            except Exception as e:
                last_failure = e
                logger.warning("Attempt %d/%d failed: %s", attempt, max_attempts, e)
                if on_attempt_failed:
                    on_attempt_failed(replace(context, last_failure=e))
                continue

            logger.debug("Attempt %d/%d succeeded", attempt, max_attempts)
            return result

        raise RetryExhaustedError(max_attempts, last_failure) from last_failure
