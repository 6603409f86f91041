"""Retry policy and executor for remote calls."""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Tuple, Type, TypeVar

from rds_exporter.errors import RetryExhaustedError, ServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try a call and how long to wait between tries.

    The delay before attempt ``n + 1`` is ``delay_s * backoff ** (n - 1)``.
    A backoff of 1.0 gives a fixed delay, 2.0 doubles every attempt.
    """
    max_attempts: int = 3
    delay_s: float = 1.0
    backoff: float = 1.0

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return self.delay_s * (self.backoff ** (attempt - 1))


def call_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    description: str = "call",
    retry_on: Tuple[Type[BaseException], ...] = (ServiceError,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` until it succeeds or the policy is exhausted.

    Only exceptions listed in ``retry_on`` are retried; anything else
    propagates on the first occurrence. When every attempt fails a
    RetryExhaustedError is raised carrying the last failure.
    """
    last_error = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            result = operation()
        except retry_on as e:
            last_error = e
            logger.warning(f"{description} failed (attempt {attempt}/{policy.max_attempts}): {e}")

            if attempt < policy.max_attempts:
                sleep(policy.delay_for(attempt))
            continue

        if attempt > 1:
            logger.info(f"{description} succeeded after {attempt} attempts")
        return result

    raise RetryExhaustedError(
        f"{description} failed after {policy.max_attempts} attempts: {last_error}",
        attempts=policy.max_attempts,
        last_error=last_error,
    )
