"""
Model fallback + retry-with-backoff policy
"""

import time
from typing import Callable, Optional, Sequence, TypeVar

from loguru import logger

from mediascribe.exceptions import AllModelsFailedError, MediaScribeError, ModelOverloadedError

T = TypeVar("T")

OVERLOAD_MARKERS = ("503", "overloaded")


def is_overloaded_error(error: BaseException) -> bool:
    """Detect a saturated remote model from the exception type or message"""
    if isinstance(error, ModelOverloadedError):
        return True
    message = str(error).lower()
    return any(marker in message for marker in OVERLOAD_MARKERS)


class FallbackRetryPolicy:
    """
    Ordered candidates, each tried up to ``max_attempts`` times

    - success returns immediately
    - a transient (overload) error moves on to the next candidate without
      waiting, except on the last candidate where it is retried
    - any other error waits ``2^attempt * base_delay`` before the next attempt
    - a non-retryable MediaScribeError propagates at once
    - exhausting the last candidate raises AllModelsFailedError
    """

    def __init__(
        self,
        candidates: Sequence[str],
        max_attempts: int = 3,
        base_delay: float = 1.0,
        is_transient: Callable[[BaseException], bool] = is_overloaded_error,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not candidates:
            raise ValueError("At least one candidate is required")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        self.candidates = list(candidates)
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.is_transient = is_transient
        self.sleep = sleep

    def backoff(self, attempt: int) -> float:
        """Delay (seconds) after a failed 0-based attempt"""
        return (2 ** attempt) * self.base_delay

    def run(self, operation: Callable[[str], T], label: str = "operation") -> T:
        """
        Run operation(candidate) under the policy

        Args:
            operation: Called with the candidate name
            label: Name used in log lines

        Returns:
            The first successful result

        Raises:
            AllModelsFailedError: every attempt on every candidate failed
        """
        last_error: Optional[BaseException] = None

        for position, candidate in enumerate(self.candidates):
            is_last_candidate = position == len(self.candidates) - 1

            for attempt in range(self.max_attempts):
                try:
                    logger.info(
                        f"{label}: {candidate} attempt {attempt + 1}/{self.max_attempts}"
                    )
                    result = operation(candidate)
                    logger.info(f"{label}: success with {candidate} on attempt {attempt + 1}")
                    return result

                except MediaScribeError as e:
                    if not e.retryable and not isinstance(e, ModelOverloadedError):
                        raise
                    last_error = e
                except Exception as e:
                    last_error = e

                transient = self.is_transient(last_error)
                logger.warning(
                    f"{label}: {candidate} attempt {attempt + 1} failed: {last_error}"
                )

                if transient and not is_last_candidate:
                    logger.info(f"{label}: {candidate} is overloaded, switching to next candidate")
                    break

                if attempt < self.max_attempts - 1:
                    delay = self.backoff(attempt)
                    logger.info(f"{label}: retrying {candidate} in {delay * 1000:.0f}ms")
                    self.sleep(delay)

        raise AllModelsFailedError(
            f"All models failed after retries: {last_error}",
            {"candidates": self.candidates, "last_error": str(last_error)},
        ) from last_error
