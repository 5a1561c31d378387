"""Bounded exponential-backoff retry for document store and search calls."""

import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

import requests

from storefront.config import (
    MAX_RETRIES,
    MAX_RETRY_BACKOFF,
    RETRY_INITIAL_DELAY,
    RETRY_JITTER_RATIO,
    RETRY_STATUS_CODES,
)
from storefront.errors import RetryCancelled
from storefront.logging_config import get_logger, log_store_event

__all__ = ["retry", "RetryPolicy", "is_retryable_error", "backoff_delay"]

logger = get_logger("retry")

T = TypeVar("T")

RETRYABLE_CODES = {
    "unavailable",
    "deadline-exceeded",
    "resource-exhausted",
    "internal",
    "aborted",
    "cancelled",
}
FATAL_CODES = {
    "unauthenticated",
    "permission-denied",
    "invalid-argument",
    "not-found",
    "failed-precondition",
    "already-exists",
}
RETRYABLE_KEYWORDS = (
    "network",
    "timeout",
    "timed out",
    "rate limit",
    "too many requests",
    "internal",
    "unavailable",
    "connection",
)
FATAL_KEYWORDS = (
    "unauthenticated",
    "unauthorized",
    "permission",
    "invalid",
    "not found",
)


def _normalise_code(code: Any) -> Any:
    # google-api-core exposes HTTPStatus ints and grpc StatusCode enums;
    # firestore error codes look like "permission-denied"
    if isinstance(code, int) and not isinstance(code, bool):
        return int(code)
    name = getattr(code, "name", None)
    if isinstance(name, str):
        code = name
    if isinstance(code, str):
        return code.strip().lower().replace("_", "-")
    return code


def is_retryable_error(error: BaseException) -> bool:
    """Classify an error as transient (retry) or permanent (surface at once)."""
    if isinstance(error, RetryCancelled):
        return False
    if isinstance(error, (requests.ConnectionError, requests.Timeout)):
        return True

    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status in RETRY_STATUS_CODES

    for attr in ("code", "status_code"):
        code = _normalise_code(getattr(error, attr, None))
        if isinstance(code, bool) or code is None:
            continue
        if isinstance(code, int):
            return code in RETRY_STATUS_CODES
        if code in RETRYABLE_CODES:
            return True
        if code in FATAL_CODES:
            return False

    message = str(error).lower()
    if any(word in message for word in FATAL_KEYWORDS):
        return False
    return any(word in message for word in RETRYABLE_KEYWORDS)


def backoff_delay(attempt: int, initial_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (1-based), jitter included."""
    delay = min(initial_delay * (2 ** (attempt - 1)), max_delay)
    return delay + random.uniform(0, delay * RETRY_JITTER_RATIO)


def retry(
    operation: Callable[[], T],
    max_attempts: int = MAX_RETRIES,
    initial_delay: float = RETRY_INITIAL_DELAY,
    max_delay: float = MAX_RETRY_BACKOFF,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    cancel_event: Optional[threading.Event] = None,
    sleep: Callable[[float], Any] = time.sleep,
) -> T:
    """Run ``operation`` until it succeeds or the attempt budget is spent.

    Args:
        operation: Zero-argument callable to run
        max_attempts: Total attempts, including the first one
        initial_delay: Seconds before the first retry; doubles per attempt
        max_delay: Upper bound on a single wait (before jitter)
        is_retryable: Predicate deciding whether a failure is worth retrying
        cancel_event: When set, stops before the next attempt and interrupts
            a backoff wait
        sleep: Wait function used when no cancel event is given

    Returns:
        Whatever ``operation`` returns

    Raises:
        RetryCancelled: If ``cancel_event`` is set
        Exception: The last error, unchanged, once retries stop
    """
    attempt = 0
    while True:
        if cancel_event is not None and cancel_event.is_set():
            raise RetryCancelled("Operation cancelled")

        attempt += 1
        try:
            return operation()
        except Exception as e:
            if cancel_event is not None and cancel_event.is_set():
                raise RetryCancelled("Operation cancelled") from e
            if attempt >= max_attempts or not is_retryable(e):
                raise

            delay = backoff_delay(attempt, initial_delay, max_delay)
            logger.warning(
                f"Attempt {attempt}/{max_attempts} failed ({e}), retrying in {delay:.2f}s"
            )
            log_store_event(
                "retry_attempt",
                {
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "delay": round(delay, 3),
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                logger_name="retry",
            )

            if cancel_event is not None:
                if cancel_event.wait(delay):
                    raise RetryCancelled("Operation cancelled during backoff") from e
            else:
                sleep(delay)


@dataclass
class RetryPolicy:
    """Retry settings bundled for injection into repositories and adapters."""

    max_attempts: int = MAX_RETRIES
    initial_delay: float = RETRY_INITIAL_DELAY
    max_delay: float = MAX_RETRY_BACKOFF
    is_retryable: Callable[[BaseException], bool] = is_retryable_error
    sleep: Callable[[float], Any] = time.sleep

    def run(self, operation: Callable[[], T], cancel_event: Optional[threading.Event] = None) -> T:
        return retry(
            operation,
            max_attempts=self.max_attempts,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            is_retryable=self.is_retryable,
            cancel_event=cancel_event,
            sleep=self.sleep,
        )

    @classmethod
    def immediate(cls, max_attempts: int = MAX_RETRIES) -> "RetryPolicy":
        """Policy with no waiting between attempts (tests, CLI batch jobs)."""
        return cls(max_attempts=max_attempts, initial_delay=0.0, max_delay=0.0)
