"""Bounded retry policy for calls to external backends."""
from __future__ import annotations

import logging
from typing import Callable, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

T = TypeVar("T")


def call_with_retry(
    func: Callable[[], T],
    *,
    retry_on: type[BaseException] | tuple[type[BaseException], ...],
    attempts: int,
    backoff_seconds: float,
    operation: str,
    logger: logging.Logger,
    max_backoff_seconds: float = 10.0,
) -> T:
    """Run *func*, retrying ``retry_on`` errors with exponential backoff.

    The last error is re-raised once ``attempts`` calls have failed; any other
    exception propagates on the first occurrence.
    """

    def _log_retry(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        logger.warning(
            "%s failed (attempt %s/%s): %s",
            operation,
            retry_state.attempt_number,
            attempts,
            error,
        )

    retrying = Retrying(
        retry=retry_if_exception_type(retry_on),
        stop=stop_after_attempt(max(attempts, 1)),
        wait=wait_exponential(multiplier=backoff_seconds, min=0, max=max_backoff_seconds),
        before_sleep=_log_retry,
        reraise=True,
    )
    return retrying(func)
