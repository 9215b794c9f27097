"""Retry policies for upstream HTTP calls.

Only transport failures are retried. A vendor that answered with an error
code will answer the same way again, so business errors surface at once.
"""

import logging

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)

RETRYABLE_ERRORS = (httpx.TimeoutException, httpx.NetworkError)


# Reusable retry decorator for plain vendor API calls
http_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    retry=retry_if_exception_type(RETRYABLE_ERRORS),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


def gateway_retrying(max_attempts: int = 3, max_wait: float = 2.0) -> AsyncRetrying:
    """Bounded retry loop for calls that rotate endpoints between attempts.

    Usage:
        async for attempt in gateway_retrying():
            with attempt:
                n = attempt.retry_state.attempt_number
                ...

    Args:
        max_attempts: Hard attempt ceiling, keeps the request inside the
            hosting platform's duration limit
        max_wait: Cap on the backoff between attempts, in seconds
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=0.25, min=0.25, max=max_wait),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
