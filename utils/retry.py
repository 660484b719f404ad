"""
Retry-with-backoff for rate-limited API calls.

Any zero-argument callable can be wrapped; rate limit errors are retried with
exponential backoff plus jitter, everything else propagates on the first
failure.
"""

import random
import time
from typing import Callable, Optional, TypeVar

from config import (
    INITIAL_RETRY_DELAY,
    MAX_RETRIES,
    RATE_LIMIT_MARKERS,
    RETRY_JITTER,
)

T = TypeVar("T")


class RateLimitExceeded(Exception):
    """Retry budget exhausted on a rate-limited call."""

    def __init__(self, attempts: int, cause: Optional[BaseException] = None):
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"API rate limit exceeded after {attempts} attempts: {cause}"
        )


def is_rate_limit_error(error: BaseException) -> bool:
    """Check an exception for a quota / HTTP 429 signal."""
    if isinstance(error, RateLimitExceeded):
        return True
    # google-genai APIError carries the HTTP status as .code
    if getattr(error, "code", None) == 429:
        return True
    message = str(error)
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def backoff_delay(
    attempt: int,
    initial_delay: float = INITIAL_RETRY_DELAY,
    jitter: float = RETRY_JITTER,
) -> float:
    """Delay before retry number `attempt` (1-based)."""
    return initial_delay * (2 ** (attempt - 1)) + random.uniform(0, jitter)


def call_with_retry(
    api_call: Callable[[], T],
    max_retries: int = MAX_RETRIES,
    initial_delay: float = INITIAL_RETRY_DELAY,
    jitter: float = RETRY_JITTER,
    sleep: Callable[[float], None] = time.sleep,
    verbose: bool = True,
) -> T:
    """
    Run api_call, retrying on rate limit errors.

    Args:
        api_call: Zero-argument callable performing one request
        max_retries: Retries allowed after the first attempt
        initial_delay: Base delay in seconds, doubled per retry
        jitter: Upper bound of the random delay added to each wait
        sleep: Sleep function (injectable for tests)
        verbose: Print retry notices

    Returns:
        Whatever api_call returns

    Raises:
        RateLimitExceeded: after max_retries + 1 rate-limited attempts
    """
    retries = 0
    while True:
        try:
            return api_call()
        except Exception as e:
            if not is_rate_limit_error(e):
                raise

            retries += 1
            if retries > max_retries:
                if verbose:
                    print(f"  [Rate limit] Max retries reached ({max_retries})")
                raise RateLimitExceeded(retries, e) from e

            delay = backoff_delay(retries, initial_delay, jitter)
            if verbose:
                print(
                    f"  [Rate limit] Retrying in {delay:.1f}s... "
                    f"(Attempt {retries}/{max_retries})"
                )
            sleep(delay)
