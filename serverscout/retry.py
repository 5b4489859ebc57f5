"""
Bounded retry with exponential backoff for probes that may fail transiently.

A cached endpoint that misses one health check (Wi-Fi waking up, backend
restarting) should not be abandoned for a full subnet scan straight away.
"""

import time
from typing import Callable, Optional, TypeVar

from .models import ErrorKind, ProbeResult

T = TypeVar("T")

TRANSIENT_KINDS = {ErrorKind.TIMEOUT, ErrorKind.REFUSED}

# Statuses a reverse proxy returns while the backend behind it restarts
RETRYABLE_STATUS_CODES = {
    502,  # Bad Gateway
    503,  # Service Unavailable
    504,  # Gateway Timeout
}


def retry_until(
    func: Callable[[], T],
    accept: Callable[[T], bool],
    should_retry: Callable[[T], bool] = lambda result: True,
    max_retries: int = 1,
    base_delay: float = 0.5,
    max_delay: float = 5.0,
    exponential_base: float = 2.0,
    on_retry: Optional[Callable[[int, T, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``func`` until ``accept`` approves its result or retries run out.

    Args:
        func: Zero-argument callable producing a result
        accept: Returns True for a result that ends the loop successfully
        should_retry: Returns False for a rejected result not worth retrying
        max_retries: Maximum number of extra attempts (0 = single attempt)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay between attempts in seconds
        exponential_base: Multiplier applied to the delay after each attempt
        on_retry: Optional callback(attempt, result, delay)
        sleep: Sleep function, replaceable in tests

    Returns:
        The last result produced, accepted or not.
    """
    delay = base_delay
    result = func()
    for attempt in range(1, max_retries + 1):
        if accept(result) or not should_retry(result):
            return result
        current_delay = min(delay, max_delay)
        if on_retry:
            on_retry(attempt, result, current_delay)
        sleep(current_delay)
        delay *= exponential_base
        result = func()
    return result


def is_transient_failure(result: ProbeResult) -> bool:
    """
    Determine if a failed probe is worth repeating.

    Timeouts and refused connections come and go with the network; DNS
    failures and wrong-protocol answers do not, except for gateway statuses.
    """
    if result.reachable:
        return False
    if result.error_kind in TRANSIENT_KINDS:
        return True
    return result.status_code in RETRYABLE_STATUS_CODES
