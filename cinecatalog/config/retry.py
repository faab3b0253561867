"""Retry policy for upstream catalog API communication.

This module defines which HTTP errors are considered transient and
configures the retry policy applied to page fetches using the Tenacity library.
Timeouts are deliberately excluded: a timed out page fetch is fatal to the run.
"""

import requests
import logging

from tenacity import retry, stop_after_attempt, wait_incrementing, retry_if_exception

logger = logging.getLogger(__name__)

RETRIABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def log_retry(retry_state):
    """Logs details of a failed request before attempting a retry.

    Args:
        retry_state: The current state of the tenacity retry call.
    """

    logger.warning(
        "CATALOG_RETRY_DELAY | Attempt: %s | Reason: %s | Waiting: %ss",
        retry_state.attempt_number,
        retry_state.outcome.exception(),
        retry_state.next_action.sleep,
    )


def is_transient_error(exception):
    """Determines if an exception should trigger a retry attempt.

    Retries on dropped connections and specific HTTP status codes (429, 5xx).

    Args:
        exception: The exception raised during the HTTP request.

    Returns:
        bool: True if the error is transient and should be retried, False otherwise.
    """

    # ConnectTimeout is also a ConnectionError, so check timeouts first
    if isinstance(exception, requests.exceptions.Timeout):
        return False

    if isinstance(exception, requests.exceptions.ConnectionError):
        return True

    if isinstance(exception, requests.exceptions.HTTPError):
        if exception.response is None:
            return False
        return exception.response.status_code in RETRIABLE_STATUS_CODES

    return False


CATALOG_RETRY_POLICY = retry(
    retry=retry_if_exception(is_transient_error),
    wait=wait_incrementing(start=1, increment=1, max=5),
    stop=stop_after_attempt(3),
    reraise=True,
    before_sleep=log_retry,
)
