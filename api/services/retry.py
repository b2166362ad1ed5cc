"""Retry policy for outbound HTTP calls to GitHub and Elasticsearch."""

import logging

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

logger = logging.getLogger(__name__)


def is_transient(resp: httpx.Response) -> bool:
    """Throttling and server-side errors are worth another attempt."""
    return resp.status_code == 429 or resp.status_code >= 500


def http_retrying(attempts: int, wait: wait_base | None = None) -> AsyncRetrying:
    """Retry transport errors and transient statuses.

    When attempts run out the last response is returned (or the last
    transport error re-raised) so callers keep their own status handling.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait if wait is not None else wait_exponential(min=1, max=4),
        retry=retry_if_exception_type(httpx.TransportError) | retry_if_result(is_transient),
        retry_error_callback=lambda state: state.outcome.result(),
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
