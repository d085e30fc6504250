import logging
import random
import time

import requests

from . import config
from .errors import RetryExhausted
from .utils import response_message

logger = logging.getLogger(__name__)


def is_retryable_status(status):
    """Return True for rate limiting (429) and server-side (5xx) failures."""
    return status in config.RETRYABLE_STATUSES or 500 <= status < 600


def http_error(response, description):
    """Build a requests.HTTPError carrying the status and any OperationOutcome detail."""
    status = response.status_code
    detail = response_message(response)
    message = f"HTTP {status} for {description}"
    if detail:
        message = f"{message}: {detail}"
    return requests.HTTPError(message, response=response)


class RetryPolicy:
    """Bounded exponential backoff around a single HTTP call.

    ``operation`` is a zero-argument callable returning a response. Statuses
    429 and 5xx are retried until ``max_attempts`` calls have been made, waiting
    ``base_delay * 2**k`` before retry ``k``. Other 4xx statuses raise
    ``requests.HTTPError`` at once, and transport exceptions raised by the call
    itself are never retried.
    """

    def __init__(
        self,
        max_attempts=config.DEFAULT_MAX_RETRIES,
        base_delay=config.RETRY_BASE_DELAY,
        jitter=config.RETRY_JITTER,
        sleep=time.sleep,
    ):
        self.max_attempts = max(1, int(max_attempts))
        self.base_delay = base_delay
        self.jitter = jitter or 0.0
        self.sleep = sleep

    def delay_for(self, retry_number):
        delay = self.base_delay * (2**retry_number)
        if self.jitter > 0:
            delay += random.uniform(0, self.jitter * delay)
        return delay

    def call(self, operation, description="request"):
        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                sleep_for = self.delay_for(attempt - 1)
                logger.warning(
                    "[!] %s. Retrying %s in %.1fs (attempt %s/%s)...",
                    last_error,
                    description,
                    sleep_for,
                    attempt,
                    self.max_attempts,
                )
                self.sleep(sleep_for)
            response = operation()
            status = response.status_code
            if 200 <= status < 300:
                return response
            error = http_error(response, description)
            if not is_retryable_status(status):
                raise error
            last_error = error
        raise RetryExhausted(description, self.max_attempts, last_error)
