# storefront/utils/retry.py
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type
import requests

from storefront.utils.settings import HTTP_READ_ATTEMPTS


def http_retry(attempts: int | None = None):
    """
    Retry policy for idempotent reads (GET) on connection failures only.
    Default is a single attempt; mutations and HTTP errors are never retried.
    """
    return retry(
        reraise=True,
        stop=stop_after_attempt(attempts or HTTP_READ_ATTEMPTS),
        wait=wait_exponential(multiplier=0.3, min=0.3, max=3),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
    )
