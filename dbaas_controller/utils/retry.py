"""
Retry utilities for Kubernetes API calls.

Transient API server failures (throttling, gateway errors) are retried with
exponential backoff. Everything else, including 404 and 409, propagates on
the first attempt so callers can classify it.
"""
import asyncio
import functools
from typing import Callable, Optional, Tuple, Type, TypeVar

from kubernetes_asyncio.client.exceptions import ApiException

from dbaas_controller.config.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({
    408,  # Request Timeout
    429,  # Too Many Requests
    500,  # Internal Server Error
    502,  # Bad Gateway
    503,  # Service Unavailable
    504,  # Gateway Timeout
})


def is_retryable_k8s_error(exception: BaseException) -> bool:
    """
    Determine if a Kubernetes API exception should trigger a retry.

    Args:
        exception: The exception to check

    Returns:
        True if the exception is retryable, False otherwise
    """
    if not isinstance(exception, ApiException):
        return False
    return exception.status in RETRYABLE_STATUS_CODES


def retry_on_k8s_error(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    retry_on: Optional[Tuple[Type[Exception], ...]] = None,
) -> Callable:
    """
    Decorator to retry idempotent Kubernetes API reads with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        initial_delay: Initial delay between retries in seconds (default: 1.0)
        max_delay: Maximum delay between retries in seconds (default: 30.0)
        exponential_base: Base for exponential backoff calculation (default: 2.0)
        retry_on: Additional exception types to retry on (default: None)

    Example:
        @retry_on_k8s_error(max_retries=5, initial_delay=0.5)
        async def list_pods(self, selector: str):
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            attempt = 0
            while True:
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    should_retry = is_retryable_k8s_error(e) or bool(retry_on and isinstance(e, retry_on))

                    if attempt >= max_retries or not should_retry:
                        if should_retry:
                            logger.error(
                                "k8s_api_call_failed_max_retries",
                                function=func.__name__,
                                attempt=attempt + 1,
                                max_retries=max_retries,
                                error_type=type(e).__name__,
                                error=str(e),
                            )
                        raise

                    delay = min(initial_delay * (exponential_base ** attempt), max_delay)
                    logger.warning(
                        "k8s_api_call_failed_retrying",
                        function=func.__name__,
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay_seconds=delay,
                        error_type=type(e).__name__,
                        status_code=getattr(e, "status", None),
                    )
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue

                if attempt > 0:
                    logger.info(
                        "k8s_api_call_succeeded_after_retry",
                        function=func.__name__,
                        attempt=attempt + 1,
                    )
                return result

        return wrapper
    return decorator
