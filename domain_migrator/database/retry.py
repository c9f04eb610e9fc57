"""
Retry with exponential backoff for connector operations.

Only retryable ConnectorErrors (and retryable EncryptionErrors) are retried. The
delay before retry n (0-based) is retry_delay_ms * 2 ** n, so max_retries=3 and
retry_delay_ms=1000 wait 1s, 2s and 4s before giving up.
"""

import logging
import time
from typing import Callable, TypeVar

from ..exceptions import ConnectorError, EncryptionError


T = TypeVar('T')

logger = logging.getLogger(__name__)


def backoff_delay_ms(retry_delay_ms: int, attempt: int) -> int:
    """Delay before retry number `attempt` (0-based)."""
    return retry_delay_ms * (2 ** attempt)


def _is_retryable(error: Exception) -> bool:
    return isinstance(error, (ConnectorError, EncryptionError)) and error.retryable


def call_with_retry(operation: Callable[[], T], description: str, max_retries: int,
                    retry_delay_ms: int, sleep: Callable[[float], None] = time.sleep) -> T:
    """
    Run an operation, retrying retryable connector failures.

    Args:
        operation: Zero-argument callable performing one connector operation
        description: Operation name for logs ("fetch residents page at offset 2000")
        max_retries: Retries after the first attempt
        retry_delay_ms: Initial backoff delay in milliseconds
        sleep: Sleep function taking seconds

    Returns:
        The operation's result

    Raises:
        ConnectorError: The last error once retries are exhausted, or any non-retryable error
    """
    attempt = 0
    while True:
        try:
            return operation()
        except (ConnectorError, EncryptionError) as e:
            if not _is_retryable(e) or attempt >= max_retries:
                if attempt:
                    logger.error(f"{description} failed after {attempt + 1} attempts: {e}")
                raise
            delay_ms = backoff_delay_ms(retry_delay_ms, attempt)
            logger.warning(f"{description} failed (attempt {attempt + 1}/{max_retries + 1}), "
                           f"retrying in {delay_ms}ms: {e}")
            sleep(delay_ms / 1000.0)
            attempt += 1
