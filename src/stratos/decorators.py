# Stratos: track balloon positions and nearby air quality
# Copyright (C) 2025 Ruaraidh Dobson, South London Scientific

# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.

# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Function decorators for cross-cutting concerns.

Retry and logging are applied as decorators so the network functions they
wrap stay focused on the request itself.
"""

import logging
import time
from functools import wraps
from typing import Callable, TypeVar

import requests
from tenacity import (
    after_log,
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

F = TypeVar("F", bound=Callable)

logger = logging.getLogger(__name__)


def _is_transient(exception: BaseException) -> bool:
    """Connection errors, timeouts and HTTP 5xx are worth another attempt."""
    if isinstance(
        exception, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)
    ):
        return True
    if isinstance(exception, requests.exceptions.HTTPError):
        response = exception.response
        return response is not None and 500 <= response.status_code < 600
    return False


def with_retry(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 10.0,
    multiplier: float = 2.0,
) -> Callable[[F], F]:
    """
    Decorator to add exponential backoff retry logic to a function.

    Retries on connection errors, timeouts and HTTP 5xx errors. 4xx errors
    and anything else are raised immediately. After the last attempt the
    original exception is re-raised.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        min_wait: Minimum wait time between retries in seconds (default: 1.0)
        max_wait: Maximum wait time between retries in seconds (default: 10.0)
        multiplier: Multiplier for exponential backoff (default: 2.0)

    Returns:
        Callable: Decorated function with retry logic

    Example:
        >>> @with_retry(max_attempts=5, min_wait=2.0)
        ... def fetch_data(url):
        ...     response = requests.get(url, timeout=10)
        ...     response.raise_for_status()
        ...     return response.json()
    """

    def decorator(func: F) -> F:
        @retry(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=multiplier, min=min_wait, max=max_wait),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            after=after_log(logger, logging.DEBUG),
            reraise=True,
        )
        @wraps(func)
        def wrapper(*args, **kwargs):
            return func(*args, **kwargs)

        return wrapper

    return decorator


def with_logging(
    logger_name: str | None = None,
    level: int = logging.DEBUG,
    expected: tuple[type[BaseException], ...] = (),
) -> Callable[[F], F]:
    """
    Decorator to time a call and log how it ended.

    Start and finish are logged at ``level`` with the elapsed time. Exceptions
    listed in ``expected`` are part of the function's normal contract (a
    fetch error the caller turns into a message, a cancelled lookup) and are
    logged at ``level`` without a traceback; anything else is logged at
    ERROR with one. Either way the exception is re-raised. Arguments are
    never logged, so API keys stay out of the log.

    Args:
        logger_name: Name of logger to use. If None, uses the module name.
        level: Level for start, finish and expected-exception messages
        expected: Exception types that are not logged as errors

    Returns:
        Callable: Decorated function with logging

    Example:
        >>> @with_logging(expected=(SnapshotFetchError,))
        ... def fetch(index):
        ...     ...
    """

    def decorator(func: F) -> F:
        func_logger = logging.getLogger(logger_name or func.__module__)
        name = func.__name__

        @wraps(func)
        def wrapper(*args, **kwargs):
            started = time.perf_counter()
            func_logger.log(level, f"{name} started")

            try:
                result = func(*args, **kwargs)
            except expected as e:
                elapsed = time.perf_counter() - started
                func_logger.log(
                    level, f"{name} ended after {elapsed:.2f}s with {type(e).__name__}"
                )
                raise
            except Exception as e:
                elapsed = time.perf_counter() - started
                func_logger.error(
                    f"{name} failed after {elapsed:.2f}s: {e}", exc_info=True
                )
                raise

            elapsed = time.perf_counter() - started
            func_logger.log(level, f"{name} finished in {elapsed:.2f}s")
            return result

        return wrapper

    return decorator


# Standard retry for most network operations
retry_on_network_error = with_retry(
    max_attempts=3, min_wait=1.0, max_wait=10.0, multiplier=2.0
)
