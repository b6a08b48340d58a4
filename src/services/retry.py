"""Bounded fixed-delay retry wrapper used around every fallible refresh step"""

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from src.config import config

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhausted(Exception):
    """Raised when an operation failed on every allowed attempt"""

    def __init__(self, operation_name: str, attempts: int, last_error: BaseException):
        self.operation_name = operation_name
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation_name} failed after {attempts} attempts. Last error: {last_error}"
        )


class RetryExecutor:
    """Run an operation up to max_attempts times with a fixed delay in between"""

    def __init__(
        self,
        max_attempts: int | None = None,
        delay_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize retry executor

        Args:
            max_attempts: Attempts per operation (default from config)
            delay_seconds: Delay between attempts (default from config)
            sleep: Sleep function, replaceable in tests
        """
        self.max_attempts = max_attempts if max_attempts is not None else config.max_retry_attempts
        self.delay_seconds = (
            delay_seconds if delay_seconds is not None else config.retry_delay_seconds
        )
        self.sleep = sleep

    def run(self, operation: Callable[[], T], operation_name: str) -> T:
        """
        Execute operation, retrying any Exception

        Args:
            operation: Zero-argument callable doing one unit of work
            operation_name: Label used in log lines and in RetryExhausted

        Returns:
            Whatever operation returns on its first successful attempt

        Raises:
            RetryExhausted: If every attempt failed
        """
        max_attempts = self.max_attempts

        def _before(retry_state: RetryCallState) -> None:
            logger.info(
                f"Attempting {operation_name} "
                f"(Attempt {retry_state.attempt_number}/{max_attempts})"
            )

        def _after(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            logger.error(f"{operation_name} failed: {error}")

        def _before_sleep(retry_state: RetryCallState) -> None:
            logger.info(f"Waiting {self.delay_seconds:g} seconds before retry...")

        retrying = Retrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_fixed(self.delay_seconds),
            retry=retry_if_exception_type(Exception),
            before=_before,
            after=_after,
            before_sleep=_before_sleep,
            sleep=self.sleep,
        )

        try:
            result = retrying(operation)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            raise RetryExhausted(operation_name, max_attempts, last_error) from last_error

        logger.info(f"{operation_name} completed successfully")
        return result
