"""
Retry Handler - Exponential backoff with jitter around a single source call
"""

import asyncio
import random
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx
import structlog
from pydantic import BaseModel, Field

from gymcrawl.core.exceptions import (
    BlockedError,
    RetryExhaustedError,
    SourceRequestError,
    TransientNetworkError,
)

logger = structlog.get_logger(__name__)

T = TypeVar('T')


class RetryConfig(BaseModel):
    """Configuration for retry logic"""
    max_attempts: int = Field(default=3, ge=1)
    initial_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    min_delay_seconds: float = 0.0
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.1  # 10% jitter
    retry_on_http_codes: List[int] = Field(
        default_factory=lambda: [408, 429, 500, 502, 503, 504]
    )


class RetryAttempt(BaseModel):
    """Information about a retry attempt"""
    attempt_number: int
    delay_seconds: float
    error_message: str
    error_type: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    http_status_code: Optional[int] = None


class RetryHandler:
    """Retry executor that separates transient failures from hard ones"""

    def __init__(
        self,
        default_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.default_config = default_config or RetryConfig()
        self.retry_stats: Dict[str, Dict[str, Any]] = {}
        self._sleep = sleep

        logger.info("Retry handler initialized",
                    max_attempts=self.default_config.max_attempts,
                    initial_delay=self.default_config.initial_delay_seconds)

    async def execute_with_retry(
        self,
        operation: Callable[..., Awaitable[T]],
        operation_args: tuple = (),
        operation_kwargs: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
        custom_config: Optional[Dict[str, Any]] = None
    ) -> T:
        """
        Execute a coroutine function with retry logic

        Network errors, 5xx, 429 and 408 are retried with exponential
        backoff. BlockedError and any other failure propagate unchanged on
        the first occurrence.

        Args:
            operation: Coroutine function to execute
            operation_args: Arguments for the operation
            operation_kwargs: Keyword arguments for the operation
            request_id: Optional request identifier for tracking
            custom_config: Overrides for the default retry configuration

        Returns:
            Result of the operation

        Raises:
            RetryExhaustedError: If every attempt failed with a retryable error
        """
        config = self._merge_config(custom_config)
        operation_kwargs = operation_kwargs or {}

        start_time = datetime.utcnow()
        attempts: List[RetryAttempt] = []

        for attempt_num in range(1, config.max_attempts + 1):
            try:
                result = await operation(*operation_args, **operation_kwargs)
            except Exception as e:
                http_status_code = getattr(e, 'status_code', None)
                attempt = RetryAttempt(
                    attempt_number=attempt_num,
                    delay_seconds=0.0,
                    error_message=str(e),
                    error_type=type(e).__name__,
                    http_status_code=http_status_code
                )
                attempts.append(attempt)

                if not self.is_retryable(e, config):
                    self._record(request_id, False, attempt_num, start_time)
                    logger.info("Not retrying non-retryable error",
                                request_id=request_id,
                                error_type=attempt.error_type,
                                http_status_code=http_status_code,
                                attempt=attempt_num)
                    raise

                logger.warning("Operation failed",
                               request_id=request_id,
                               attempt=attempt_num,
                               error=attempt.error_message,
                               error_type=attempt.error_type,
                               http_status_code=http_status_code)

                if attempt_num < config.max_attempts:
                    delay = self._calculate_delay(attempt_num, config)
                    attempt.delay_seconds = delay
                    logger.info("Retrying after delay",
                                request_id=request_id,
                                next_attempt=attempt_num + 1,
                                delay_seconds=delay)
                    await self._sleep(delay)
                    continue

                self._record(request_id, False, attempt_num, start_time)
                logger.error("All retry attempts failed",
                             request_id=request_id,
                             total_attempts=len(attempts),
                             final_error=attempt.error_message)
                raise RetryExhaustedError(
                    f"Operation failed after {len(attempts)} attempts. "
                    f"Final error: {attempt.error_message}",
                    error_code="RETRY_EXHAUSTED",
                    details={
                        "attempts": len(attempts),
                        "last_error": attempt.error_message,
                        "last_error_type": attempt.error_type,
                        "http_status_code": http_status_code
                    }
                ) from e
            else:
                self._record(request_id, True, attempt_num, start_time)
                if attempt_num > 1:
                    logger.info("Operation succeeded after retry",
                                request_id=request_id,
                                attempt=attempt_num)
                return result

        # max_attempts >= 1 guarantees the loop returns or raises
        raise RetryExhaustedError("No attempts were made", error_code="RETRY_EXHAUSTED")

    def _merge_config(self, custom_config: Optional[Dict[str, Any]]) -> RetryConfig:
        """Merge custom configuration with defaults"""
        if not custom_config:
            return self.default_config
        config_dict = self.default_config.model_dump()
        config_dict.update(custom_config)
        return RetryConfig(**config_dict)

    def is_retryable(self, exception: Exception, config: Optional[RetryConfig] = None) -> bool:
        """Classify an exception as transient or not"""
        config = config or self.default_config

        if isinstance(exception, (BlockedError, SourceRequestError)):
            return False
        if isinstance(exception, TransientNetworkError):
            return True
        if isinstance(exception, httpx.TransportError):
            return True

        http_status_code = getattr(exception, 'status_code', None)
        if http_status_code is not None:
            return http_status_code in config.retry_on_http_codes
        return False

    def _calculate_delay(self, attempt_number: int, config: RetryConfig) -> float:
        """Jittered exponential delay for the next attempt"""
        base_delay = config.initial_delay_seconds * (config.backoff_multiplier ** (attempt_number - 1))
        jitter = base_delay * config.jitter_factor * random.uniform(-1, 1)
        delay = min(base_delay + jitter, config.max_delay_seconds)
        return max(delay, config.min_delay_seconds)

    def _record(self, request_id: Optional[str], success: bool, attempts: int, start_time: datetime):
        if request_id:
            total_time = (datetime.utcnow() - start_time).total_seconds()
            self._update_retry_stats(request_id, success, attempts, total_time)

    def _update_retry_stats(
        self,
        request_id: str,
        success: bool,
        attempts: int,
        total_time: float
    ):
        """Update retry statistics"""
        if request_id not in self.retry_stats:
            self.retry_stats[request_id] = {
                "total_executions": 0,
                "successful_executions": 0,
                "failed_executions": 0,
                "total_attempts": 0,
                "total_time": 0.0,
                "average_attempts": 0.0,
                "average_time": 0.0
            }

        stats = self.retry_stats[request_id]
        stats["total_executions"] += 1
        stats["total_attempts"] += attempts
        stats["total_time"] += total_time

        if success:
            stats["successful_executions"] += 1
        else:
            stats["failed_executions"] += 1

        stats["average_attempts"] = stats["total_attempts"] / stats["total_executions"]
        stats["average_time"] = stats["total_time"] / stats["total_executions"]

    def get_retry_stats(self, request_id: Optional[str] = None) -> Dict[str, Any]:
        """Get retry statistics"""
        if request_id:
            return self.retry_stats.get(request_id, {})
        return self.retry_stats.copy()
