"""
Extraction control: retries, fallbacks and batch scheduling
"""

from .retry_handler import RetryHandler, RetryConfig, RetryAttempt
from .fallback_chain import (
    FallbackChain,
    FallbackResult,
    FallbackStrategy,
    MinimalObservationStrategy,
    PublicDatasetStrategy,
    SimplifiedQueryStrategy,
    is_minimal,
)
from .batch_processor import (
    BatchMetrics,
    BatchRecord,
    BatchScheduler,
    BatchSchedulerConfig,
    BatchStatus,
)

__all__ = [
    "RetryHandler",
    "RetryConfig",
    "RetryAttempt",
    "FallbackChain",
    "FallbackResult",
    "FallbackStrategy",
    "MinimalObservationStrategy",
    "PublicDatasetStrategy",
    "SimplifiedQueryStrategy",
    "is_minimal",
    "BatchMetrics",
    "BatchRecord",
    "BatchScheduler",
    "BatchSchedulerConfig",
    "BatchStatus",
]
