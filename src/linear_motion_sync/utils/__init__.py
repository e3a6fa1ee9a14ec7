"""Utility modules for the Linear/Motion synchronizer."""

from linear_motion_sync.utils.http import RateLimiter, RetryPolicy, is_retryable_error
from linear_motion_sync.utils.logging import get_logger, setup_logging
from linear_motion_sync.utils.storage import StorageManager

__all__ = [
    "get_logger",
    "setup_logging",
    "StorageManager",
    "RateLimiter",
    "RetryPolicy",
    "is_retryable_error",
]
