"""Utility functions for Gmail Thread Sync."""

from gmail_thread_sync.utils.retry import RetryPolicy, is_retryable, with_retry

__all__ = ["RetryPolicy", "is_retryable", "with_retry"]
