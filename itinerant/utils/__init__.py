from .retry import RetryPolicy, compute_backoff, schedule_retry

__all__ = ["RetryPolicy", "compute_backoff", "schedule_retry"]
