"""
Dispatch — moves queued messages out through the remote session.

- DispatchWorker polls the store on a fixed interval, one cycle at a time
- Retry policies decide whether failed messages ever go back to queued
"""
from job_queue.dispatcher import DispatchWorker, CycleResult
from job_queue.retry import RetryPolicy, NoRetryPolicy, BoundedRetryPolicy, create_retry_policy

__all__ = [
    "DispatchWorker", "CycleResult",
    "RetryPolicy", "NoRetryPolicy", "BoundedRetryPolicy", "create_retry_policy",
]
