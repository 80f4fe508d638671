"""
Offline Submission Queue

Durable store of submissions that could not reach the backend, a
processor that drains it with bounded exponential backoff, and the
connectivity monitor that triggers drains.
"""

from expense_capture.submission_queue.connectivity import (
    ConnectivityMonitor,
    ConnectivityProvider,
    ManualConnectivity,
    ProbeConnectivity,
)
from expense_capture.submission_queue.processor import DrainResult, QueueProcessor
from expense_capture.submission_queue.retry import (
    EXHAUSTED_MESSAGE,
    InvalidTransitionError,
    RetryEvent,
    RetryPolicy,
    RetryState,
)
from expense_capture.submission_queue.store import SubmissionQueueStore

__all__ = [
    "ConnectivityMonitor",
    "ConnectivityProvider",
    "DrainResult",
    "EXHAUSTED_MESSAGE",
    "InvalidTransitionError",
    "ManualConnectivity",
    "ProbeConnectivity",
    "QueueProcessor",
    "RetryEvent",
    "RetryPolicy",
    "RetryState",
    "SubmissionQueueStore",
]
