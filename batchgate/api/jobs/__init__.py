"""Job registry, completion callbacks and enqueue orchestration."""
from .models import CallbackEvent, EnqueueResult, JobRecord, JobRequest, JobState, JobType
from .notifier import CallbackPolicy, CompletionNotifier
from .store import JobStore
from .tracker import JobTracker

__all__ = [
    "CallbackEvent",
    "CallbackPolicy",
    "CompletionNotifier",
    "EnqueueResult",
    "JobRecord",
    "JobRequest",
    "JobState",
    "JobStore",
    "JobTracker",
    "JobType",
]
