"""Job data models."""
from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobType(str, enum.Enum):
    pig = "pig"
    hive = "hive"
    streaming = "streaming"
    jar = "jar"


class JobState(str, enum.Enum):
    submitted = "submitted"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    killed = "killed"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: FrozenSet[JobState] = frozenset(
    {JobState.succeeded, JobState.failed, JobState.killed}
)

# Allowed forward moves.  Anything else (including leaving a terminal state)
# is rejected by the tracker.
TRANSITIONS: Dict[JobState, FrozenSet[JobState]] = {
    JobState.submitted: frozenset({JobState.running, JobState.failed, JobState.killed}),
    JobState.running: frozenset({JobState.succeeded, JobState.failed, JobState.killed}),
    JobState.succeeded: frozenset(),
    JobState.failed: frozenset(),
    JobState.killed: frozenset(),
}


class JobRequest(BaseModel):
    """An accepted description of one batch computation.  Immutable."""

    model_config = ConfigDict(frozen=True)

    user: str
    job_type: JobType
    doas: Optional[str] = None
    execute: Optional[str] = None
    src_file: Optional[str] = None
    args: Tuple[str, ...] = ()
    files: Tuple[str, ...] = ()
    defines: Tuple[str, ...] = ()
    # streaming
    inputs: Tuple[str, ...] = ()
    output: Optional[str] = None
    mapper: Optional[str] = None
    reducer: Optional[str] = None
    # jar
    jar: Optional[str] = None
    main_class: Optional[str] = None
    statusdir: Optional[str] = None
    callback: Optional[str] = None
    completion_token: Optional[str] = None

    @property
    def run_as(self) -> str:
        """Identity the job executes under."""
        return self.doas or self.user


class JobRecord(BaseModel):
    """Persistent representation of a launched job."""

    job_id: str
    user: str
    job_type: JobType
    state: JobState = JobState.submitted
    created_at: str = Field(default_factory=utcnow)
    updated_at: str = Field(default_factory=utcnow)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    status_dir: str
    callback: Optional[str] = None
    completion_token: Optional[str] = None
    percent_complete: Optional[float] = None
    phase: str = ""
    exit_code: Optional[int] = None
    error: Optional[str] = None
    pid: Optional[int] = None
    notification_failed: bool = False
    callback_attempts: int = 0
    notified_at: Optional[str] = None


class CallbackEvent(BaseModel):
    """Payload POSTed to the caller's callback URL on a terminal transition."""

    job_id: str
    state: JobState
    exit_code: Optional[int] = None
    error: Optional[str] = None
    completion_token: Optional[str] = None
    completed_at: Optional[str] = None

    @classmethod
    def from_record(cls, rec: JobRecord) -> "CallbackEvent":
        return cls(
            job_id=rec.job_id,
            state=rec.state,
            exit_code=rec.exit_code,
            error=rec.error,
            completion_token=rec.completion_token,
            completed_at=rec.completed_at,
        )


class EnqueueResult(BaseModel):
    job_id: str
    state: JobState
    status_dir: str


class JobFilter(BaseModel):
    """Caller-scoped listing filter."""

    user: Optional[str] = None
    states: List[JobState] = Field(default_factory=list)
    limit: int = 50
