"""Job status, listing, events and kill endpoints."""
from __future__ import annotations

import json
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sse_starlette.sse import EventSourceResponse

from ..deps.auth import require_auth
from ..deps.providers import get_controller, get_tracker
from ..jobs.delegator import EnqueueController
from ..jobs.models import JobFilter, JobState
from ..jobs.tracker import JobTracker
from ..schemas.envelope import ApiResponse

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.get("")
async def list_jobs(
    user: str = Query(..., min_length=1),
    state: List[JobState] = Query(default=[]),
    limit: int = Query(default=50, ge=1, le=1000),
    tracker: JobTracker = Depends(get_tracker),
) -> ApiResponse:
    jobs = await tracker.list(JobFilter(user=user, states=state, limit=limit))
    return ApiResponse.success([j.model_dump(mode="json") for j in jobs])


@router.get("/{job_id}")
async def get_job(
    job_id: str,
    tracker: JobTracker = Depends(get_tracker),
) -> ApiResponse:
    rec = await tracker.get(job_id)
    return ApiResponse.success(rec.model_dump(mode="json"))


@router.get("/{job_id}/events")
async def job_events(
    job_id: str,
    tracker: JobTracker = Depends(get_tracker),
):
    await tracker.get(job_id)

    async def _generate():
        async for event in tracker.subscribe_events(job_id):
            yield {"event": event.get("event", "message"), "data": json.dumps(event, default=str)}

    return EventSourceResponse(_generate())


@router.post("/{job_id}/kill", dependencies=[Depends(require_auth)])
async def kill_job(
    job_id: str,
    user: Optional[str] = None,
    controller: EnqueueController = Depends(get_controller),
) -> ApiResponse:
    rec = await controller.kill(job_id, user=user)
    return ApiResponse.success(rec.model_dump(mode="json"))
