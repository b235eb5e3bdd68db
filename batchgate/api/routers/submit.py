"""Job submission endpoints, one per job type."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from ..deps.auth import require_auth
from ..deps.providers import get_controller
from ..jobs.delegator import EnqueueController
from ..schemas.envelope import ApiResponse
from ..schemas.jobs import HiveSubmit, JarSubmit, PigSubmit, StreamingSubmit

router = APIRouter(prefix="/api/jobs", tags=["submit"], dependencies=[Depends(require_auth)])


async def _enqueue(body, controller: EnqueueController) -> ApiResponse:
    result = await controller.enqueue(body.to_request())
    return ApiResponse.success(result.model_dump(mode="json"))


@router.post("/pig")
async def submit_pig(
    body: PigSubmit,
    controller: EnqueueController = Depends(get_controller),
) -> ApiResponse:
    return await _enqueue(body, controller)


@router.post("/hive")
async def submit_hive(
    body: HiveSubmit,
    controller: EnqueueController = Depends(get_controller),
) -> ApiResponse:
    return await _enqueue(body, controller)


@router.post("/streaming")
async def submit_streaming(
    body: StreamingSubmit,
    controller: EnqueueController = Depends(get_controller),
) -> ApiResponse:
    return await _enqueue(body, controller)


@router.post("/jar")
async def submit_jar(
    body: JarSubmit,
    controller: EnqueueController = Depends(get_controller),
) -> ApiResponse:
    return await _enqueue(body, controller)
