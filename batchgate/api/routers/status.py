"""Service liveness."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from ... import __version__
from ..deps.providers import Services, get_services
from ..schemas.envelope import ApiResponse

router = APIRouter(prefix="/api", tags=["status"])


@router.get("/status")
async def status(services: Services = Depends(get_services)) -> ApiResponse:
    return ApiResponse.success({
        "status": "ok",
        "version": __version__,
        "running": services.launcher.running_count,
        "watching": services.monitor.watching,
        "callbacks_pending": services.notifier.pending,
    })
