"""Service wiring and FastAPI ``Depends()`` providers.

Components are built once per application by ``build_services`` and kept
on ``app.state.services``; handlers reach them through the providers
below instead of module-level singletons.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from fastapi import Request

from ...config import AppConfig
from ...launch.launcher import Launcher
from ...launch.stager import FileStager, build_stager
from ..config import ApiSettings
from ..jobs.authz import ProxyUserPolicy
from ..jobs.delegator import EnqueueController
from ..jobs.monitor import JobMonitor
from ..jobs.notifier import CallbackPolicy, CompletionNotifier
from ..jobs.store import JobStore
from ..jobs.tracker import JobTracker


@lru_cache
def get_settings() -> ApiSettings:
    return ApiSettings()


@dataclass
class Services:
    cfg: AppConfig
    store: JobStore
    notifier: CompletionNotifier
    tracker: JobTracker
    stager: FileStager
    launcher: Launcher
    monitor: JobMonitor
    controller: EnqueueController

    async def start(self) -> None:
        await self.store.initialize()
        await self.monitor.resume()

    async def stop(self) -> None:
        await self.monitor.stop()
        await self.notifier.close()
        await self.store.close()


def build_services(
    cfg: AppConfig,
    db_path: str,
    *,
    stager: FileStager | None = None,
    launcher: Launcher | None = None,
    notifier: CompletionNotifier | None = None,
) -> Services:
    """Wire every component from one ``AppConfig``."""
    store = JobStore(db_path)
    notifier = notifier or CompletionNotifier(
        CallbackPolicy(
            max_attempts=cfg.callback.max_attempts,
            backoff_seconds=cfg.callback.backoff_seconds,
            timeout_seconds=cfg.callback.timeout_seconds,
        )
    )
    tracker = JobTracker(store, notifier)
    stager = stager or build_stager(cfg.staging)
    launcher = launcher or Launcher(cfg.launcher)
    monitor = JobMonitor(tracker, launcher, cfg.launcher.poll_interval)
    policy = ProxyUserPolicy(cfg.proxy.proxy_users, cfg.proxy.banned_users)
    controller = EnqueueController(cfg, tracker, stager, launcher, monitor, policy)
    return Services(
        cfg=cfg,
        store=store,
        notifier=notifier,
        tracker=tracker,
        stager=stager,
        launcher=launcher,
        monitor=monitor,
        controller=controller,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_tracker(request: Request) -> JobTracker:
    return get_services(request).tracker


def get_controller(request: Request) -> EnqueueController:
    return get_services(request).controller
