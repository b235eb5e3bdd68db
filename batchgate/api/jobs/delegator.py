"""Enqueue controller: authorize, build, stage, launch, register."""
from __future__ import annotations

import asyncio
import logging
import secrets
from pathlib import Path, PurePosixPath
from typing import Optional

from ...config import AppConfig
from ...launch.args import build_launch_args
from ...launch.launcher import LaunchSpec, Launcher
from ...launch.stager import FileStager
from ..errors import BadParam, ExecuteException
from .authz import ProxyUserPolicy
from .models import EnqueueResult, JobRecord, JobRequest, JobState
from .monitor import JobMonitor
from .notifier import validate_callback
from .tracker import JobTracker

logger = logging.getLogger(__name__)


class EnqueueController:
    """Top-level orchestration for one submission.

    Everything up to the launcher accepting the controller process runs on
    the caller's request; the rest happens in ``JobMonitor`` and
    ``CompletionNotifier`` tasks.  A request that fails before or during
    launch leaves no ``JobRecord`` behind.
    """

    def __init__(
        self,
        cfg: AppConfig,
        tracker: JobTracker,
        stager: FileStager,
        launcher: Launcher,
        monitor: JobMonitor,
        policy: ProxyUserPolicy,
    ) -> None:
        self.cfg = cfg
        self.tracker = tracker
        self.stager = stager
        self.launcher = launcher
        self.monitor = monitor
        self.policy = policy

    def _status_dir(self, request: JobRequest, job_id: str) -> Path:
        root = Path(self.cfg.launcher.status_root) / request.run_as
        if not request.statusdir:
            path = root / job_id
            if path.exists() and any(path.iterdir()):
                raise ExecuteException(f"Status directory for {job_id} already exists")
            return path
        rel = PurePosixPath(request.statusdir.strip())
        if rel.is_absolute() or ".." in rel.parts or not rel.parts:
            raise BadParam(f"statusdir must be a relative path without '..': {request.statusdir!r}")
        path = root.joinpath(*rel.parts)
        if path.exists() and any(path.iterdir()):
            raise BadParam(f"statusdir {request.statusdir!r} is already in use")
        return path

    async def enqueue(self, request: JobRequest) -> EnqueueResult:
        """Start *request* and return its identifier without waiting for it.

        Raises
        ------
        NotAuthorized
            ``request.user`` may not act as ``request.doas``.
        BadParam, ResourceNotFound
            Invalid request or missing inputs; nothing was launched.
        ExecuteException, QueueException
            The launcher refused or failed; nothing was registered.
        """
        run_as = self.policy.check(request.user, request.doas)
        validate_callback(request.callback)
        job_id = self.tracker.allocate_id()
        status_dir = self._status_dir(request, job_id)

        launch_args = await asyncio.to_thread(
            build_launch_args, request, self.cfg, self.stager, job_id, str(status_dir)
        )
        spec = LaunchSpec(
            job_id=job_id,
            argv=launch_args.argv,
            user=run_as,
            status_dir=status_dir,
            workdir=Path(self.cfg.launcher.work_root) / job_id,
            files=launch_args.files,
            credentials_token=secrets.token_urlsafe(24),
        )
        handle = await self.launcher.launch(spec)
        try:
            rec = await self.tracker.register(
                request, job_id=job_id, status_dir=str(status_dir), pid=handle.pid
            )
        except Exception:
            logger.error("Registration of %s failed; terminating controller", job_id)
            self.launcher.kill(handle.pid)
            raise
        self.monitor.watch(rec, handle)
        return EnqueueResult(job_id=rec.job_id, state=rec.state, status_dir=rec.status_dir)

    async def kill(self, job_id: str, user: Optional[str] = None) -> JobRecord:
        """Kill a job.  Killing a finished job is a no-op that returns it unchanged."""
        rec = await self.tracker.get(job_id)
        if user is not None:
            self.policy.check(user, rec.user)
        if rec.state.terminal:
            return rec
        # Record the kill first so the monitor never reports the signalled
        # controller's exit code as a failure.
        rec = await self.tracker.kill(job_id)
        if rec.state != JobState.killed:
            return rec
        if self.launcher.kill(rec.pid):
            asyncio.get_running_loop().call_later(
                self.cfg.launcher.kill_grace_seconds, self.launcher.escalate, job_id, rec.pid
            )
        else:
            logger.info("Controller for %s already gone", job_id)
        return rec
