"""Start the controller process for a job, detached from the request."""
from __future__ import annotations

import asyncio
import logging
import os
import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ..api.errors import BusyException, ExecuteException
from ..config import LauncherConfig
from .status import PHASE_SUBMITTED, HEARTBEAT, Heartbeat, write_heartbeat

logger = logging.getLogger(__name__)

CONTROLLER_MODULE = "batchgate.launch.controller"
CONTROLLER_LOG = "controller.log"

# Directory that holds the ``batchgate`` package, so the controller imports
# the same code as the server regardless of CWD.
_PACKAGE_PARENT = str(Path(__file__).resolve().parents[2])


@dataclass
class LaunchSpec:
    """Everything the launcher needs for one job.  Owned by one enqueue call."""

    job_id: str
    argv: List[str]
    user: str
    status_dir: Path
    workdir: Path
    files: List[str] = field(default_factory=list)
    credentials_token: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)


@dataclass
class LaunchHandle:
    job_id: str
    pid: int
    status_dir: Path
    process: Optional[asyncio.subprocess.Process] = None


class Launcher:
    """Spawns ``python -m batchgate.launch.controller`` per job.

    The controller is the wrapper that runs the real pig/hive/hadoop command
    and reports through the status directory; the launcher only returns once
    the operating system has accepted the process.
    """

    def __init__(self, cfg: LauncherConfig) -> None:
        self.cfg = cfg
        self._running: Dict[str, LaunchHandle] = {}

    @property
    def running_count(self) -> int:
        return len(self._running)

    def _environment(self, spec: LaunchSpec) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(spec.env)
        env["BATCHGATE_JOB_ID"] = spec.job_id
        env["BATCHGATE_USER"] = spec.user
        env["HADOOP_USER_NAME"] = spec.user
        env["BATCHGATE_HEARTBEAT_INTERVAL"] = str(self.cfg.heartbeat_interval)
        if spec.credentials_token:
            env["BATCHGATE_DELEGATION_TOKEN"] = spec.credentials_token
        pythonpath = env.get("PYTHONPATH")
        env["PYTHONPATH"] = _PACKAGE_PARENT + (os.pathsep + pythonpath if pythonpath else "")
        return env

    async def launch(self, spec: LaunchSpec) -> LaunchHandle:
        """Start the controller and write the initial heartbeat.

        Raises
        ------
        BusyException
            ``max_running`` controllers are already alive.
        ExecuteException
            The process could not be started.
        """
        if len(self._running) >= self.cfg.max_running:
            raise BusyException(
                f"Too many running jobs ({self.cfg.max_running}). Try again later."
            )
        try:
            spec.status_dir.mkdir(parents=True, exist_ok=True)
            spec.workdir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ExecuteException(f"Cannot prepare directories for {spec.job_id}: {exc}") from exc

        write_heartbeat(spec.status_dir, Heartbeat(phase=PHASE_SUBMITTED))
        cmd = [self.cfg.python_executable, "-m", CONTROLLER_MODULE, *spec.argv]
        logger.info("Launching %s for %s: %s", spec.job_id, spec.user, " ".join(cmd))
        try:
            with open(spec.status_dir / CONTROLLER_LOG, "ab") as log_fh:
                proc = await asyncio.create_subprocess_exec(
                    *cmd,
                    cwd=str(spec.workdir),
                    env=self._environment(spec),
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=log_fh,
                    stderr=log_fh,
                    start_new_session=True,
                )
        except OSError as exc:
            (spec.status_dir / HEARTBEAT).unlink(missing_ok=True)
            logger.error("Launch of %s failed: %s", spec.job_id, exc)
            raise ExecuteException(f"Unable to start job {spec.job_id}: {exc}") from exc

        handle = LaunchHandle(
            job_id=spec.job_id, pid=proc.pid, status_dir=spec.status_dir, process=proc
        )
        self._running[spec.job_id] = handle
        return handle

    async def wait(self, handle: LaunchHandle) -> Optional[int]:
        """Wait for the controller to exit; None when the handle has no process."""
        if handle.process is None:
            return None
        try:
            return await handle.process.wait()
        finally:
            self.release(handle.job_id)

    def release(self, job_id: str) -> None:
        self._running.pop(job_id, None)

    def kill(self, pid: Optional[int]) -> bool:
        """Send SIGTERM to the controller's process group.

        Returns False when there is nothing left to kill.
        """
        return self._signal_group(pid, signal.SIGTERM)

    def escalate(self, job_id: str, pid: Optional[int]) -> bool:
        """SIGKILL the process group of a controller that outlived its grace period."""
        handle = self._running.get(job_id)
        if handle is not None and handle.process is not None:
            if handle.process.returncode is not None:
                return False
        elif not self.alive(pid):
            return False
        logger.warning("Job %s ignored SIGTERM; sending SIGKILL", job_id)
        return self._signal_group(pid, signal.SIGKILL)

    @staticmethod
    def _signal_group(pid: Optional[int], sig: int) -> bool:
        if not pid:
            return False
        try:
            os.killpg(pid, sig)
        except ProcessLookupError:
            return False
        except PermissionError:
            logger.warning("Not permitted to signal process group %s", pid)
            return False
        return True

    @staticmethod
    def alive(pid: Optional[int]) -> bool:
        if not pid:
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True
