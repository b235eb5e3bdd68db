"""Background watchers that turn status-directory signals into state changes."""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, Optional

from ...launch.launcher import CONTROLLER_LOG, LaunchHandle, Launcher
from ...launch.status import (
    PHASE_FINISHED,
    PHASE_RUNNING,
    STDERR,
    read_exit,
    read_heartbeat,
    tail,
)
from .models import JobRecord, JobState
from .tracker import JobTracker

logger = logging.getLogger(__name__)


class JobMonitor:
    """One polling task per live job.

    Heartbeat ``phase=running`` moves a job to Running; the ``exit`` file
    (or the controller vanishing without one) ends it.
    """

    def __init__(self, tracker: JobTracker, launcher: Launcher, poll_interval: float = 1.0) -> None:
        self._tracker = tracker
        self._launcher = launcher
        self._poll = poll_interval
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def watching(self) -> int:
        return len(self._tasks)

    def watch(self, rec: JobRecord, handle: Optional[LaunchHandle] = None) -> asyncio.Task:
        existing = self._tasks.get(rec.job_id)
        if existing is not None and not existing.done():
            return existing
        task = asyncio.create_task(self._watch(rec, handle))
        self._tasks[rec.job_id] = task
        task.add_done_callback(lambda _t, jid=rec.job_id: self._tasks.pop(jid, None))
        return task

    async def resume(self) -> int:
        """Re-attach to jobs left incomplete by a previous process.

        Callbacks for jobs that finished without a recorded delivery outcome
        are scheduled again.  Returns the number of jobs being watched.
        """
        pending = await self._tracker.store.incomplete()
        for rec in pending:
            self.watch(rec)
        if pending:
            logger.info("Resumed monitoring of %d incomplete job(s)", len(pending))
        await self._tracker.redeliver_pending()
        return len(pending)

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _watch(self, rec: JobRecord, handle: Optional[LaunchHandle]) -> None:
        job_id = rec.job_id
        status_dir = Path(rec.status_dir)
        waiter: Optional[asyncio.Task] = None
        if handle is not None and handle.process is not None:
            waiter = asyncio.create_task(self._launcher.wait(handle))
        last_pct = rec.percent_complete
        running = rec.state == JobState.running
        try:
            while True:
                hb = read_heartbeat(status_dir)
                if hb is not None and hb.phase in (PHASE_RUNNING, PHASE_FINISHED):
                    if not running or hb.percent_complete != last_pct:
                        await self._tracker.update_state(
                            job_id,
                            JobState.running,
                            percent_complete=hb.percent_complete,
                            phase=PHASE_RUNNING,
                        )
                        running = True
                        last_pct = hb.percent_complete

                code = read_exit(status_dir)
                if code is not None:
                    await self._finish(job_id, code, status_dir)
                    break

                gone = waiter.done() if waiter is not None else not self._launcher.alive(rec.pid)
                if gone:
                    code = read_exit(status_dir)
                    if code is not None:
                        await self._finish(job_id, code, status_dir)
                    else:
                        rc = waiter.result() if waiter is not None else None
                        await self._lost(job_id, rc, status_dir)
                    break
                await asyncio.sleep(self._poll)
            if waiter is not None:
                await waiter
        except asyncio.CancelledError:
            if waiter is not None:
                waiter.cancel()
            raise
        except Exception:
            logger.exception("Monitor for %s crashed", job_id)
            if waiter is not None:
                waiter.cancel()
        finally:
            if handle is None:
                self._launcher.release(job_id)

    async def _finish(self, job_id: str, code: int, status_dir: Path) -> None:
        rec = await self._tracker.get(job_id)
        if rec.state.terminal:
            logger.debug("Job %s exited with %s after reaching %s", job_id, code, rec.state.value)
            return
        if code == 0:
            if rec.state == JobState.submitted:
                await self._tracker.update_state(job_id, JobState.running, phase=PHASE_RUNNING)
            await self._tracker.update_state(
                job_id, JobState.succeeded, exit_code=0, phase=PHASE_FINISHED
            )
        else:
            summary = tail(status_dir, STDERR, 500) or f"Runner exited with code {code}"
            await self._tracker.update_state(
                job_id, JobState.failed, exit_code=code, phase=PHASE_FINISHED, error=summary
            )

    async def _lost(self, job_id: str, rc: Optional[int], status_dir: Path) -> None:
        rec = await self._tracker.get(job_id)
        if rec.state.terminal:
            return
        detail = tail(status_dir, CONTROLLER_LOG, 500)
        error = f"Controller exited without an exit status (rc={rc})"
        if detail:
            error = f"{error}: {detail}"
        logger.error("Job %s lost: %s", job_id, error)
        await self._tracker.update_state(
            job_id, JobState.failed, exit_code=rc, phase=PHASE_FINISHED, error=error
        )
