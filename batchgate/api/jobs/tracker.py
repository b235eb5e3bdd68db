"""Job registry: identifiers, the state machine and event fan-out."""
from __future__ import annotations

import asyncio
import itertools
import logging
import secrets
import time
from typing import Any, AsyncGenerator, Dict, List, Optional

from ..errors import JobNotFoundError
from .models import (
    TRANSITIONS,
    CallbackEvent,
    JobFilter,
    JobRecord,
    JobRequest,
    JobState,
    utcnow,
)
from .notifier import CompletionNotifier, DeliveryOutcome
from .store import JobStore

logger = logging.getLogger(__name__)


class JobTracker:
    """Owns every write to a ``JobRecord``.

    Writes to one job are serialized by a per-id ``asyncio.Lock``; different
    jobs update in parallel.  The notifier is scheduled exactly once, by the
    write that moves a job into a terminal state.
    """

    def __init__(
        self,
        store: JobStore,
        notifier: Optional[CompletionNotifier] = None,
        id_prefix: Optional[str] = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._locks: Dict[str, asyncio.Lock] = {}
        self._event_subscribers: Dict[str, list] = {}
        # The random part keeps ids unique across restarts within one second.
        self._prefix = id_prefix or (
            f"{time.strftime('%Y%m%d%H%M%S', time.gmtime())}_{secrets.token_hex(3)}"
        )
        self._seq = itertools.count(1)
        if notifier is not None:
            notifier.set_outcome_hook(self.record_notification)

    @property
    def store(self) -> JobStore:
        return self._store

    # ── Identifiers & registration ───────────────────────────────────

    def allocate_id(self) -> str:
        """Return a fresh job identifier.

        The prefix pairs the start time with random bits, so a restarted
        service sharing the same database never hands out an old id.
        """
        return f"job_{self._prefix}_{next(self._seq):04d}"

    async def register(
        self,
        request: JobRequest,
        *,
        job_id: Optional[str] = None,
        status_dir: str,
        pid: Optional[int] = None,
    ) -> JobRecord:
        """Persist a new record in state ``submitted``.

        The insert is committed before returning, so a following ``get``
        always sees it.
        """
        rec = JobRecord(
            job_id=job_id or self.allocate_id(),
            user=request.run_as,
            job_type=request.job_type,
            state=JobState.submitted,
            status_dir=status_dir,
            callback=request.callback,
            completion_token=request.completion_token,
            pid=pid,
            phase="submitted",
        )
        async with self._lock(rec.job_id):
            await self._store.insert(rec)
        logger.info("Registered %s (%s) for %s", rec.job_id, rec.job_type.value, rec.user)
        await self._emit(rec.job_id, {"event": "submitted", "job_id": rec.job_id})
        return rec

    # ── Queries ──────────────────────────────────────────────────────

    async def get(self, job_id: str) -> JobRecord:
        rec = await self._store.get(job_id)
        if rec is None:
            raise JobNotFoundError(f"Job '{job_id}' not found")
        return rec

    async def list(self, flt: Optional[JobFilter] = None) -> List[JobRecord]:
        flt = flt or JobFilter()
        return await self._store.list_jobs(user=flt.user, states=flt.states, limit=flt.limit)

    # ── Transitions ──────────────────────────────────────────────────

    async def update_state(
        self,
        job_id: str,
        state: JobState,
        *,
        percent_complete: Optional[float] = None,
        phase: Optional[str] = None,
        exit_code: Optional[int] = None,
        error: Optional[str] = None,
    ) -> JobRecord:
        """Move a job forward through the state machine.

        Repeating the current state only refreshes progress.  Updates
        against a terminal record, and moves backwards, change nothing and
        are logged as anomalies.

        Raises
        ------
        JobNotFoundError
            Unknown job id.
        """
        await self.get(job_id)
        changed = entered_terminal = False
        async with self._lock(job_id):
            rec = await self.get(job_id)
            if rec.state.terminal:
                if state != rec.state or percent_complete is not None:
                    logger.warning(
                        "Ignoring update of %s to %s: already %s",
                        job_id, state.value, rec.state.value,
                    )
            elif state != rec.state and state not in TRANSITIONS[rec.state]:
                logger.warning(
                    "Ignoring illegal transition of %s: %s -> %s",
                    job_id, rec.state.value, state.value,
                )
            else:
                now = utcnow()
                if state != rec.state:
                    logger.info("Job %s: %s -> %s", job_id, rec.state.value, state.value)
                    rec.state = state
                    if state == JobState.running and rec.started_at is None:
                        rec.started_at = now
                    if state.terminal:
                        rec.completed_at = now
                        entered_terminal = True
                if percent_complete is not None:
                    rec.percent_complete = percent_complete
                if phase is not None:
                    rec.phase = phase
                if exit_code is not None:
                    rec.exit_code = exit_code
                if error is not None:
                    rec.error = error
                if state == JobState.succeeded:
                    rec.percent_complete = 100.0
                rec.updated_at = now
                await self._store.save(rec)
                changed = True

        if changed:
            await self._emit(job_id, {
                "event": rec.state.value,
                "job_id": job_id,
                "percent_complete": rec.percent_complete,
            })
        if entered_terminal:
            await self._emit(job_id, {"event": "done", "job_id": job_id})
            if self._notifier is not None:
                self._notifier.schedule(rec, CallbackEvent.from_record(rec))
        self._release_if_settled(rec)
        return rec

    async def kill(self, job_id: str, reason: str = "Killed by user") -> JobRecord:
        """Mark a job killed.  A terminal job is returned unchanged."""
        rec = await self.get(job_id)
        if rec.state.terminal:
            logger.info("Kill of %s ignored: already %s", job_id, rec.state.value)
            return rec
        return await self.update_state(job_id, JobState.killed, phase="killed", error=reason)

    async def record_notification(self, job_id: str, outcome: DeliveryOutcome) -> None:
        """Store the result of the callback sequence; never touches ``state``."""
        if await self._store.get(job_id) is None:
            logger.warning("Callback outcome for unknown job %s", job_id)
            return
        async with self._lock(job_id):
            rec = await self._store.get(job_id)
            rec.callback_attempts = outcome.attempts
            if outcome.delivered:
                rec.notified_at = utcnow()
            else:
                rec.notification_failed = True
            rec.updated_at = utcnow()
            await self._store.save(rec)
        self._locks.pop(job_id, None)

    async def redeliver_pending(self) -> int:
        """Schedule callbacks for terminal jobs whose delivery never finished.

        Covers a service stopped between the terminal write and the end of
        the delivery sequence.
        """
        if self._notifier is None:
            return 0
        pending = await self._store.undelivered()
        for rec in pending:
            self._notifier.schedule(rec, CallbackEvent.from_record(rec))
        if pending:
            logger.info("Rescheduled %d undelivered callback(s)", len(pending))
        return len(pending)

    # ── Locks ────────────────────────────────────────────────────────

    def _lock(self, job_id: str) -> asyncio.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = self._locks[job_id] = asyncio.Lock()
        return lock

    def _release_if_settled(self, rec: JobRecord) -> None:
        # A terminal record only changes again when its callback outcome lands.
        if not rec.state.terminal:
            return
        if self._notifier is not None and self._notifier.in_flight(rec.job_id):
            return
        self._locks.pop(rec.job_id, None)

    # ── Event streaming ──────────────────────────────────────────────

    async def subscribe_events(self, job_id: str) -> AsyncGenerator[Dict[str, Any], None]:
        """Yield events for a job until it reaches a terminal state."""
        queue: asyncio.Queue = asyncio.Queue()
        self._event_subscribers.setdefault(job_id, []).append(queue)
        try:
            rec = await self.get(job_id)
            yield {"event": "status", "data": rec.model_dump(mode="json")}
            if rec.state.terminal:
                return
            while True:
                event = await queue.get()
                yield event
                if event.get("event") == "done":
                    break
        finally:
            subs = self._event_subscribers.get(job_id, [])
            if queue in subs:
                subs.remove(queue)
            if not subs:
                self._event_subscribers.pop(job_id, None)

    async def _emit(self, job_id: str, event: Dict[str, Any]) -> None:
        for q in self._event_subscribers.get(job_id, []):
            await q.put(event)
