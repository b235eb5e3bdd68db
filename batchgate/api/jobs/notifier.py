"""Deliver completion callbacks to caller-supplied URLs."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

import requests

from ..errors import BadParam
from .models import CallbackEvent, JobRecord

logger = logging.getLogger(__name__)

JOB_ID_PLACEHOLDER = "$jobId"

_TRANSIENT_STATUS = (429, 500, 502, 503, 504)


@dataclass
class CallbackPolicy:
    """HTTP retry settings for completion callbacks."""
    max_attempts: int = 5
    backoff_seconds: float = 1.0
    timeout_seconds: float = 10.0


@dataclass
class DeliveryOutcome:
    delivered: bool
    attempts: int
    last_error: Optional[str] = None


def callback_url(template: str, job_id: str) -> str:
    """Substitute ``$jobId`` in the caller's URL."""
    return template.replace(JOB_ID_PLACEHOLDER, job_id)


def validate_callback(url: Optional[str]) -> Optional[str]:
    """Reject callback URLs that can never be delivered."""
    if not url:
        return None
    if not url.lower().startswith(("http://", "https://")):
        raise BadParam(f"Callback URL must be http(s): {url!r}")
    return url


# Called with (job_id, outcome) once a delivery sequence ends.
OutcomeHook = Callable[[str, DeliveryOutcome], Awaitable[None]]


class CompletionNotifier:
    """Fire-and-forget callback delivery with bounded retry.

    ``schedule`` starts exactly one delivery sequence for a job; the
    tracker calls it only on the transition into a terminal state.
    """

    def __init__(
        self,
        policy: Optional[CallbackPolicy] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.policy = policy or CallbackPolicy()
        self.session = session or requests.Session()
        self._sleep = sleep
        self._tasks: Dict[str, asyncio.Task] = {}
        self._on_outcome: Optional[OutcomeHook] = None

    def set_outcome_hook(self, hook: OutcomeHook) -> None:
        self._on_outcome = hook

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def in_flight(self, job_id: str) -> bool:
        return job_id in self._tasks

    def schedule(self, rec: JobRecord, event: CallbackEvent) -> Optional[asyncio.Task]:
        """Start delivery in the background; no-op when there is no callback URL."""
        if not rec.callback:
            return None
        if rec.job_id in self._tasks:
            logger.warning("Callback for %s already in flight; not scheduling again", rec.job_id)
            return self._tasks[rec.job_id]
        url = callback_url(rec.callback, rec.job_id)
        task = asyncio.create_task(self._run(rec.job_id, url, event))
        self._tasks[rec.job_id] = task
        return task

    async def _run(self, job_id: str, url: str, event: CallbackEvent) -> None:
        try:
            outcome = await asyncio.to_thread(self.deliver, url, event)
            if outcome.delivered:
                logger.info("Callback for %s delivered after %d attempt(s)", job_id, outcome.attempts)
            else:
                logger.warning(
                    "Callback for %s failed after %d attempt(s): %s",
                    job_id, outcome.attempts, outcome.last_error,
                )
            if self._on_outcome is not None:
                await self._on_outcome(job_id, outcome)
        except Exception:
            logger.exception("Callback bookkeeping for %s failed", job_id)
        finally:
            self._tasks.pop(job_id, None)

    def deliver(self, url: str, event: CallbackEvent) -> DeliveryOutcome:
        """POST *event* to *url*, retrying transient failures with backoff."""
        last_err: Optional[str] = None
        attempts = 0
        for attempt in range(self.policy.max_attempts):
            attempts = attempt + 1
            try:
                resp = self.session.post(
                    url,
                    json=event.model_dump(mode="json"),
                    timeout=self.policy.timeout_seconds,
                )
                if resp.status_code < 400:
                    return DeliveryOutcome(delivered=True, attempts=attempts)
                last_err = f"status={resp.status_code}"
                if resp.status_code not in _TRANSIENT_STATUS:
                    break
            except requests.RequestException as exc:
                last_err = str(exc)
            if attempt + 1 < self.policy.max_attempts:
                self._sleep(self.policy.backoff_seconds * (2 ** attempt))
        return DeliveryOutcome(delivered=False, attempts=attempts, last_error=last_err)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        self.session.close()
