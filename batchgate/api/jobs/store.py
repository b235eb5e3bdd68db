"""SQLite-backed persistence for job records."""
from __future__ import annotations

from typing import Any, Iterable, List, Optional

import aiosqlite

from .models import TERMINAL_STATES, JobRecord, JobState

_COLUMNS = (
    "job_id", "user", "job_type", "state", "created_at", "updated_at",
    "started_at", "completed_at", "status_dir", "callback", "completion_token",
    "percent_complete", "phase", "exit_code", "error", "pid",
    "notification_failed", "callback_attempts", "notified_at",
)


class JobStore:
    """Async SQLite store for job lifecycle tracking.

    Holds no state-machine logic; ``JobTracker`` decides which writes are
    legal and serializes them per job.
    """

    def __init__(self, db_path: str = "batchgate_jobs.db") -> None:
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Create the jobs table if it doesn't exist."""
        if self._db is not None:
            return
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                job_id TEXT PRIMARY KEY,
                user TEXT NOT NULL,
                job_type TEXT NOT NULL,
                state TEXT NOT NULL DEFAULT 'submitted',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT,
                status_dir TEXT NOT NULL,
                callback TEXT,
                completion_token TEXT,
                percent_complete REAL,
                phase TEXT DEFAULT '',
                exit_code INTEGER,
                error TEXT,
                pid INTEGER,
                notification_failed INTEGER DEFAULT 0,
                callback_attempts INTEGER DEFAULT 0,
                notified_at TEXT
            )
        """)
        await self._db.execute("CREATE INDEX IF NOT EXISTS idx_jobs_user ON jobs(user, created_at)")
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        return self._db

    # ── CRUD ─────────────────────────────────────────────────────────

    async def insert(self, rec: JobRecord) -> JobRecord:
        """Insert a new record.  Raises ``sqlite3.IntegrityError`` on a duplicate id."""
        db = await self._conn()
        row = self._record_to_row(rec)
        placeholders = ",".join("?" for _ in _COLUMNS)
        await db.execute(
            f"INSERT INTO jobs ({', '.join(_COLUMNS)}) VALUES ({placeholders})", row
        )
        await db.commit()
        return rec

    async def get(self, job_id: str) -> Optional[JobRecord]:
        """Fetch a single job by ID."""
        db = await self._conn()
        async with db.execute("SELECT * FROM jobs WHERE job_id = ?", (job_id,)) as cur:
            row = await cur.fetchone()
            desc = cur.description
        if row is None:
            return None
        return self._row_to_record(row, desc)

    async def list_jobs(
        self,
        user: Optional[str] = None,
        states: Iterable[JobState] = (),
        limit: int = 50,
    ) -> List[JobRecord]:
        """List jobs ordered by creation time (newest first)."""
        db = await self._conn()
        where: List[str] = []
        vals: List[Any] = []
        if user:
            where.append("user = ?")
            vals.append(user)
        states = list(states)
        if states:
            where.append(f"state IN ({','.join('?' for _ in states)})")
            vals.extend(s.value for s in states)
        sql = "SELECT * FROM jobs"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY created_at DESC, job_id DESC LIMIT ?"
        vals.append(limit)
        async with db.execute(sql, vals) as cur:
            rows = await cur.fetchall()
            desc = cur.description
        return [self._row_to_record(r, desc) for r in rows]

    async def incomplete(self) -> List[JobRecord]:
        """Jobs not yet in a terminal state, oldest first."""
        db = await self._conn()
        terminal = [s.value for s in TERMINAL_STATES]
        async with db.execute(
            f"SELECT * FROM jobs WHERE state NOT IN ({','.join('?' for _ in terminal)}) "
            "ORDER BY created_at",
            terminal,
        ) as cur:
            rows = await cur.fetchall()
            desc = cur.description
        return [self._row_to_record(r, desc) for r in rows]

    async def undelivered(self) -> List[JobRecord]:
        """Terminal jobs with a callback that was neither delivered nor given up on."""
        db = await self._conn()
        terminal = [s.value for s in TERMINAL_STATES]
        async with db.execute(
            f"SELECT * FROM jobs WHERE state IN ({','.join('?' for _ in terminal)}) "
            "AND callback IS NOT NULL AND callback != '' "
            "AND notified_at IS NULL AND notification_failed = 0 "
            "ORDER BY completed_at",
            terminal,
        ) as cur:
            rows = await cur.fetchall()
            desc = cur.description
        return [self._row_to_record(r, desc) for r in rows]

    async def save(self, rec: JobRecord) -> None:
        """Overwrite every mutable column of an existing record."""
        db = await self._conn()
        row = self._record_to_row(rec)
        sets = ", ".join(f"{c} = ?" for c in _COLUMNS[1:])
        await db.execute(f"UPDATE jobs SET {sets} WHERE job_id = ?", (*row[1:], rec.job_id))
        await db.commit()

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _record_to_row(rec: JobRecord) -> tuple:
        d = rec.model_dump(mode="json")
        d["notification_failed"] = int(rec.notification_failed)
        return tuple(d[c] for c in _COLUMNS)

    @staticmethod
    def _row_to_record(row, description) -> JobRecord:
        cols = [d[0] for d in description]
        d = dict(zip(cols, row))
        d["notification_failed"] = bool(d.get("notification_failed"))
        d["phase"] = d.get("phase") or ""
        d["callback_attempts"] = d.get("callback_attempts") or 0
        return JobRecord(**d)
