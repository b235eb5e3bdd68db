"""Status directory layout shared by the launcher, the controller and the monitor.

One directory per job::

    <status_dir>/heartbeat   JSON: phase, pid, percent_complete, updated_at
    <status_dir>/stdout      runner standard output
    <status_dir>/stderr      runner standard error
    <status_dir>/exit        runner exit code, written last
"""
from __future__ import annotations

import json
import os
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

HEARTBEAT = "heartbeat"
STDOUT = "stdout"
STDERR = "stderr"
EXIT = "exit"

PHASE_SUBMITTED = "submitted"
PHASE_RUNNING = "running"
PHASE_FINISHED = "finished"

JOB_ID_PROP = "batchgate.job.id"
STATUSDIR_PROP = "batchgate.statusdir"
CALLBACK_PROP = "batchgate.callback"
USER_PROP = "batchgate.user"


@dataclass
class Heartbeat:
    phase: str
    pid: Optional[int] = None
    percent_complete: Optional[float] = None
    updated_at: float = 0.0


def _atomic_write(path: Path, text: str) -> None:
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(text, encoding="utf-8")
    os.replace(tmp, path)


def write_heartbeat(status_dir: Path, hb: Heartbeat) -> None:
    status_dir.mkdir(parents=True, exist_ok=True)
    if not hb.updated_at:
        hb.updated_at = time.time()
    _atomic_write(status_dir / HEARTBEAT, json.dumps(asdict(hb)))


def read_heartbeat(status_dir: Path) -> Optional[Heartbeat]:
    p = status_dir / HEARTBEAT
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValueError):
        # Reader raced a writer on a filesystem without atomic rename.
        return None
    return Heartbeat(
        phase=str(raw.get("phase", "")),
        pid=raw.get("pid"),
        percent_complete=raw.get("percent_complete"),
        updated_at=float(raw.get("updated_at") or 0.0),
    )


def write_exit(status_dir: Path, code: int) -> None:
    status_dir.mkdir(parents=True, exist_ok=True)
    _atomic_write(status_dir / EXIT, f"{int(code)}\n")


def read_exit(status_dir: Path) -> Optional[int]:
    p = status_dir / EXIT
    try:
        return int(p.read_text(encoding="utf-8").strip())
    except (FileNotFoundError, ValueError):
        return None


def tail(status_dir: Path, name: str = STDERR, max_chars: int = 2000) -> str:
    """Last *max_chars* of a captured output file, for error summaries."""
    p = status_dir / name
    try:
        data = p.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return ""
    return data[-max_chars:].strip()
