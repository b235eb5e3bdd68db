"""Record sink used by job runners to publish output.

Output for a destination becomes visible all at once on ``commit`` (a
directory rename); ``abort`` leaves nothing behind.

Usage::

    sink = RecordSink("/warehouse")
    with sink.open(["word", "count"], "wordcount/dt=2024-01-01") as w:
        w.write({"word": "a", "count": 3})
"""
from __future__ import annotations

import json
import logging
import os
import shutil
import uuid
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

PART_FILE = "part-00000.jsonl"
SUCCESS_MARKER = "_SUCCESS"


class SinkError(Exception):
    """Writer misuse or a destination that cannot be published."""


class RecordWriter:
    """Buffers records for one destination in a private staging directory."""

    def __init__(self, schema: Sequence[str], final_dir: Path, staging_dir: Path) -> None:
        if not schema:
            raise SinkError("Schema must name at least one field")
        if len(set(schema)) != len(schema):
            raise SinkError(f"Duplicate field names in schema {list(schema)}")
        self.schema: List[str] = list(schema)
        self.final_dir = final_dir
        self.staging_dir = staging_dir
        self.staging_dir.mkdir(parents=True)
        self._fh = open(self.staging_dir / PART_FILE, "w", encoding="utf-8")
        self.count = 0
        self._closed = False

    def write(self, record: Mapping[str, Any]) -> None:
        if self._closed:
            raise SinkError("Writer is closed")
        unknown = set(record) - set(self.schema)
        if unknown:
            raise SinkError(f"Fields not in schema: {sorted(unknown)}")
        row: Dict[str, Any] = {name: record.get(name) for name in self.schema}
        self._fh.write(json.dumps(row, default=str) + "\n")
        self.count += 1

    def commit(self) -> Path:
        """Publish every written record atomically."""
        if self._closed:
            raise SinkError("Writer is closed")
        self._fh.close()
        self._closed = True
        (self.staging_dir / SUCCESS_MARKER).touch()
        if self.final_dir.exists():
            shutil.rmtree(self.staging_dir, ignore_errors=True)
            raise SinkError(f"Destination {self.final_dir} already committed")
        self.final_dir.parent.mkdir(parents=True, exist_ok=True)
        os.rename(self.staging_dir, self.final_dir)
        logger.info("Committed %d record(s) to %s", self.count, self.final_dir)
        return self.final_dir

    def abort(self) -> None:
        """Discard staged output; safe to call more than once."""
        if not self._closed:
            self._fh.close()
            self._closed = True
        shutil.rmtree(self.staging_dir, ignore_errors=True)

    def __enter__(self) -> "RecordWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.commit()
        else:
            self.abort()


class RecordSink:
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def open(self, schema: Sequence[str], destination: str) -> RecordWriter:
        rel = PurePosixPath(destination)
        if rel.is_absolute() or ".." in rel.parts or not rel.parts:
            raise SinkError(f"Destination must be a relative path: {destination!r}")
        final_dir = self.root.joinpath(*rel.parts)
        staging = final_dir.parent / f".{final_dir.name}.{uuid.uuid4().hex[:8]}.tmp"
        return RecordWriter(schema, final_dir, staging)

    def read(self, destination: str) -> Optional[List[Dict[str, Any]]]:
        """Committed records of *destination*, or None if nothing is visible."""
        final_dir = self.root.joinpath(*PurePosixPath(destination).parts)
        if not (final_dir / SUCCESS_MARKER).exists():
            return None
        with open(final_dir / PART_FILE, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
