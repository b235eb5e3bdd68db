"""
Structured configuration for the job launcher using typed dataclasses.

One ``AppConfig`` is built at startup (usually from a YAML file) and handed
to every component constructor.  Nothing in the package reads configuration
from module globals.

Usage:
    from batchgate.config import load_config
    cfg = load_config("batchgate.yaml")
    cfg.pig.path               # pig launcher binary
    cfg.callback.max_attempts  # completion callback retry budget
"""
from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


class StagingBackend(Enum):
    """Where logical resource references are resolved."""
    LOCAL = "local"
    WEBHDFS = "webhdfs"


# ── Launcher ──────────────────────────────────────────────────────────


@dataclass
class LauncherConfig:
    """Controller process settings and the status-directory layout."""
    python_executable: str = sys.executable
    status_root: str = "/tmp/batchgate/status"
    work_root: str = "/tmp/batchgate/work"
    max_running: int = 64
    extra_jars: List[str] = field(default_factory=list)
    poll_interval: float = 1.0
    heartbeat_interval: float = 5.0
    kill_grace_seconds: float = 10.0

    def __post_init__(self):
        if self.max_running < 1:
            raise ValueError(f"max_running must be >= 1, got {self.max_running}")
        if self.poll_interval <= 0 or self.heartbeat_interval <= 0:
            raise ValueError("poll_interval and heartbeat_interval must be positive")
        if self.kill_grace_seconds < 0:
            raise ValueError(f"kill_grace_seconds must be >= 0, got {self.kill_grace_seconds}")


# ── Job types ─────────────────────────────────────────────────────────


@dataclass
class PigConfig:
    path: str = "pig"
    archive: Optional[str] = None


@dataclass
class HiveConfig:
    path: str = "hive"
    archive: Optional[str] = None
    properties: Dict[str, str] = field(default_factory=dict)


@dataclass
class StreamingConfig:
    """Hadoop binary and the streaming jar used for streaming and jar jobs."""
    hadoop_path: str = "hadoop"
    streaming_jar: str = "hadoop-streaming.jar"


# ── Staging / callbacks / impersonation ───────────────────────────────


@dataclass
class StagingConfig:
    backend: StagingBackend = StagingBackend.LOCAL
    root: str = "/tmp/batchgate/fs"
    webhdfs_url: str = "http://localhost:9870/webhdfs/v1"
    default_fs: str = "hdfs://localhost:8020"
    service_user: str = "batchgate"
    timeout_seconds: float = 10.0

    def __post_init__(self):
        if isinstance(self.backend, str):
            self.backend = StagingBackend(self.backend)


@dataclass
class CallbackConfig:
    """Completion callback delivery budget."""
    max_attempts: int = 5
    backoff_seconds: float = 1.0
    timeout_seconds: float = 10.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"callback.max_attempts must be >= 1, got {self.max_attempts}")
        if self.backoff_seconds < 0:
            raise ValueError("callback.backoff_seconds must be >= 0")


@dataclass
class ProxyConfig:
    """Which service principals may act as which users.

    ``proxy_users`` maps a principal to the identities it may impersonate;
    ``"*"`` allows any identity.
    """
    proxy_users: Dict[str, List[str]] = field(default_factory=dict)
    banned_users: List[str] = field(default_factory=lambda: ["root", "hdfs", "yarn"])


# ── Top level ─────────────────────────────────────────────────────────


@dataclass
class AppConfig:
    launcher: LauncherConfig = field(default_factory=LauncherConfig)
    pig: PigConfig = field(default_factory=PigConfig)
    hive: HiveConfig = field(default_factory=HiveConfig)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    staging: StagingConfig = field(default_factory=StagingConfig)
    callback: CallbackConfig = field(default_factory=CallbackConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)


def _build(cls, data: Dict[str, Any]):
    """Instantiate dataclass *cls* from a mapping, recursing into sections."""
    known = {f.name: f for f in fields(cls)}
    unknown = set(data) - set(known)
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {sorted(unknown)}")
    kwargs: Dict[str, Any] = {}
    for name, value in data.items():
        default = known[name].default_factory  # type: ignore[misc]
        if callable(default) and is_dataclass(default) and isinstance(value, dict):
            kwargs[name] = _build(default, value)
        else:
            kwargs[name] = value
    return cls(**kwargs)


def load_config(path: Optional[str | Path] = None) -> AppConfig:
    """Load ``AppConfig`` from a YAML file; defaults when *path* is None."""
    if path is None:
        return AppConfig()
    p = Path(path)
    with p.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config file {p} must contain a mapping, got {type(raw).__name__}")
    cfg = _build(AppConfig, raw)
    logger.info("Loaded configuration from %s", p)
    return cfg
