"""Translate a ``JobRequest`` into the controller's command line.

The command line has two halves separated by ``--``:

* framework arguments read by the controller (``-libjars``, ``-D`` job
  properties, ``-files``, ``-archives``), shared by every job type;
* the runner command for the job type (pig, hive, hadoop streaming,
  hadoop jar).

Auxiliary files keep caller order inside ``-files``; it matters for
classpath and archive resolution on the runner side.
"""
from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
from urllib.parse import unquote, urlsplit

from ..api.errors import BadParam
from ..api.jobs.models import JobRequest, JobType
from ..config import AppConfig
from .stager import FileStager
from .status import CALLBACK_PROP, JOB_ID_PROP, STATUSDIR_PROP, USER_PROP


@dataclass
class LaunchArgs:
    argv: List[str]
    files: List[str] = field(default_factory=list)


def _isset(value: Optional[str]) -> bool:
    return value is not None and str(value).strip() != ""


def _basename(qualified: str) -> str:
    return posixpath.basename(unquote(urlsplit(qualified).path))


def _check_define(define: str) -> str:
    key, sep, _ = define.partition("=")
    if not sep or not key.strip():
        raise BadParam(f"Define {define!r} must look like key=value")
    return define


def build_common_args(
    cfg: AppConfig,
    job_id: str,
    user: str,
    status_dir: str,
    callback: Optional[str],
    files: List[str],
) -> List[str]:
    """Framework arguments every job type starts with."""
    args: List[str] = []
    if cfg.launcher.extra_jars:
        args += ["-libjars", ",".join(cfg.launcher.extra_jars)]
    args += ["-D", f"{JOB_ID_PROP}={job_id}"]
    args += ["-D", f"{USER_PROP}={user}"]
    args += ["-D", f"{STATUSDIR_PROP}={status_dir}"]
    if _isset(callback):
        args += ["-D", f"{CALLBACK_PROP}={callback}"]
    if files:
        args += ["-files", ",".join(files)]
    return args


# ── Per job type ─────────────────────────────────────────────────────


def _script_source(req: JobRequest) -> Optional[str]:
    if _isset(req.execute) == _isset(req.src_file):
        raise BadParam("Either execute or file parameter required, but not both")
    return req.src_file if _isset(req.src_file) else None


def _pig_args(req: JobRequest, cfg: AppConfig, primary: Optional[str]) -> List[str]:
    args: List[str] = []
    if cfg.pig.archive:
        args += ["-archives", cfg.pig.archive]
    args += ["--", cfg.pig.path, *req.args]
    if _isset(req.execute):
        args += ["-execute", req.execute]
    else:
        args += ["-file", _basename(primary)]
    return args


def _hive_args(req: JobRequest, cfg: AppConfig, primary: Optional[str]) -> List[str]:
    args: List[str] = []
    if cfg.hive.archive:
        args += ["-archives", cfg.hive.archive]
    args += ["--", cfg.hive.path, "--service", "cli"]
    for key, value in sorted(cfg.hive.properties.items()):
        args += ["--hiveconf", f"{key}={value}"]
    for define in req.defines:
        args += ["--hiveconf", _check_define(define)]
    args += list(req.args)
    if _isset(req.execute):
        args += ["-e", req.execute]
    else:
        args += ["-f", _basename(primary)]
    return args


def _streaming_source(req: JobRequest) -> Optional[str]:
    if not req.inputs:
        raise BadParam("Streaming job requires at least one input")
    for name in ("output", "mapper", "reducer"):
        if not _isset(getattr(req, name)):
            raise BadParam(f"Streaming job requires {name}")
    return None


def _streaming_args(req: JobRequest, cfg: AppConfig, primary: Optional[str]) -> List[str]:
    args = ["--", cfg.streaming.hadoop_path, "jar", cfg.streaming.streaming_jar]
    for define in req.defines:
        args += ["-D", _check_define(define)]
    for inp in req.inputs:
        args += ["-input", inp]
    args += ["-output", req.output, "-mapper", req.mapper, "-reducer", req.reducer]
    args += list(req.args)
    return args


def _jar_source(req: JobRequest) -> Optional[str]:
    if not _isset(req.jar):
        raise BadParam("Jar job requires jar")
    return req.jar


def _jar_args(req: JobRequest, cfg: AppConfig, primary: Optional[str]) -> List[str]:
    args = ["--", cfg.streaming.hadoop_path, "jar", _basename(primary)]
    if _isset(req.main_class):
        args.append(req.main_class)
    for define in req.defines:
        args += ["-D", _check_define(define)]
    args += list(req.args)
    return args


@dataclass(frozen=True)
class TypeArgs:
    """How one job type contributes to the command line.

    ``source`` validates the request and names the file that has to be
    staged alongside the auxiliary files (or None); ``append`` returns the
    type-specific tail.
    """
    source: Callable[[JobRequest], Optional[str]]
    append: Callable[[JobRequest, AppConfig, Optional[str]], List[str]]


TYPE_ARGS: Dict[JobType, TypeArgs] = {
    JobType.pig: TypeArgs(_script_source, _pig_args),
    JobType.hive: TypeArgs(_script_source, _hive_args),
    JobType.streaming: TypeArgs(_streaming_source, _streaming_args),
    JobType.jar: TypeArgs(_jar_source, _jar_args),
}


def build_launch_args(
    req: JobRequest,
    cfg: AppConfig,
    stager: FileStager,
    job_id: str,
    status_dir: str,
) -> LaunchArgs:
    """Validate, stage and assemble the full controller command line.

    Raises
    ------
    BadParam
        Inconsistent request (e.g. both or neither of execute/file).
    ResourceNotFound
        The source file or an auxiliary file does not exist.
    """
    spec = TYPE_ARGS.get(req.job_type)
    if spec is None:
        raise BadParam(f"Unsupported job type {req.job_type!r}")
    source = spec.source(req)

    files: List[str] = []
    primary: Optional[str] = None
    if source is not None:
        primary = stager.resolve(source, req.run_as)
        files.append(primary)
    files += stager.resolve_all(list(req.files), req.run_as)

    argv = build_common_args(cfg, job_id, req.run_as, status_dir, req.callback, files)
    argv += spec.append(req, cfg, primary)
    return LaunchArgs(argv=argv, files=files)
