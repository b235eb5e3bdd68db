"""Controller process: the wrapper that runs one job's real runner.

Usage (built by ``batchgate.launch.args``, started by the launcher)::

    python -m batchgate.launch.controller \\
        -D batchgate.job.id=job_... -D batchgate.statusdir=/status/dir \\
        -files file:///a.pig,file:///udf.jar -- pig -file a.pig

Framework options come before ``--``; everything after it is the runner
command.  The controller localizes ``file://`` resources into its working
directory, captures runner output into the status directory, keeps the
heartbeat fresh and finally writes the ``exit`` file.
"""
from __future__ import annotations

import argparse
import logging
import os
import re
import shutil
import signal
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence
from urllib.parse import unquote, urlsplit

from ..utils.logging import configure_logging
from .status import (
    JOB_ID_PROP,
    PHASE_FINISHED,
    PHASE_RUNNING,
    STDERR,
    STATUSDIR_PROP,
    STDOUT,
    Heartbeat,
    write_exit,
    write_heartbeat,
)

logger = logging.getLogger("batchgate.controller")

EXIT_USAGE = 2
EXIT_NOT_FOUND = 127

_PIG_PROGRESS = re.compile(r"(\d+(?:\.\d+)?)% complete")
_HIVE_PROGRESS = re.compile(r"map = (\d+)%,\s*reduce = (\d+)%")


@dataclass
class ControllerArgs:
    props: Dict[str, str] = field(default_factory=dict)
    files: List[str] = field(default_factory=list)
    archives: List[str] = field(default_factory=list)
    libjars: List[str] = field(default_factory=list)
    command: List[str] = field(default_factory=list)

    @property
    def job_id(self) -> str:
        return self.props.get(JOB_ID_PROP, "")

    @property
    def status_dir(self) -> Path:
        return Path(self.props[STATUSDIR_PROP])


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [v for v in value.split(",") if v]


def parse_args(argv: Sequence[str]) -> ControllerArgs:
    """Split the framework options from the runner command.

    Raises
    ------
    ValueError
        Missing ``--`` separator, empty command, bad ``-D`` syntax or no
        status directory.
    """
    argv = list(argv)
    if "--" not in argv:
        raise ValueError("Missing '--' before the runner command")
    sep = argv.index("--")
    framework, command = argv[:sep], argv[sep + 1:]
    if not command:
        raise ValueError("Empty runner command")

    parser = argparse.ArgumentParser(prog="batchgate-controller", add_help=False)
    parser.add_argument("-D", action="append", default=[], dest="defines")
    parser.add_argument("-files", default="")
    parser.add_argument("-archives", default="")
    parser.add_argument("-libjars", default="")
    ns, unknown = parser.parse_known_args(framework)
    if unknown:
        raise ValueError(f"Unknown controller options: {unknown}")

    props: Dict[str, str] = {}
    for define in ns.defines:
        key, sep_, value = define.partition("=")
        if not sep_:
            raise ValueError(f"Bad -D option {define!r}")
        props[key] = value
    if STATUSDIR_PROP not in props:
        raise ValueError(f"-D {STATUSDIR_PROP}=... is required")

    return ControllerArgs(
        props=props,
        files=_split_list(ns.files),
        archives=_split_list(ns.archives),
        libjars=_split_list(ns.libjars),
        command=command,
    )


def localize(files: Sequence[str], workdir: Path) -> List[Path]:
    """Copy ``file://`` resources into *workdir*; others are left to the cluster."""
    out: List[Path] = []
    for ref in files:
        parts = urlsplit(ref)
        if parts.scheme != "file":
            logger.info("Leaving %s for the cluster to localize", ref)
            continue
        src = Path(unquote(parts.path))
        dst = workdir / src.name
        if src.is_dir():
            shutil.copytree(src, dst, dirs_exist_ok=True)
        else:
            shutil.copy2(src, dst)
        out.append(dst)
    return out


def parse_progress(line: str) -> Optional[float]:
    """Percent complete reported by a pig or hive output line, if any."""
    m = _PIG_PROGRESS.search(line)
    if m:
        return float(m.group(1))
    m = _HIVE_PROGRESS.search(line)
    if m:
        return (float(m.group(1)) + float(m.group(2))) / 2.0
    return None


class Controller:
    """Runs the command, streams stderr for progress, beats the heartbeat."""

    def __init__(self, args: ControllerArgs, workdir: Path, heartbeat_interval: float = 5.0) -> None:
        self.args = args
        self.workdir = workdir
        self.heartbeat_interval = heartbeat_interval
        self.percent: Optional[float] = None
        self.proc: Optional[subprocess.Popen] = None
        self._done = threading.Event()
        self._lock = threading.Lock()

    def _beat(self, phase: str) -> None:
        with self._lock:
            write_heartbeat(
                self.args.status_dir,
                Heartbeat(
                    phase=phase,
                    pid=os.getpid(),
                    percent_complete=self.percent,
                    updated_at=time.time(),
                ),
            )

    def _heartbeat_loop(self) -> None:
        while not self._done.wait(self.heartbeat_interval):
            self._beat(PHASE_RUNNING)

    def _pump_stderr(self, stream, sink) -> None:
        for raw in iter(stream.readline, b""):
            sink.write(raw)
            sink.flush()
            pct = parse_progress(raw.decode("utf-8", errors="replace"))
            if pct is not None:
                self.percent = pct
                self._beat(PHASE_RUNNING)

    def _on_term(self, signum, frame) -> None:
        logger.info("Job %s received signal %s; stopping runner", self.args.job_id, signum)
        if self.proc is not None and self.proc.poll() is None:
            self.proc.terminate()

    def _environment(self) -> Dict[str, str]:
        env = dict(os.environ)
        if self.args.libjars:
            cp = env.get("HADOOP_CLASSPATH")
            jars = os.pathsep.join(self.args.libjars)
            env["HADOOP_CLASSPATH"] = jars + (os.pathsep + cp if cp else "")
        if self.args.archives:
            env["BATCHGATE_ARCHIVES"] = ",".join(self.args.archives)
        return env

    def run(self) -> int:
        status_dir = self.args.status_dir
        status_dir.mkdir(parents=True, exist_ok=True)
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGTERM, self._on_term)

        with open(status_dir / STDOUT, "wb") as out, open(status_dir / STDERR, "wb") as err:
            try:
                localize(self.args.files, self.workdir)
                self.proc = subprocess.Popen(
                    self.args.command,
                    cwd=str(self.workdir),
                    env=self._environment(),
                    stdin=subprocess.DEVNULL,
                    stdout=out,
                    stderr=subprocess.PIPE,
                )
            except FileNotFoundError as exc:
                err.write(f"{exc}\n".encode("utf-8"))
                code = EXIT_NOT_FOUND
            except OSError as exc:
                err.write(f"{exc}\n".encode("utf-8"))
                code = 1
            else:
                self._beat(PHASE_RUNNING)
                beater = threading.Thread(target=self._heartbeat_loop, daemon=True)
                beater.start()
                self._pump_stderr(self.proc.stderr, err)
                rc = self.proc.wait()
                self._done.set()
                beater.join()
                code = 128 - rc if rc < 0 else rc

        self._done.set()
        self._beat(PHASE_FINISHED)
        write_exit(status_dir, code)
        logger.info("Job %s finished with exit code %s", self.args.job_id, code)
        return code


def main(argv: Optional[Sequence[str]] = None) -> int:
    configure_logging(os.environ.get("BATCHGATE_LOG_LEVEL", "INFO"))
    try:
        args = parse_args(sys.argv[1:] if argv is None else argv)
    except ValueError as exc:
        logger.error("Bad controller arguments: %s", exc)
        return EXIT_USAGE
    interval = float(os.environ.get("BATCHGATE_HEARTBEAT_INTERVAL", "5.0"))
    return Controller(args, Path.cwd(), heartbeat_interval=interval).run()


if __name__ == "__main__":
    sys.exit(main())
