"""Shared test fixtures for the batchgate test suite."""
from __future__ import annotations

import asyncio
import stat
import threading
from pathlib import Path

import pytest

from batchgate.config import AppConfig, CallbackConfig, LauncherConfig, PigConfig, StagingConfig


# ── Fake runners ─────────────────────────────────────────────────────


def _script(path: Path, body: str) -> str:
    path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def ok_runner(tmp_path):
    """Pig stand-in that reports progress and succeeds."""
    return _script(
        tmp_path / "fakepig",
        'echo "args: $*"\necho "50% complete" >&2\necho "100% complete" >&2\nexit 0\n',
    )


@pytest.fixture
def failing_runner(tmp_path):
    return _script(tmp_path / "badpig", 'echo "ERROR 1000: syntax error" >&2\nexit 3\n')


@pytest.fixture
def slow_runner(tmp_path):
    return _script(tmp_path / "slowpig", 'echo "10% complete" >&2\nsleep 30\n')


@pytest.fixture
def stubborn_runner(tmp_path):
    """Long runner that ignores SIGTERM."""
    return _script(
        tmp_path / "stubbornpig", 'trap "" TERM\necho "10% complete" >&2\nsleep 30\n'
    )


# ── Config ───────────────────────────────────────────────────────────


@pytest.fixture
def fs_root(tmp_path):
    root = tmp_path / "fs"
    (root / "user" / "alice").mkdir(parents=True)
    return root


def make_config(tmp_path: Path, fs_root: Path, pig_path: str = "pig", **launcher) -> AppConfig:
    launcher_kwargs = dict(
        status_root=str(tmp_path / "status"),
        work_root=str(tmp_path / "work"),
        poll_interval=0.05,
        heartbeat_interval=0.1,
    )
    launcher_kwargs.update(launcher)
    return AppConfig(
        launcher=LauncherConfig(**launcher_kwargs),
        pig=PigConfig(path=pig_path),
        staging=StagingConfig(root=str(fs_root)),
        callback=CallbackConfig(max_attempts=3, backoff_seconds=0.0, timeout_seconds=1.0),
    )


@pytest.fixture
def config_factory(tmp_path, fs_root):
    def _make(pig_path: str = "pig", **launcher) -> AppConfig:
        return make_config(tmp_path, fs_root, pig_path, **launcher)

    return _make


@pytest.fixture
def cfg(tmp_path, fs_root, ok_runner):
    return make_config(tmp_path, fs_root, pig_path=ok_runner)


# ── HTTP doubles ─────────────────────────────────────────────────────


class FakeResponse:
    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.headers = {}

    def raise_for_status(self):
        if self.status_code >= 400:
            import requests

            raise requests.HTTPError(f"status={self.status_code}", response=self)


class FakeSession:
    """Records calls; replies with queued statuses (last one repeats)."""

    def __init__(self, statuses=(200,), exc=None):
        self.statuses = list(statuses)
        self.exc = exc
        self.calls = []
        self._lock = threading.Lock()

    def _next(self, method, url, **kwargs):
        with self._lock:
            self.calls.append((method, url, kwargs))
            if self.exc is not None:
                raise self.exc
            status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return FakeResponse(status)

    def post(self, url, **kwargs):
        return self._next("POST", url, **kwargs)

    def get(self, url, **kwargs):
        return self._next("GET", url, **kwargs)

    def close(self):
        pass


@pytest.fixture
def make_session():
    """Factory for ``FakeSession`` doubles."""
    return FakeSession


@pytest.fixture
def session():
    return FakeSession()


# ── Services / API fixtures ──────────────────────────────────────────


@pytest.fixture
async def store():
    from batchgate.api.jobs.store import JobStore

    s = JobStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
async def make_services(session):
    """Build fully wired services for a config; everything is torn down after the test."""
    from batchgate.api.deps.providers import build_services
    from batchgate.api.jobs.notifier import CallbackPolicy, CompletionNotifier

    built = []

    async def _make(app_cfg: AppConfig):
        notifier = CompletionNotifier(
            CallbackPolicy(max_attempts=3, backoff_seconds=0.0, timeout_seconds=1.0),
            session=session,
            sleep=lambda s: None,
        )
        svc = build_services(app_cfg, ":memory:", notifier=notifier)
        await svc.store.initialize()
        built.append(svc)
        return svc

    yield _make
    for svc in built:
        handles = list(svc.launcher._running.values())
        for handle in handles:
            svc.launcher.kill(handle.pid)
        for handle in handles:
            if handle.process is not None:
                await asyncio.wait_for(handle.process.wait(), timeout=10)
        await svc.stop()


@pytest.fixture
async def services(cfg, make_services):
    return await make_services(cfg)


@pytest.fixture
async def app(services):
    """Test FastAPI app wired to the per-test services, auth disabled."""
    from batchgate.api.config import ApiSettings
    from batchgate.api.main import create_app

    settings = ApiSettings(job_db_path=":memory:", auth_enabled=False)
    return create_app(settings, services=services)


@pytest.fixture
async def client(app):
    """Async HTTP client bound to the test app."""
    from httpx import ASGITransport, AsyncClient

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac


@pytest.fixture
def wait():
    return wait_for


async def wait_for(predicate, timeout: float = 15.0, interval: float = 0.05):
    """Await an async predicate until it returns a truthy value."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        value = await predicate()
        if value:
            return value
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)
