"""Resolve logical resource references against the cluster filesystem.

Every lookup happens on behalf of the requesting user: relative references
resolve under that user's home directory and WebHDFS calls carry ``doas``.
"""
from __future__ import annotations

import logging
import posixpath
from pathlib import Path
from typing import List, Optional, Protocol, Sequence
from urllib.parse import unquote, urlsplit

import requests

from ..api.errors import BadParam, ResourceNotFound
from ..config import StagingBackend, StagingConfig

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = {"", "hdfs", "file"}


def split_reference(ref: str, user: str) -> str:
    """Return the absolute namespace path for *ref*.

    Raises
    ------
    BadParam
        Empty reference, bad URI syntax, unsupported scheme or ``..``
        segments.
    """
    if ref is None or not str(ref).strip():
        raise BadParam("Empty resource reference")
    ref = str(ref).strip()
    try:
        parts = urlsplit(ref)
    except ValueError as exc:
        raise BadParam(f"Malformed resource reference {ref!r}: {exc}") from exc
    if parts.scheme not in _ALLOWED_SCHEMES:
        raise BadParam(f"Unsupported scheme {parts.scheme!r} in {ref!r}")
    if parts.query or parts.fragment:
        raise BadParam(f"Resource reference {ref!r} must not carry a query or fragment")
    path = parts.path
    if not path:
        raise BadParam(f"Resource reference {ref!r} has no path")
    if ".." in path.split("/"):
        raise BadParam(f"Resource reference {ref!r} escapes its directory")
    if not path.startswith("/"):
        path = f"/user/{user}/{path}"
    return posixpath.normpath(path)


class FileSystem(Protocol):
    def qualify(self, ref: str, user: str) -> str: ...

    def exists(self, qualified: str, user: str) -> bool: ...


class LocalFileSystem:
    """A directory tree standing in for the distributed namespace."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def local_path(self, ns_path: str) -> Path:
        return self.root / ns_path.lstrip("/")

    def qualify(self, ref: str, user: str) -> str:
        if ref.startswith("file://"):
            p = Path(unquote(urlsplit(ref).path)).resolve()
            if self.root not in p.parents and p != self.root:
                raise BadParam(f"Resource reference {ref!r} is outside the staging root")
            return p.as_uri()
        return self.local_path(split_reference(ref, user)).as_uri()

    def exists(self, qualified: str, user: str) -> bool:
        return Path(unquote(urlsplit(qualified).path)).exists()


class WebHdfsFileSystem:
    """Resolve references through the WebHDFS REST API."""

    def __init__(
        self,
        base_url: str,
        default_fs: str,
        service_user: str,
        timeout_seconds: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.default_fs = default_fs.rstrip("/")
        self.service_user = service_user
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def qualify(self, ref: str, user: str) -> str:
        if ref.startswith("file:"):
            raise BadParam(f"Local file references are not allowed: {ref!r}")
        return self.default_fs + split_reference(ref, user)

    def exists(self, qualified: str, user: str) -> bool:
        path = urlsplit(qualified).path
        params = {"op": "GETFILESTATUS", "user.name": self.service_user}
        if user != self.service_user:
            params["doas"] = user
        resp = self.session.get(
            f"{self.base_url}{path}", params=params, timeout=self.timeout_seconds
        )
        if resp.status_code == 404:
            return False
        if resp.status_code in (401, 403):
            logger.warning("WebHDFS denied %s access to %s", user, path)
            return False
        resp.raise_for_status()
        return True


class FileStager:
    """Validate and canonicalise job inputs before launch."""

    def __init__(self, fs: FileSystem) -> None:
        self.fs = fs

    def resolve(self, ref: str, user: str) -> str:
        """Return the canonical path of *ref* as seen by *user*.

        Raises
        ------
        BadParam
            Malformed reference.
        ResourceNotFound
            The path does not exist.
        """
        qualified = self.fs.qualify(ref, user)
        try:
            found = self.fs.exists(qualified, user)
        except requests.RequestException as exc:
            raise ResourceNotFound(f"Could not stat {ref}: {exc}") from exc
        if not found:
            raise ResourceNotFound(f"File {ref} does not exist")
        logger.debug("Staged %s as %s for %s", ref, qualified, user)
        return qualified

    def resolve_all(self, refs: Sequence[str], user: str) -> List[str]:
        """Resolve each reference in order, failing on the first bad one."""
        return [self.resolve(ref, user) for ref in refs]


def build_stager(cfg: StagingConfig) -> FileStager:
    if cfg.backend is StagingBackend.WEBHDFS:
        fs: FileSystem = WebHdfsFileSystem(
            cfg.webhdfs_url, cfg.default_fs, cfg.service_user, cfg.timeout_seconds
        )
    else:
        fs = LocalFileSystem(cfg.root)
    return FileStager(fs)
