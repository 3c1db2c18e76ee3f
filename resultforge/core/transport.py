"""URL-scheme transports behind the cache layer.

A transport moves single files between a local path and
``<server url>/<location>``.  Supported schemes:

- ``file://``      local filesystem (copy, temp file + rename)
- ``http(s)://``   read-only, via httpx
- ``rsync+ssh://`` rsync over ssh
- ``scp://``, ``ssh://`` scp for copies, ssh for existence checks and mkdir

Every fetch writes to a temporary name inside the destination directory
and renames on completion, so an interrupted fetch never leaves a file
that looks complete.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import urlsplit

import httpx

from resultforge.config import settings
from resultforge.core.errors import ToolError, TransportError
from resultforge.core.tools import run_tool

logger = logging.getLogger(__name__)


def _join(base: str, location: str) -> str:
    return "/".join(part.strip("/") for part in (base, location) if part.strip("/"))


def _temp_target(dest: Path) -> Path:
    """Reserve a unique temporary name next to *dest*."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(prefix=f".{dest.name}.", dir=dest.parent)
    os.close(fd)
    return Path(name)


def _commit(tmp: Path, dest: Path) -> None:
    if not tmp.is_file():
        raise TransportError(f"transfer to {dest} produced no file")
    os.replace(tmp, dest)


def copy_atomic(src: Path, dest: Path) -> None:
    """Copy *src* to *dest* so that *dest* only ever appears complete."""
    tmp = _temp_target(dest)
    try:
        shutil.copyfile(src, tmp)
        _commit(tmp, dest)
    except OSError as exc:
        raise TransportError(f"copying {src} to {dest} failed: {exc}") from exc
    finally:
        tmp.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class Transport(Protocol):
    """Moves files between the local host and one server URL."""

    def fetch(self, location: str, dest: Path) -> None:
        """Download *location* to the file path *dest* atomically."""
        ...

    def exists(self, location: str) -> bool:
        """Return ``True`` if *location* exists on the server."""
        ...

    def push(self, source: Path, location: str, push_permissions: str | None = None) -> None:
        """Upload the local file *source* to *location*."""
        ...


# ---------------------------------------------------------------------------
# file://
# ---------------------------------------------------------------------------


class FileTransport:
    """Plain filesystem transport for ``file://`` URLs."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.base = Path(urlsplit(url).path or "/")

    def path_of(self, location: str) -> Path:
        return self.base / location.lstrip("/")

    def fetch(self, location: str, dest: Path) -> None:
        src = self.path_of(location)
        if not src.is_file():
            raise TransportError(f"{self.url}/{location}: no such file")
        copy_atomic(src, dest)

    def exists(self, location: str) -> bool:
        return self.path_of(location).exists()

    def push(self, source: Path, location: str, push_permissions: str | None = None) -> None:
        dest = self.path_of(location)
        tmp = _temp_target(dest)
        try:
            shutil.copyfile(source, tmp)
            if push_permissions:
                run_tool(["chmod", push_permissions, str(tmp)])
            _commit(tmp, dest)
        except (OSError, ToolError) as exc:
            raise TransportError(f"uploading {source} to {dest} failed: {exc}") from exc
        finally:
            tmp.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# http(s)://
# ---------------------------------------------------------------------------


class HttpTransport:
    """Read-only transport over HTTP(S)."""

    def __init__(self, url: str, timeout: float | None = None) -> None:
        self.url = url.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds

    def _url(self, location: str) -> str:
        return f"{self.url}/{location.lstrip('/')}"

    def fetch(self, location: str, dest: Path) -> None:
        url = self._url(location)
        tmp = _temp_target(dest)
        try:
            with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
                with client.stream("GET", url) as response:
                    response.raise_for_status()
                    with open(tmp, "wb") as fh:
                        for chunk in response.iter_bytes():
                            fh.write(chunk)
            _commit(tmp, dest)
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                f"GET {url} failed with status {exc.response.status_code}"
            ) from exc
        except httpx.RequestError as exc:
            raise TransportError(f"GET {url} failed: {exc}") from exc
        finally:
            tmp.unlink(missing_ok=True)

    def exists(self, location: str) -> bool:
        url = self._url(location)
        try:
            with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
                response = client.head(url)
        except httpx.RequestError as exc:
            raise TransportError(f"HEAD {url} failed: {exc}") from exc
        if response.status_code == 404:
            return False
        if response.is_success:
            return True
        raise TransportError(f"HEAD {url} failed with status {response.status_code}")

    def push(self, source: Path, location: str, push_permissions: str | None = None) -> None:
        raise TransportError(f"uploading files to {self.url} is not supported")


# ---------------------------------------------------------------------------
# rsync+ssh:// and scp:// / ssh://
# ---------------------------------------------------------------------------


class _RemoteBase:
    def __init__(self, url: str) -> None:
        parts = urlsplit(url)
        if not parts.hostname:
            raise TransportError(f"{url}: missing server name")
        self.url = url
        self.user = parts.username
        self.host = parts.hostname
        self.base = parts.path or "/"

    @property
    def login(self) -> str:
        return f"{self.user}@{self.host}" if self.user else self.host

    def remote_path(self, location: str) -> str:
        return "/" + _join(self.base, location)

    def remote_target(self, location: str) -> str:
        return f"{self.login}:{shlex.quote(self.remote_path(location))}"

    def ssh(self, *command: str, check: bool = True) -> bool:
        argv = [settings.ssh_tool, self.login, *command]
        result = run_tool(argv, check=check, timeout=settings.tool_timeout_seconds)
        return result.ok


class RsyncSshTransport(_RemoteBase):
    """rsync over ssh."""

    def _rsync(self, opts: list[str], src: str, dest: str, check: bool = True) -> bool:
        argv = [
            settings.rsync_tool,
            *opts,
            "-L",
            "-k",
            f"--rsh={settings.ssh_tool}",
            src,
            dest,
        ]
        return run_tool(argv, check=check, timeout=settings.tool_timeout_seconds).ok

    def fetch(self, location: str, dest: Path) -> None:
        tmp = _temp_target(dest)
        try:
            self._rsync([], self.remote_target(location), str(tmp))
            _commit(tmp, dest)
        except ToolError as exc:
            raise TransportError(f"fetching {self.url}/{location} failed: {exc}") from exc
        finally:
            tmp.unlink(missing_ok=True)

    def exists(self, location: str) -> bool:
        try:
            return self._rsync(["-n"], self.remote_target(location), "/", check=False)
        except ToolError as exc:
            raise TransportError(str(exc)) from exc

    def push(self, source: Path, location: str, push_permissions: str | None = None) -> None:
        opts = ["--perms", "--chmod", push_permissions] if push_permissions else []
        try:
            self.ssh("mkdir", "-p", shlex.quote(os.path.dirname(self.remote_path(location))))
            self._rsync(opts, str(source), self.remote_target(location))
        except ToolError as exc:
            raise TransportError(f"uploading {source} to {self.url}/{location} failed: {exc}") from exc


class ScpTransport(_RemoteBase):
    """scp for copies, ssh for existence checks.  Uploads may be left incomplete on abort."""

    _warned = False

    def fetch(self, location: str, dest: Path) -> None:
        tmp = _temp_target(dest)
        try:
            run_tool(
                [settings.scp_tool, self.remote_target(location), str(tmp)],
                timeout=settings.tool_timeout_seconds,
            )
            _commit(tmp, dest)
        except ToolError as exc:
            raise TransportError(f"fetching {self.url}/{location} failed: {exc}") from exc
        finally:
            tmp.unlink(missing_ok=True)

    def exists(self, location: str) -> bool:
        path = shlex.quote(self.remote_path(location))
        try:
            present = self.ssh("test", "-e", path, check=False)
            absent = self.ssh("test", "!", "-e", path, check=False)
        except ToolError as exc:
            raise TransportError(str(exc)) from exc
        if present == absent:
            raise TransportError(f"cannot check {self.url}/{location}: connection problem")
        return present

    def push(self, source: Path, location: str, push_permissions: str | None = None) -> None:
        if not ScpTransport._warned:
            logger.warning(
                "ssh:// and scp:// transports may create incomplete uploads, "
                "consider using rsync+ssh://"
            )
            ScpTransport._warned = True
        if push_permissions:
            logger.warning("scp transport ignores push_permissions=%s", push_permissions)
        try:
            self.ssh("mkdir", "-p", shlex.quote(os.path.dirname(self.remote_path(location))))
            run_tool(
                [settings.scp_tool, str(source), self.remote_target(location)],
                timeout=settings.tool_timeout_seconds,
            )
        except ToolError as exc:
            raise TransportError(f"uploading {source} to {self.url}/{location} failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_SCHEMES: dict[str, type] = {
    "file": FileTransport,
    "http": HttpTransport,
    "https": HttpTransport,
    "rsync+ssh": RsyncSshTransport,
    "scp": ScpTransport,
    "ssh": ScpTransport,
}


def supported_schemes() -> list[str]:
    return sorted(_SCHEMES)


def transport_for(url: str) -> Transport:
    """Return the transport implementation for *url*'s scheme."""
    scheme = urlsplit(url).scheme
    try:
        cls = _SCHEMES[scheme]
    except KeyError:
        raise TransportError(
            f"{url}: unhandled transport: {scheme or '(none)'} (supported: {', '.join(supported_schemes())})"
        ) from None
    return cls(url)
