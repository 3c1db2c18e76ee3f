"""Server table with local mirroring, writeback policy and safe publishing.

A file is addressed by ``(server, location)``.  Each server has a remote
URL and, when caching is enabled, a mirror directory under
``<cache_dir>/<server>``.  The built-in server ``.`` addresses the project
root and is never cached.

Writeback (uploading to the remote side) is a per-server flag that can be
toggled at runtime.  Directives coming from the command line are applied
with ``apply_writeback_directives`` once the server table is complete.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from resultforge.core.errors import (
    CacheError,
    DuplicateArtifactError,
    ToolError,
    TransportError,
    UnknownServerError,
    WritebackDisabledError,
)
from resultforge.core.hasher import checksum_line, hash_file
from resultforge.core.tools import run_tool
from resultforge.core.transport import FileTransport, Transport, copy_atomic, transport_for
from resultforge.models.project import DOT_SERVER, Project, ServerConfig

logger = logging.getLogger(__name__)

CHECKSUM_SUFFIX = ".sha256"


class CacheFlags(BaseModel):
    """Per-call options for cache operations.

    ``writeback`` overrides the server's flag for one call when set.
    """

    model_config = ConfigDict(frozen=True)

    refresh: bool = False
    check_only: bool = False
    cache: bool = True
    writeback: bool | None = None
    chmod: str | None = None


DEFAULT_FLAGS = CacheFlags()


@dataclass
class CacheEntry:
    """Runtime state of one server: configuration plus the mutable writeback flag."""

    config: ServerConfig
    transport: Transport
    mirror: Path | None
    writeback: bool

    @property
    def cached(self) -> bool:
        return self.mirror is not None


class Cache:
    """Maps ``(server, location)`` to bytes through optional local mirrors.

    Parameters
    ----------
    cache_dir:
        Root directory for per-server mirrors.
    servers:
        Initial server table.  More can be added with ``add_server``.

    Examples
    --------
    >>> cache = Cache.for_project(project, cache_dir)        # doctest: +SKIP
    >>> cache.fetch_file("upstream", "zlib/zlib-1.3.tar.gz", workdir)  # doctest: +SKIP
    """

    def __init__(self, cache_dir: Path, servers: Iterable[ServerConfig] = ()) -> None:
        self.cache_dir = Path(cache_dir)
        self._entries: dict[str, CacheEntry] = {}
        for server in servers:
            self.add_server(server)

    @classmethod
    def for_project(cls, project: Project, cache_dir: Path) -> Cache:
        """Build the cache for *project*: the ``.`` server plus its server table."""
        dot = ServerConfig(
            name=DOT_SERVER,
            url=project.root.resolve().as_uri(),
            cachable=False,
            cache=False,
            writeback=True,
            islocal=True,
        )
        cache = cls(cache_dir, [dot])
        for name in sorted(project.servers):
            cache.add_server(project.get_server(name))
        return cache

    # ------------------------------------------------------------------
    # Server table
    # ------------------------------------------------------------------

    def add_server(self, config: ServerConfig) -> None:
        if config.name in self._entries:
            raise CacheError(f"server already configured: {config.name}")
        mirror = self.cache_dir / config.name if config.cache_enabled else None
        self._entries[config.name] = CacheEntry(
            config=config,
            transport=transport_for(config.url),
            mirror=mirror,
            writeback=config.writeback,
        )
        logger.debug(
            "cache: server %s url=%s cached=%s writeback=%s",
            config.name,
            config.url,
            mirror is not None,
            config.writeback,
        )

    def _entry(self, server: str) -> CacheEntry:
        try:
            return self._entries[server]
        except KeyError:
            raise UnknownServerError(server) from None

    def valid_server(self, server: str) -> bool:
        return server in self._entries

    def server_names(self) -> list[str]:
        return sorted(self._entries)

    def server_config(self, server: str) -> ServerConfig:
        return self._entry(server).config

    def remote_url(self, server: str, location: str) -> str:
        return f"{self._entry(server).config.url.rstrip('/')}/{location}"

    def cache_enabled(self, server: str) -> bool:
        return self._entry(server).cached

    # ------------------------------------------------------------------
    # Writeback policy
    # ------------------------------------------------------------------

    def set_writeback(self, server: str, enabled: bool) -> None:
        entry = self._entry(server)
        entry.writeback = enabled
        logger.info("cache: writeback for server %s %s", server, "enabled" if enabled else "disabled")

    def writeback_enabled(self, server: str, flags: CacheFlags = DEFAULT_FLAGS) -> bool:
        entry = self._entry(server)
        if flags.writeback is not None:
            return flags.writeback
        return entry.writeback

    def apply_writeback_directives(self, directives: Iterable[tuple[str, bool]]) -> None:
        """Apply ``(server, enabled)`` toggles in the given order.

        All servers are checked before any toggle takes effect.
        """
        directives = list(directives)
        for server, _ in directives:
            self._entry(server)
        for server, enabled in directives:
            self.set_writeback(server, enabled)

    # ------------------------------------------------------------------
    # Existence checks
    # ------------------------------------------------------------------

    def cache_path(self, server: str, location: str) -> Path | None:
        entry = self._entry(server)
        if entry.mirror is None:
            return None
        return entry.mirror / location

    def file_in_cache(self, server: str, location: str) -> bool:
        """Existence check on the local mirror.  Never touches the network."""
        path = self.cache_path(server, location)
        return path is not None and path.is_file()

    def file_on_server(self, server: str, location: str) -> bool:
        return self._entry(server).transport.exists(location)

    def file_exists(self, server: str, location: str) -> bool:
        """Check the mirror first, then the server."""
        return self.file_in_cache(server, location) or self.file_on_server(server, location)

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def cache_file(self, server: str, location: str, flags: CacheFlags = DEFAULT_FLAGS) -> Path | None:
        """Ensure a local mirror of the file exists and return its path.

        No-op for servers without a cache (returns ``None``).  An existing
        mirror is reused unless ``flags.refresh`` is set; with
        ``flags.check_only`` a missing mirror is not fetched.
        """
        path = self.cache_path(server, location)
        if path is None:
            return None
        available = path.is_file()
        if available and (flags.check_only or not flags.refresh):
            return path
        if flags.check_only:
            return None
        logger.info("cache: fetching %s:%s", server, location)
        self._entry(server).transport.fetch(location, path)
        return path

    def file_path(self, server: str, location: str, flags: CacheFlags = DEFAULT_FLAGS) -> Path:
        """Local path of the file, caching it first if needed.

        Servers without a cache only work if they are plain ``file://``.
        """
        entry = self._entry(server)
        if entry.cached and flags.cache:
            path = self.cache_file(server, location, flags)
            if path is None:
                raise CacheError(f"{server}:{location}: not available in the cache")
            return path
        if isinstance(entry.transport, FileTransport):
            path = entry.transport.path_of(location)
            if not path.is_file():
                raise TransportError(f"{server}:{location}: no such file")
            return path
        raise CacheError(
            f"cannot provide a local path for {server}:{location}; enable caching for this server"
        )

    def fetch_file(
        self,
        server: str,
        location: str,
        dest_dir: Path,
        dest_name: str | None = None,
        flags: CacheFlags = DEFAULT_FLAGS,
    ) -> Path:
        """Copy the file to ``dest_dir/dest_name``, going through the cache if enabled."""
        entry = self._entry(server)
        dest = Path(dest_dir) / (dest_name or os.path.basename(location))
        if entry.cached and flags.cache:
            cached = self.cache_file(server, location, flags)
            if cached is None:
                raise CacheError(f"{server}:{location}: not available in the cache")
            copy_atomic(cached, dest)
        else:
            entry.transport.fetch(location, dest)
        if flags.chmod:
            try:
                run_tool(["chmod", flags.chmod, str(dest)])
            except ToolError as exc:
                raise CacheError(f"chmod {flags.chmod} {dest} failed: {exc}") from exc
        return dest

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def store_in_cache(self, local_file: Path, server: str, location: str) -> Path | None:
        """Place *local_file* in the server's mirror only.  ``None`` if uncached."""
        path = self.cache_path(server, location)
        if path is None:
            return None
        copy_atomic(Path(local_file), path)
        return path

    def push_file(
        self,
        local_file: Path,
        server: str,
        location: str,
        flags: CacheFlags = DEFAULT_FLAGS,
    ) -> None:
        """Upload *local_file* to the server, updating the mirror too.

        Raises
        ------
        WritebackDisabledError
            If writeback is off for *server* (after ``flags.writeback``).
        """
        entry = self._entry(server)
        if not self.writeback_enabled(server, flags):
            raise WritebackDisabledError(server)
        self.store_in_cache(local_file, server, location)
        logger.info("cache: uploading %s to %s:%s", local_file, server, location)
        entry.transport.push(Path(local_file), location, entry.config.push_permissions)

    def publish_file(
        self,
        local_file: Path,
        server: str,
        location: str,
        flags: CacheFlags = DEFAULT_FLAGS,
    ) -> str:
        """Content-addressed upload of a new file plus its checksum sidecar.

        Both ``<location>.sha256`` and ``<location>`` are looked up on the
        cache and on the server before anything is uploaded; existing
        content is never overwritten.  Returns the sha256 digest.

        Raises
        ------
        WritebackDisabledError
            If the upload is not permitted.
        DuplicateArtifactError
            If the sidecar or the content already exists.
        """
        if not self.writeback_enabled(server, flags):
            raise WritebackDisabledError(server)

        checksum_location = location + CHECKSUM_SUFFIX
        for loc in (checksum_location, location):
            if self.file_in_cache(server, loc):
                raise DuplicateArtifactError(server, loc, "cache")
            if self.file_on_server(server, loc):
                raise DuplicateArtifactError(server, loc, "server")

        digest = hash_file(Path(local_file))
        with tempfile.TemporaryDirectory(prefix="resultforge-publish-") as tmp:
            sidecar = Path(tmp) / os.path.basename(checksum_location)
            sidecar.write_text(checksum_line(digest, os.path.basename(location)))
            self.push_file(sidecar, server, checksum_location, flags)
            self.push_file(Path(local_file), server, location, flags)
        logger.info("cache: published %s:%s sha256=%s", server, location, digest)
        return digest

