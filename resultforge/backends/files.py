"""``files`` sources: archives, patches and plain files fetched from servers.

Each entry of the ``file`` list names a server (default: the source's
``server``), a location and exactly one action:

- ``unpack = "<dir>"``  extract the archive; ``<dir>`` is the top-level
  directory it creates
- ``patch = "<N>"``      apply with ``patch -p<N>`` inside the source directory
- ``copy = "<dest>"``    copy into the source directory; a trailing ``/`` or
  an existing directory keeps the original file name
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from resultforge.backends.base import SourceBackend
from resultforge.config import settings
from resultforge.core.errors import BackendError, ErrorReport
from resultforge.core.tools import run_tool
from resultforge.models.build import SourceSet
from resultforge.models.project import DOT_SERVER, FileEntry, SourceConfig

logger = logging.getLogger(__name__)

_ACTIONS = ("unpack", "copy_to", "patch")

# Suffix -> tar decompression flag
_TAR_SUFFIXES: tuple[tuple[str, str], ...] = (
    (".tar.gz", "-z"),
    (".tgz", "-z"),
    (".tar.bz2", "-j"),
    (".tbz2", "-j"),
    (".tar.xz", "-J"),
    (".txz", "-J"),
    (".tar", ""),
)


def unpack_command(archive: Path, dest: Path) -> list[str]:
    """argv that extracts *archive* into *dest*, chosen by file suffix."""
    name = archive.name.lower()
    for suffix, flag in _TAR_SUFFIXES:
        if name.endswith(suffix):
            argv = [settings.tar_tool, "-C", str(dest)]
            if flag:
                argv.append(flag)
            return [*argv, "-xf", str(archive)]
    if name.endswith(".zip"):
        return [settings.unzip_tool, "-q", str(archive), "-d", str(dest)]
    raise BackendError(f"unknown archive type: {archive.name}")


def copy_destination(build_path: Path, source_name: str, copy_to: str, location: str) -> Path:
    """Resolve a ``copy`` attribute to the destination file path.

    ``copy_to`` names a directory when it ends in ``/``, is ``.`` or ``..``,
    or already exists as a directory; then the file keeps the basename of
    *location*.  Otherwise ``copy_to`` is the destination file name.
    """
    destination = build_path / source_name / copy_to
    basename = os.path.basename(location)
    if copy_to.endswith("/") or Path(copy_to).name in ("", ".", "..") or destination.is_dir():
        return destination / basename
    return destination


class FilesBackend(SourceBackend):
    """Backend for sources made of individually addressed files."""

    type_name = "files"
    allowed_attributes = frozenset({"licences", "env", "server", "files"})
    required_attributes = ("licences", "server")

    def _entries(self, source: SourceConfig) -> list[tuple[str, FileEntry]]:
        return [(entry.server or source.server or DOT_SERVER, entry) for entry in source.files or []]

    def check_attributes(self, source: SourceConfig, report: ErrorReport) -> None:
        if not source.files:
            report.append("source has no `file' attribute")
            return
        for entry in source.files:
            server = entry.server or source.server
            if entry.server is not None and not self.cache.valid_server(entry.server):
                report.append("invalid server: %s", entry.server)
            for name in entry.licences or []:
                if name not in self.project.licences:
                    report.append("invalid licence assigned to file %s: %s", entry.location, name)
            if not entry.location:
                report.append("source has file entry without `location' attribute")
            actions = [a for a in _ACTIONS if getattr(entry, a) is not None]
            if not actions:
                report.append("file entry %s has no `unpack', `copy' or `patch' attribute", entry.location)
            elif len(actions) > 1:
                report.append("file entry %s has more than one of `unpack', `copy' and `patch'", entry.location)
            if entry.patch is not None and not entry.patch.isdigit():
                report.append("file entry %s: `patch' must be a number, got %r", entry.location, entry.patch)
            if server is not None and server != DOT_SERVER and not (entry.sha256 or entry.sha1):
                report.append("file entry for remote file %s:%s has no `sha256' attribute", server, entry.location)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def fetch(self, source: SourceConfig) -> None:
        """Mirror every remote file in the cache.  Already cached files are kept."""
        for server, entry in self._entries(source):
            if server == DOT_SERVER or not self.cache.cache_enabled(server):
                logger.debug("not caching %s:%s (stored locally)", server, entry.location)
                continue
            self.cache.cache_file(server, entry.location)
        logger.info("source %s: files available", source.name)

    def update(self, source: SourceConfig) -> None:
        logger.info("source %s: files sources have no working copy to update", source.name)

    def working_copy_available(self, source: SourceConfig) -> bool:
        return False

    def check_workingcopy(self, source: SourceConfig) -> bool:
        return True

    def prepare(self, source: SourceConfig, source_set: SourceSet, build_path: Path) -> Path:
        """Materialize all file entries below ``build_path/<name>``.

        The source set does not apply to files sources.
        """
        build_path = Path(build_path)
        build_path.mkdir(parents=True, exist_ok=True)
        source_dir = build_path / source.name
        for server, entry in self._entries(source):
            if entry.sha256 or entry.sha1:
                self.ids.verify_file(entry, server)
            if entry.unpack is not None:
                archive = self.cache.file_path(server, entry.location)
                run_tool(unpack_command(archive, build_path), source=source.name)
                if not source_dir.exists() and entry.unpack != source.name:
                    source_dir.symlink_to(entry.unpack)
                continue
            source_dir.mkdir(parents=True, exist_ok=True)
            if entry.patch is not None:
                patch_file = self.cache.file_path(server, entry.location)
                run_tool(
                    [settings.patch_tool, f"-p{entry.patch}", "-d", str(source_dir), "-i", str(patch_file)],
                    source=source.name,
                )
            elif entry.copy_to is not None:
                dest = copy_destination(build_path, source.name, entry.copy_to, entry.location)
                dest.parent.mkdir(parents=True, exist_ok=True)
                self.cache.fetch_file(server, entry.location, dest.parent, dest.name)
        logger.info("source %s: prepared in %s", source.name, source_dir)
        return source_dir

    def compute_sourceid(self, source: SourceConfig, source_set: SourceSet) -> str:
        hc = self.base_hasher(source)
        for server, entry in self._entries(source):
            hc.append_line(self.ids.fileid(entry, server))
            hc.append_line(entry.location)
            hc.append_line(server)
            hc.append_line(str(entry.unpack))
            hc.append_line(str(entry.patch))
            hc.append_line(str(entry.copy_to))
        return hc.finish()

    def display_attributes(self, source: SourceConfig) -> list[str]:
        return [f"file       = {server}:{entry.location}" for server, entry in self._entries(source)]
