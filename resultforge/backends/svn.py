"""``svn`` sources: ``location`` on the server holds ``tag`` and ``branch``
directories; the working copy checks out the whole location.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from urllib.parse import urlsplit

from resultforge.backends.base import WORKING_COPY_MARKER, SourceBackend
from resultforge.config import settings
from resultforge.core.errors import BackendError, ErrorReport
from resultforge.core.tools import run_tool
from resultforge.models.build import SourceSet
from resultforge.models.project import SourceConfig

logger = logging.getLogger(__name__)

_LAST_CHANGED_REV = re.compile(r"^Last Changed Rev:\s*(\d+)\s*$", re.MULTILINE)


def svn_url(server_url: str, location: str) -> str:
    """Translate a server URL plus location into a Subversion URL."""
    parts = urlsplit(server_url)
    path = "/".join(p.strip("/") for p in (parts.path, location) if p.strip("/"))
    if parts.scheme in ("ssh", "scp", "rsync+ssh"):
        return f"svn+ssh://{parts.netloc}/{path}"
    if parts.scheme == "file":
        return f"file:///{path}"
    if parts.scheme in ("http", "https", "svn"):
        return f"{server_url.rstrip('/')}/{location.strip('/')}"
    raise BackendError(f"unsupported subversion transport: {parts.scheme}")


class SvnBackend(SourceBackend):
    """Backend for Subversion repositories."""

    type_name = "svn"
    allowed_attributes = frozenset(
        {"licences", "env", "server", "location", "branch", "tag", "workingcopy_subdir", "working"}
    )
    required_attributes = ("licences", "server", "location", "branch", "tag")

    def _svn(self, source: SourceConfig, *args: str, check: bool = True):
        return run_tool(
            [settings.svn_tool, *args],
            check=check,
            timeout=settings.tool_timeout_seconds,
            source=source.name,
        )

    def repository_url(self, source: SourceConfig) -> str:
        server = self.cache.server_config(self.required(source, "server"))
        return svn_url(server.url, self.required(source, "location"))

    def workingcopy_subdir(self, source: SourceConfig) -> str:
        return source.workingcopy_subdir or str(source.branch)

    def check_attributes(self, source: SourceConfig, report: ErrorReport) -> None:
        if source.server is not None and self.cache.valid_server(source.server) and source.location:
            try:
                self.repository_url(source)
            except BackendError as exc:
                report.append("%s", str(exc))

    # ------------------------------------------------------------------
    # Working copy
    # ------------------------------------------------------------------

    def working_copy_available(self, source: SourceConfig) -> bool:
        return (self.working_dir(source) / ".svn").is_dir()

    def check_workingcopy(self, source: SourceConfig) -> bool:
        if not self.working_copy_available(source):
            logger.warning("source %s: working copy is not available", source.name)
            return True
        info = self._svn(source, "info", "--show-item", "url", str(self.working_dir(source)), check=False)
        if not info.ok:
            raise BackendError("working copy is not a subversion checkout", source=source.name)
        if info.stdout.strip().rstrip("/") != self.repository_url(source).rstrip("/"):
            raise BackendError("working copy URL does not match the configuration", source=source.name)
        return True

    def fetch(self, source: SourceConfig) -> None:
        wc = self.working_dir(source)
        if self.working_copy_available(source):
            logger.info("source %s: working copy %s exists, skipping", source.name, wc)
            return
        wc.parent.mkdir(parents=True, exist_ok=True)
        logger.info("source %s: checking out %s", source.name, self.repository_url(source))
        self._svn(source, "checkout", self.repository_url(source), str(wc))

    def update(self, source: SourceConfig) -> None:
        if not self.working_copy_available(source):
            raise BackendError("working copy is not available", source=source.name)
        logger.info("source %s: updating %s", source.name, self.working_dir(source))
        self._svn(source, "update", str(self.working_dir(source)))

    # ------------------------------------------------------------------
    # Build inputs
    # ------------------------------------------------------------------

    def _ref(self, source: SourceConfig, source_set: SourceSet) -> str:
        if source_set is SourceSet.TAG:
            return str(source.tag)
        if source_set is SourceSet.BRANCH:
            return str(source.branch)
        raise BackendError(f"invalid source set: {source_set.value}", source=source.name)

    def last_changed_rev(self, source: SourceConfig, source_set: SourceSet) -> str:
        url = f"{self.repository_url(source)}/{self._ref(source, source_set)}"
        info = self._svn(source, "info", url)
        match = _LAST_CHANGED_REV.search(info.stdout)
        if match is None:
            raise BackendError(f"svn info {url}: no `Last Changed Rev'", source=source.name)
        return match.group(1)

    def compute_sourceid(self, source: SourceConfig, source_set: SourceSet) -> str:
        if source_set is SourceSet.WORKING_COPY:
            return WORKING_COPY_MARKER
        hc = self.base_hasher(source)
        hc.append_line(str(source.branch))
        hc.append_line(str(source.tag))
        hc.append_line(str(source.server))
        hc.append_line(str(source.location))
        hc.append_line(self.last_changed_rev(source, source_set))
        return hc.finish()

    def prepare(self, source: SourceConfig, source_set: SourceSet, build_path: Path) -> Path:
        dest = Path(build_path) / source.name
        Path(build_path).mkdir(parents=True, exist_ok=True)
        if source_set is SourceSet.WORKING_COPY:
            subdir = self.working_dir(source) / self.workingcopy_subdir(source)
            self.copy_working_tree(subdir, dest, (".svn",), source.name)
            return dest
        url = f"{self.repository_url(source)}/{self._ref(source, source_set)}"
        self._svn(source, "export", url, str(dest))
        logger.info("source %s: exported %s", source.name, url)
        return dest

    def display_attributes(self, source: SourceConfig) -> list[str]:
        return [
            f"server     = {source.server}",
            f"location   = {source.location}",
            f"branch     = {source.branch}",
            f"tag        = {source.tag}",
            f"wc subdir  = {self.workingcopy_subdir(source)}",
            f"working    = {source.working or f'in/{source.name}'}",
        ]
