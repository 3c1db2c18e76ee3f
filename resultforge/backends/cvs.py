"""``cvs`` sources: ``module`` in the repository at ``<server>/<cvsroot>``.

Only the tag set has a computable source id (tags are unique in CVS); the
branch set is rejected and the working-copy set uses a fixed marker.
"""

from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import urlsplit

from resultforge.backends.base import WORKING_COPY_MARKER, SourceBackend
from resultforge.config import settings
from resultforge.core.errors import BackendError, ErrorReport
from resultforge.core.tools import run_tool
from resultforge.models.build import SourceSet
from resultforge.models.project import SourceConfig

logger = logging.getLogger(__name__)

# Tag value that means "no tag"; such a source has no tag source id.
NO_TAG = "^"


def cvs_root(server_url: str, cvsroot: str) -> str:
    """``CVSROOT`` string for a repository below a server URL."""
    parts = urlsplit(server_url)
    path = "/".join(p.strip("/") for p in (parts.path, cvsroot) if p.strip("/"))
    if parts.scheme == "file":
        return f"/{path}"
    if parts.scheme in ("ssh", "rsync+ssh"):
        return f"{parts.netloc}:/{path}"
    if parts.scheme == "cvspserver":
        return f":pserver:{parts.netloc}:/{path}"
    raise BackendError(f"cvs: transport not supported: {parts.scheme}")


class CvsBackend(SourceBackend):
    """Backend for CVS modules."""

    type_name = "cvs"
    allowed_attributes = frozenset(
        {"licences", "env", "server", "cvsroot", "module", "branch", "tag", "working"}
    )
    required_attributes = ("licences", "server", "cvsroot", "module", "branch", "tag")

    def root(self, source: SourceConfig) -> str:
        server = self.cache.server_config(self.required(source, "server"))
        return cvs_root(server.url, self.required(source, "cvsroot"))

    def _cvs(self, source: SourceConfig, *args: str, cwd: Path | None = None):
        return run_tool(
            [settings.cvs_tool, "-d", self.root(source), *args],
            cwd=cwd,
            env={"CVS_RSH": settings.ssh_tool},
            timeout=settings.tool_timeout_seconds,
            source=source.name,
        )

    def check_attributes(self, source: SourceConfig, report: ErrorReport) -> None:
        if source.server is not None and self.cache.valid_server(source.server) and source.cvsroot:
            try:
                self.root(source)
            except BackendError as exc:
                report.append("%s", str(exc))

    # ------------------------------------------------------------------
    # Working copy
    # ------------------------------------------------------------------

    def working_copy_available(self, source: SourceConfig) -> bool:
        return (self.working_dir(source) / "CVS").is_dir()

    def check_workingcopy(self, source: SourceConfig) -> bool:
        if not self.working_copy_available(source):
            logger.warning("source %s: working copy is not available", source.name)
        return True

    def fetch(self, source: SourceConfig) -> None:
        """Check out the configured branch; ``HEAD`` checks out the trunk."""
        wc = self.working_dir(source)
        if self.working_copy_available(source):
            logger.info("source %s: working copy %s exists, skipping", source.name, wc)
            return
        wc.parent.mkdir(parents=True, exist_ok=True)
        rev = [] if source.branch == "HEAD" else ["-r", str(source.branch)]
        logger.info("source %s: checking out module %s", source.name, source.module)
        self._cvs(source, "checkout", "-R", *rev, "-d", wc.name, str(source.module), cwd=wc.parent)

    def update(self, source: SourceConfig) -> None:
        if not self.working_copy_available(source):
            raise BackendError("working copy is not available", source=source.name)
        logger.info("source %s: updating %s", source.name, self.working_dir(source))
        self._cvs(source, "update", "-R", cwd=self.working_dir(source))

    # ------------------------------------------------------------------
    # Build inputs
    # ------------------------------------------------------------------

    def compute_sourceid(self, source: SourceConfig, source_set: SourceSet) -> str:
        if source_set is SourceSet.WORKING_COPY:
            return WORKING_COPY_MARKER
        if source_set is not SourceSet.TAG or source.tag == NO_TAG:
            raise BackendError(f"cannot calculate sourceid for source set {source_set.value}",
                               source=source.name)
        hc = self.base_hasher(source)
        hc.append_line(str(source.tag))
        hc.append_line(str(source.server))
        hc.append_line(str(source.cvsroot))
        hc.append_line(str(source.module))
        return hc.finish()

    def prepare(self, source: SourceConfig, source_set: SourceSet, build_path: Path) -> Path:
        build_path = Path(build_path)
        build_path.mkdir(parents=True, exist_ok=True)
        dest = build_path / source.name
        if source_set is SourceSet.WORKING_COPY:
            self.copy_working_tree(self.working_dir(source), dest, (), source.name)
            return dest
        rev = source.tag if source_set is SourceSet.TAG else source.branch
        self._cvs(source, "export", "-R", "-r", str(rev), "-d", source.name, str(source.module),
                  cwd=build_path)
        logger.info("source %s: exported %s", source.name, rev)
        return dest

    def display_attributes(self, source: SourceConfig) -> list[str]:
        return [
            f"server     = {source.server}",
            f"cvsroot    = {source.cvsroot}",
            f"module     = {source.module}",
            f"branch     = {source.branch}",
            f"tag        = {source.tag}",
            f"working    = {source.working or f'in/{source.name}'}",
        ]
