"""``git`` sources: a clone in ``working`` (default ``in/<name>``).

The tag set identifies the source by the commit of ``refs/tags/<tag>``, the
branch set by the commit of ``refs/heads/<branch>``.  The working-copy set
has no commit and uses a fixed marker.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from urllib.parse import urlsplit

from resultforge.backends.base import WORKING_COPY_MARKER, SourceBackend
from resultforge.config import settings
from resultforge.core.errors import BackendError, ErrorReport
from resultforge.core.tools import run_tool
from resultforge.models.build import SourceSet
from resultforge.models.project import SourceConfig

logger = logging.getLogger(__name__)


def git_url(server_url: str, location: str) -> str:
    """Translate a server URL plus location into something ``git clone`` accepts."""
    parts = urlsplit(server_url)
    path = "/".join(p.strip("/") for p in (parts.path, location) if p.strip("/"))
    if parts.scheme in ("ssh", "scp", "rsync+ssh"):
        return f"git+ssh://{parts.netloc}/{path}"
    if parts.scheme == "file":
        return f"/{path}"
    if parts.scheme in ("http", "https"):
        return f"{server_url.rstrip('/')}/{location.strip('/')}"
    raise BackendError(f"transport not supported for git: {parts.scheme}")


def sourceset_ref(source: SourceConfig, source_set: SourceSet) -> str:
    if source_set is SourceSet.BRANCH:
        return f"refs/heads/{source.branch}"
    if source_set is SourceSet.TAG:
        return f"refs/tags/{source.tag}"
    raise BackendError(f"not a git source set: {source_set.value}", source=source.name)


class GitBackend(SourceBackend):
    """Backend for git repositories."""

    type_name = "git"
    allowed_attributes = frozenset({"licences", "env", "server", "location", "branch", "tag", "working"})
    required_attributes = ("licences", "server", "location", "branch", "tag")

    def _git(self, source: SourceConfig, *args: str, cwd: Path | None = None, check: bool = True):
        return run_tool(
            [settings.git_tool, *args],
            cwd=cwd,
            check=check,
            timeout=settings.tool_timeout_seconds,
            source=source.name,
        )

    def _git_dir(self, source: SourceConfig) -> str:
        return f"--git-dir={self.working_dir(source) / '.git'}"

    def remote_url(self, source: SourceConfig) -> str:
        server = self.cache.server_config(self.required(source, "server"))
        return git_url(server.url, self.required(source, "location"))

    def check_attributes(self, source: SourceConfig, report: ErrorReport) -> None:
        if source.server is not None and self.cache.valid_server(source.server) and source.location:
            try:
                self.remote_url(source)
            except BackendError as exc:
                report.append("%s", str(exc))

    # ------------------------------------------------------------------
    # Working copy
    # ------------------------------------------------------------------

    def working_copy_available(self, source: SourceConfig) -> bool:
        return (self.working_dir(source) / ".git").is_dir()

    def check_workingcopy(self, source: SourceConfig) -> bool:
        """Check branch, tracking remote and origin URL of the working copy."""
        if not self.working_copy_available(source):
            logger.warning("source %s: working copy is not available", source.name)
            return True
        report = ErrorReport("in source %s (git working copy):", source.name)
        branch_ok = self._git(
            source, self._git_dir(source), "rev-parse", "--verify", "--quiet",
            f"refs/heads/{source.branch}", check=False,
        ).ok
        if not branch_ok:
            report.append("branch not available: %s", source.branch)
        remote = self._git(
            source, self._git_dir(source), "config", f"branch.{source.branch}.remote", check=False
        )
        if not remote.ok:
            report.append("remote is not configured for branch %s", source.branch)
        elif remote.stdout.strip() != "origin":
            report.append("branch.%s.remote is not \"origin\"", source.branch)
        origin = self._git(source, self._git_dir(source), "config", "remote.origin.url", check=False)
        if origin.stdout.strip().rstrip("/") != self.remote_url(source).rstrip("/"):
            report.append("remote.origin.url does not match the configuration")
        if report.is_fatal:
            raise BackendError(report.render(), source=source.name)
        return True

    def fetch(self, source: SourceConfig) -> None:
        """Clone into the working copy.  No-op if it already exists."""
        wc = self.working_dir(source)
        if self.working_copy_available(source):
            logger.info("source %s: working copy %s exists, skipping", source.name, wc)
            return
        wc.parent.mkdir(parents=True, exist_ok=True)
        logger.info("source %s: cloning %s", source.name, self.remote_url(source))
        self._git(source, "clone", "--branch", str(source.branch), self.remote_url(source), str(wc))

    def update(self, source: SourceConfig) -> None:
        """``git fetch`` and fast-forward the configured branch if it is checked out."""
        if not self.working_copy_available(source):
            raise BackendError("working copy is not available", source=source.name)
        wc = self.working_dir(source)
        logger.info("source %s: updating %s [%s]", source.name, wc, source.branch)
        self._git(source, "fetch", "--tags", "origin", cwd=wc)
        current = self._git(source, "symbolic-ref", "--short", "HEAD", cwd=wc, check=False)
        if current.stdout.strip() != source.branch:
            logger.warning("source %s: not on configured branch, skipping merge", source.name)
            return
        self._git(source, "merge", "--ff-only", f"origin/{source.branch}", cwd=wc)

    # ------------------------------------------------------------------
    # Build inputs
    # ------------------------------------------------------------------

    def commit_id(self, source: SourceConfig, source_set: SourceSet) -> str:
        if not self.working_copy_available(source):
            raise BackendError("working copy is not available, run fetch-sources", source=source.name)
        ref = sourceset_ref(source, source_set)
        result = self._git(source, self._git_dir(source), "rev-parse", "--verify", "--quiet",
                           f"{ref}^{{commit}}", check=False)
        commit = result.stdout.strip()
        if not result.ok or not commit:
            raise BackendError(f"can't get commit id for ref {ref} from {self.working_dir(source)}",
                               source=source.name)
        return commit

    def compute_sourceid(self, source: SourceConfig, source_set: SourceSet) -> str:
        if source_set is SourceSet.WORKING_COPY:
            return WORKING_COPY_MARKER
        hc = self.base_hasher(source)
        hc.append_line(str(source.server))
        hc.append_line(str(source.location))
        hc.append_line(source.working or f"in/{source.name}")
        hc.append_line(self.commit_id(source, source_set))
        return hc.finish()

    def prepare(self, source: SourceConfig, source_set: SourceSet, build_path: Path) -> Path:
        """Export the tag, the branch head or the working tree to ``build_path/<name>``."""
        dest = Path(build_path) / source.name
        if source_set is SourceSet.WORKING_COPY:
            self.copy_working_tree(self.working_dir(source), dest, (".git",), source.name)
            return dest
        commit = self.commit_id(source, source_set)
        dest.mkdir(parents=True, exist_ok=False)
        with tempfile.TemporaryDirectory(prefix="resultforge-git-") as tmp:
            archive = Path(tmp) / "source.tar"
            self._git(source, self._git_dir(source), "archive", "--format=tar", "-o", str(archive), commit)
            run_tool([settings.tar_tool, "-C", str(dest), "-xf", str(archive)], source=source.name)
        logger.info("source %s: prepared %s at %s", source.name, source_set.value, commit)
        return dest

    def display_attributes(self, source: SourceConfig) -> list[str]:
        return [
            f"server     = {source.server}",
            f"location   = {source.location}",
            f"branch     = {source.branch}",
            f"tag        = {source.tag}",
            f"working    = {source.working or f'in/{source.name}'}",
        ]
