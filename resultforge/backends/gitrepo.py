"""``gitrepo`` sources: a git repository handed to the build as a repository.

Where ``git`` sources export a plain tree, ``gitrepo`` sources keep the
history.  The tag and branch sets clone the working copy as a mirror into
the build directory and check out ``refs/tags/<tag>`` or
``refs/heads/<branch>``; the working-copy set copies the working copy
including ``.git``.

The source id covers every ref of the working copy (``git show-ref``), so
any new branch or tag yields a new id.
"""

from __future__ import annotations

import logging
from pathlib import Path

from resultforge.backends.base import WORKING_COPY_MARKER
from resultforge.backends.git import GitBackend, sourceset_ref
from resultforge.core.errors import BackendError
from resultforge.models.build import SourceSet
from resultforge.models.project import SourceConfig

logger = logging.getLogger(__name__)


class GitRepoBackend(GitBackend):
    """Backend for git repositories prepared with their history."""

    type_name = "gitrepo"

    def fetch(self, source: SourceConfig) -> None:
        """Clone, then make sure the configured branch exists locally."""
        super().fetch(source)
        ref = f"refs/heads/{source.branch}"
        has_branch = self._git(
            source, self._git_dir(source), "rev-parse", "--verify", "--quiet", ref, check=False
        ).ok
        if not has_branch:
            wc = self.working_dir(source)
            self._git(source, "branch", "--track", str(source.branch), f"origin/{source.branch}", cwd=wc)
            self._git(source, "checkout", "-q", str(source.branch), cwd=wc)

    def compute_sourceid(self, source: SourceConfig, source_set: SourceSet) -> str:
        if source_set is SourceSet.WORKING_COPY:
            return WORKING_COPY_MARKER
        if not self.working_copy_available(source):
            raise BackendError("working copy is not available, run fetch-sources", source=source.name)
        self.check_workingcopy(source)
        hc = self.base_hasher(source)
        hc.append_line(str(source.server))
        hc.append_line(str(source.location))
        hc.append_line(source_set.value)
        hc.append_line(str(source.tag))
        hc.append_line(str(source.branch))
        hc.append(self._git(source, self._git_dir(source), "show-ref").stdout)
        return hc.finish()

    def prepare(self, source: SourceConfig, source_set: SourceSet, build_path: Path) -> Path:
        """Mirror the working copy into ``build_path/<name>`` and check out the set's ref."""
        dest = Path(build_path) / source.name
        wc = self.working_dir(source)
        if source_set is SourceSet.WORKING_COPY:
            self.copy_working_tree(wc, dest, (), source.name)
            return dest
        if not self.working_copy_available(source):
            raise BackendError("working copy is not available, run fetch-sources", source=source.name)
        ref = sourceset_ref(source, source_set)
        git_dir = dest / ".git"
        git_dir.parent.mkdir(parents=True, exist_ok=False)
        self._git(source, "clone", "-q", "--mirror", str(wc), str(git_dir))
        self._git(source, f"--git-dir={git_dir}", "config", "core.bare", "false")
        self._git(source, "checkout", "-q", "-f", ref, cwd=dest)
        logger.info("source %s: prepared repository at %s", source.name, ref)
        return dest
