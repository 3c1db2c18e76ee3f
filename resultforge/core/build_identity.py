"""Content identities: file, licence, environment, project and build ids.

Every id is a SHA-256 hex digest over fields fed one per line.  All tables
are memoized for the lifetime of the owning object; create fresh objects
for a fresh run.

Build-id fields, in order:

1. result name
2. result type
3. merged environment id
4. source-id of every source (sorted by name) for the result's source set
5. file id of the build script
6. build-id of every direct dependency (sorted by name), each in its own mode
7. project id
"""

from __future__ import annotations

import logging
import tempfile
from collections.abc import Mapping
from pathlib import Path

import resultforge
from resultforge.core.cache import Cache, CacheFlags
from resultforge.core.dependency_graph import DependencyGraph
from resultforge.core.errors import CacheError
from resultforge.core.hasher import ContentHasher, environment_id, hash_file, sha1_hex_file
from resultforge.core.policy import BuildPolicy, ScratchIds
from resultforge.core.source_registry import SourceBackendRegistry
from resultforge.models.build import BuildMode, SourceSet
from resultforge.models.project import DOT_SERVER, FileEntry, Project

logger = logging.getLogger(__name__)


def _is_backup_file(name: str) -> bool:
    return name.startswith(".") or name.endswith("~") or name.endswith(".bak")


class IdentityCache:
    """Memoized ids that do not depend on source backends.

    Parameters
    ----------
    project:
        The loaded project.
    cache:
        Cache used to read files that have no configured checksum.
    check_remote:
        Re-fetch files bypassing the cache and compare checksums.
    """

    def __init__(
        self,
        project: Project,
        cache: Cache,
        *,
        check_remote: bool = False,
        tool_version: str | None = None,
    ) -> None:
        self.project = project
        self.cache = cache
        self.check_remote = check_remote
        self.tool_version = tool_version or resultforge.__version__
        self._fileids: dict[tuple[str, str], str] = {}
        self._licenceids: dict[str, str] = {}
        self._projid: str | None = None

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def _compute_fileid(self, server: str, location: str, flags: CacheFlags | None = None) -> str:
        if flags is not None and not flags.cache:
            with tempfile.TemporaryDirectory(prefix="resultforge-fileid-") as tmp:
                path = self.cache.fetch_file(server, location, Path(tmp), "file", flags)
                return hash_file(path)
        return hash_file(self.cache.file_path(server, location))

    def verify_file(self, entry: FileEntry, default_server: str | None = None) -> str:
        """Check a file against its configured checksums; return its sha256.

        Raises
        ------
        CacheError
            If any configured or cross-checked checksum differs.
        """
        server = entry.server or default_server or DOT_SERVER
        computed = self._compute_fileid(server, entry.location)
        problems: list[str] = []
        if self.check_remote and self.cache.cache_enabled(server):
            fetched = self._compute_fileid(server, entry.location, CacheFlags(cache=False))
            if fetched != computed:
                problems.append(f"cached file checksum {computed} differs from fetched {fetched}")
        if entry.sha256 and entry.sha256 != computed:
            problems.append(f"configured sha256 {entry.sha256} differs from computed {computed}")
        if entry.sha1:
            sha1 = sha1_hex_file(self.cache.file_path(server, entry.location))
            if sha1 != entry.sha1:
                problems.append(f"configured sha1 {entry.sha1} differs from computed {sha1}")
        if problems:
            raise CacheError(
                f"checksum verification failed for {server}:{entry.location}: " + "; ".join(problems)
            )
        return computed

    def fileid(self, entry: FileEntry, default_server: str | None = None) -> str:
        """sha256 of a file: the configured value or the content fetched through the cache."""
        server = entry.server or default_server or DOT_SERVER
        key = (server, entry.location)
        if key not in self._fileids:
            if entry.sha256 and not self.check_remote:
                fid = entry.sha256
            elif self.check_remote:
                fid = self.verify_file(entry, server)
            else:
                fid = self._compute_fileid(server, entry.location)
            self._fileids[key] = fid
        return self._fileids[key]

    def project_fileid(self, location: str) -> str:
        """File id of a file below the project root."""
        return self.fileid(FileEntry(server=DOT_SERVER, location=location))

    # ------------------------------------------------------------------
    # Licences, environments, project
    # ------------------------------------------------------------------

    def licenceid(self, name: str) -> str:
        if name not in self._licenceids:
            licence = self.project.get_licence(name)
            hc = ContentHasher().append_line(licence.name)
            for entry in licence.files:
                hc.append_line(self.fileid(entry))
            self._licenceids[name] = hc.finish()
            logger.debug("LICENCEID: licence=%s licenceid=%s", name, self._licenceids[name])
        return self._licenceids[name]

    def environment_id(self, env: Mapping[str, str]) -> str:
        return environment_id(env)

    def merged_env(self, result_name: str) -> dict[str, str]:
        """Project env, then source envs, then project per-result env, then result env."""
        result = self.project.get_result(result_name)
        env = dict(self.project.env)
        for src in result.sources:
            env.update(self.project.get_source(src).env)
        env.update(self.project.result_env.get(result_name, {}))
        env.update(result.env)
        return env

    def projid(self) -> str:
        """Digest of ``proj/init`` files, release id, name, arch and tool version."""
        if self._projid is None:
            hc = ContentHasher()
            init_dir = self.project.init_dir
            names = sorted(p.name for p in init_dir.iterdir() if p.is_file()) if init_dir.is_dir() else []
            for name in names:
                if _is_backup_file(name):
                    continue
                location = f"proj/init/{name}"
                hc.append_line(location)
                hc.append_line(self.project_fileid(location))
            info = self.project.info
            hc.append_line(info.release_id)
            hc.append_line(info.name)
            hc.append_line(info.arch)
            hc.append_line(self.tool_version)
            self._projid = hc.finish()
            logger.debug("PROJID: projid=%s", self._projid)
        return self._projid


class BuildIdentity:
    """Recursive, memoized build-id computation.

    Build modes are attached per result with ``set_mode`` (default tag)
    before ids are computed; a dependency contributes its own mode's
    build-id.
    """

    def __init__(
        self,
        project: Project,
        ids: IdentityCache,
        registry: SourceBackendRegistry,
        graph: DependencyGraph | None = None,
        scratch_ids: ScratchIds | None = None,
    ) -> None:
        self.project = project
        self.ids = ids
        self.registry = registry
        self.graph = graph or DependencyGraph.from_project(project)
        self.scratch_ids = scratch_ids or ScratchIds()
        self._modes: dict[str, BuildMode] = {}
        self._memo: dict[tuple[str, SourceSet, tuple[str, ...]], str] = {}

    def set_mode(self, result_name: str, mode: BuildMode) -> None:
        self.project.get_result(result_name)
        self._modes[result_name] = mode

    def mode(self, result_name: str) -> BuildMode:
        return self._modes.get(result_name, BuildMode.TAG)

    def policy(self, result_name: str) -> BuildPolicy:
        return BuildPolicy(self.mode(result_name))

    def plain_buildid(self, result_name: str, source_set: SourceSet) -> str:
        """Build-id before any mode-specific transformation."""
        result = self.project.get_result(result_name)
        dep_ids = tuple(self.buildid(dep) for dep in self.graph.direct_dependencies(result_name))
        key = (result_name, source_set, dep_ids)
        if key in self._memo:
            return self._memo[key]

        hc = ContentHasher()
        hc.append_line(result.name)
        hc.append_line(result.type)
        hc.append_line(self.ids.environment_id(self.ids.merged_env(result_name)))
        for src in sorted(result.sources):
            hc.append_line(self.registry.call("sourceid", src, source_set))
        hc.append_line(self.ids.project_fileid(self.project.build_script_location(result_name)))
        for dep_id in dep_ids:
            hc.append_line(dep_id)
        hc.append_line(self.ids.projid())

        digest = hc.finish()
        self._memo[key] = digest
        logger.debug("BUILDID: result=%s buildid=%s", result_name, digest)
        return digest

    def buildid(self, result_name: str) -> str:
        """Build-id of *result_name* under its attached build mode."""
        policy = self.policy(result_name)
        plain = self.plain_buildid(result_name, policy.source_set)
        return policy.final_buildid(plain, self.scratch_ids)
