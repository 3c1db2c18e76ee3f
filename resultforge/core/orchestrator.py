"""Build orchestrator: the central coordinator for resultforge builds.

The BuildOrchestrator wires together the Cache, IdentityCache, the source
backend registry, the DependencyGraph, BuildIdentity and a Sandbox into
one build engine.

A build runs in two phases:

1. ``plan`` selects results, attaches build modes and settings, orders
   the closure topologically and computes every build-id.  Nothing is
   built; ``display_buildids`` stops here.
2. ``run`` walks the plan in order.  A failing result is recorded and the
   run continues with results that do not depend on it; results whose
   dependency failed are skipped.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from resultforge.backends import DEFAULT_BACKENDS, SourceBackend, create_registry
from resultforge.config import settings as forge_settings
from resultforge.core.build_identity import BuildIdentity, IdentityCache
from resultforge.core.cache import Cache
from resultforge.core.collect_project import PROJECT_DIR, ProjectCollector
from resultforge.core.dependency_graph import DependencyGraph
from resultforge.core.errors import (
    CacheError,
    ConfigurationError,
    ResultForgeError,
)
from resultforge.core.policy import SCRATCH_PREFIX, check_storage
from resultforge.core.project_loader import load_project
from resultforge.core.sandbox import RESULT_ARCHIVE, LocalSandbox, Sandbox
from resultforge.core.source_registry import SourceBackendRegistry
from resultforge.models.build import (
    BuildConfig,
    BuildMode,
    BuildReport,
    BuildSettings,
    ResultOutcome,
    ResultState,
)
from resultforge.models.project import COLLECT_PROJECT, Project

logger = logging.getLogger(__name__)


def artifact_location(storage_location: str, result_name: str, buildid: str) -> str:
    """``<location>/<result>/<buildid>/result.tar``."""
    parts = (storage_location, result_name, buildid, RESULT_ARCHIVE)
    return "/".join(p.strip("/") for p in parts if p.strip("/"))


class BuildPlan(BaseModel):
    """Selected results in build order with their modes, settings and ids."""

    model_config = ConfigDict(frozen=True)

    order: list[str]
    selected: list[str]
    modes: dict[str, BuildMode] = Field(default_factory=dict)
    settings: dict[str, BuildSettings] = Field(default_factory=dict)
    buildids: dict[str, str] = Field(default_factory=dict)

    def buildid_lines(self) -> list[str]:
        """``<name> [<buildid>]`` for every result in build order."""
        return [f"{name} [{self.buildids[name]}]" for name in self.order]


class BuildOrchestrator:
    """Central build coordinator.

    Parameters
    ----------
    project:
        The loaded project.
    cache:
        Server table; built from the project when not given.
    sandbox:
        Sandbox backend; ``LocalSandbox`` by default.
    backends:
        Source backend classes to register at startup.
    build_tmpdir:
        Parent of the per-result sandbox directories.
    """

    def __init__(
        self,
        project: Project,
        *,
        cache: Cache | None = None,
        sandbox: Sandbox | None = None,
        backends: tuple[type[SourceBackend], ...] = DEFAULT_BACKENDS,
        build_tmpdir: Path | None = None,
        check_remote: bool | None = None,
    ) -> None:
        self.project = project
        self.cache = cache or Cache.for_project(project, forge_settings.resolve_cache_dir(project.root))
        self.ids = IdentityCache(
            project,
            self.cache,
            check_remote=forge_settings.check_remote if check_remote is None else check_remote,
        )
        # Two-phase startup: operations are declared before backends register
        self.registry: SourceBackendRegistry = create_registry(project, self.cache, self.ids, backends)
        self.graph = DependencyGraph.from_project(project)
        self.identity = BuildIdentity(project, self.ids, self.registry, self.graph)
        self.collector = ProjectCollector(project, self.cache, self.ids, self.registry, self.graph)
        self.sandbox: Sandbox = sandbox or LocalSandbox()
        self.build_tmpdir = Path(build_tmpdir or forge_settings.build_tmpdir)

    @classmethod
    def from_root(cls, root: Path | None = None, **kwargs) -> BuildOrchestrator:
        """Load the project at *root* (or the enclosing project) and wire it up."""
        return cls(load_project(root), **kwargs)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def apply_writeback(self, directives: list[tuple[str, bool]]) -> None:
        """Apply command-line writeback toggles, in order, before any push."""
        self.cache.apply_writeback_directives(directives)

    def plan(
        self,
        results: list[str] | None = None,
        *,
        all_results: bool = False,
        mode: BuildMode = BuildMode.TAG,
        selected_mode: BuildMode | None = None,
        force_rebuild: bool = False,
        keep_sandbox: bool = False,
        playground: bool = False,
    ) -> BuildPlan:
        """Select results and compute every build-id before anything is built.

        ``mode`` applies to every result in the closure; ``selected_mode``
        overrides it for the explicitly selected results only.

        Raises
        ------
        UnknownResultError
            If a selected name is not a result.  Nothing has been done yet.
        ConfigurationError
            If the selection is inconsistent (e.g. playground with several
            results) or a source fails validation.
        """
        results = list(results or [])
        if all_results and results:
            raise ConfigurationError("--all and a list of results are mutually exclusive")
        if playground:
            if all_results:
                raise ConfigurationError("--all and --playground are mutually exclusive")
            if mode is BuildMode.RELEASE:
                raise ConfigurationError("--release and --playground are mutually exclusive")
            if len(results) != 1:
                raise ConfigurationError("please select one single result for the playground")

        for name in results:
            self.project.get_result(name)

        if all_results:
            selected = self.project.result_names()
            order = self.graph.topological_order()
        elif results:
            selected = sorted(set(results))
            order = self.graph.topological_order(selected)
        elif self.project.info.default_results:
            selected = sorted(self.project.info.default_results)
            order = self.graph.topological_order(selected)
        else:
            selected = self.project.result_names()
            order = self.graph.topological_order()

        modes: dict[str, BuildMode] = {}
        result_settings: dict[str, BuildSettings] = {}
        for name in order:
            is_selected = name in selected
            modes[name] = selected_mode if (is_selected and selected_mode) else mode
            result_settings[name] = BuildSettings(
                selected=is_selected,
                force_rebuild=is_selected and force_rebuild,
                keep_sandbox=is_selected and keep_sandbox,
                playground=is_selected and playground,
            )
            self.identity.set_mode(name, modes[name])

        if any(self.identity.policy(name).check_remote for name in order):
            self.ids.check_remote = True

        buildids = {name: self.identity.buildid(name) for name in order}
        for name in order:
            s = result_settings[name]
            logger.debug(
                "selected result: %-20s %s%s%s",
                name,
                "[ selected ]" if s.selected else "[dependency]",
                " [force rebuild]" if s.force_rebuild else "",
                " [playground]" if s.playground else "",
            )
        return BuildPlan(
            order=order,
            selected=selected,
            modes=modes,
            settings=result_settings,
            buildids=buildids,
        )

    def display_buildids(self, results: list[str] | None = None, **plan_options) -> list[str]:
        """Compute build-ids for the selection and return display lines; never builds."""
        return self.plan(results, **plan_options).buildid_lines()

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def run(self, plan: BuildPlan) -> BuildReport:
        """Build every result of *plan* in order and report per result."""
        info = self.project.info
        check_storage(self.cache, info.location, info.release_id, set(plan.modes.values())).raise_if_fatal()

        outcomes: dict[str, ResultOutcome] = {}
        for name in plan.order:
            failed_deps = [
                dep for dep in self.graph.direct_dependencies(name)
                if dep in outcomes and not outcomes[dep].succeeded
            ]
            if failed_deps:
                outcome = ResultOutcome(
                    name=name,
                    state=ResultState.DEPENDENCY_FAILED,
                    buildid=plan.buildids[name],
                    message=f"dependency failed: {', '.join(failed_deps)}",
                )
                logger.error("skipping %s: %s", name, outcome.message)
            else:
                started = time.monotonic()
                outcome = self.build_result(name, plan)
                logger.debug("timing: result [%s] %.1fs", name, time.monotonic() - started)
                if not outcome.succeeded:
                    blocked = [dep for dep in self.graph.get_dependents(name) if dep in plan.modes]
                    if blocked:
                        logger.warning("%s failed, not building: %s", name, ", ".join(sorted(blocked)))
            outcomes[name] = outcome

        report = BuildReport(outcomes=[outcomes[name] for name in plan.order])
        if not report.ok:
            logger.error("%d result(s) failed: %s", len(report.failed), ", ".join(report.failed))
        return report

    def _storage(self, name: str) -> tuple[str, str]:
        info = self.project.info
        return self.identity.policy(name).storage(info.location, info.release_id)

    def result_available(self, name: str, buildid: str) -> bool:
        """``True`` if the result's artifact exists in the cache or on its server."""
        server, location = self._storage(name)
        artifact = artifact_location(location, name, buildid)
        try:
            self.cache.cache_file(server, artifact)
        except CacheError as exc:
            logger.debug("caching result %s failed: %s", artifact, exc)
        try:
            return self.cache.file_exists(server, artifact)
        except CacheError as exc:
            logger.debug("looking up %s:%s failed: %s", server, artifact, exc)
            return False

    def build_config(self, name: str, buildid: str) -> BuildConfig:
        info = self.project.info
        init_dir = self.project.init_dir
        init_files = (
            sorted(p for p in init_dir.iterdir() if p.is_file() and not p.name.startswith("."))
            if init_dir.is_dir()
            else []
        )
        return BuildConfig(
            result=name,
            buildid=buildid,
            base=self.build_tmpdir / info.name / name,
            build_script=self.project.root / self.project.build_script_location(name),
            project=info.name,
            release_id=info.release_id,
            init_files=init_files,
            env=self.ids.merged_env(name),
        )

    def build_result(self, name: str, plan: BuildPlan) -> ResultOutcome:
        """Build one result: availability check, sandbox, sources, deps, run, store."""
        buildid = plan.buildids[name]
        settings = plan.settings[name]
        policy = self.identity.policy(name)
        short = buildid[:16] if buildid.startswith(SCRATCH_PREFIX) else buildid[:8]

        rebuild = settings.playground or settings.force_rebuild or policy.scratch
        if not rebuild and self.result_available(name, buildid):
            logger.info("skipping %-20s [%s]", name, short)
            return ResultOutcome(name=name, state=ResultState.UP_TO_DATE, buildid=buildid)

        logger.info("building %-20s [%s]%s", name, short, " [playground]" if settings.playground else "")
        config = self.build_config(name, buildid)
        try:
            self.sandbox.setup(config)
            self._install_sources(name, config)
            self._install_dependencies(name, plan, config)
            if self.project.get_result(name).type == COLLECT_PROJECT:
                self.collector.collect(
                    name, config.tmp_dir / PROJECT_DIR, policy.source_set, plan.buildids, config.init_files
                )
            if settings.playground:
                path = self.sandbox.playground(config)
                return ResultOutcome(name=name, state=ResultState.PLAYGROUND, buildid=buildid,
                                     message=str(path))
            result = self.sandbox.run(config)
            if not result.ok or result.archive is None:
                logger.error("building %s failed: %s", name, result.message)
                return ResultOutcome(name=name, state=ResultState.FAILED, buildid=buildid,
                                     message=result.message)
            artifact = self._store_result(name, buildid, result.archive)
        except (ResultForgeError, OSError) as exc:
            logger.error("building %s failed: %s", name, exc)
            return ResultOutcome(name=name, state=ResultState.FAILED, buildid=buildid, message=str(exc))
        finally:
            if not settings.playground and not settings.keep_sandbox:
                self.sandbox.cleanup(config)
        return ResultOutcome(name=name, state=ResultState.BUILT, buildid=buildid, artifact=artifact)

    def _install_sources(self, name: str, config: BuildConfig) -> None:
        source_set = self.identity.policy(name).source_set
        for src in self.project.get_result(name).sources:
            self.registry.call("prepare", src, source_set, config.source_dir)

    def _install_dependencies(self, name: str, plan: BuildPlan, config: BuildConfig) -> None:
        for dep in self.graph.direct_dependencies(name):
            server, location = self._storage(dep)
            artifact = artifact_location(location, dep, plan.buildids[dep])
            self.cache.fetch_file(server, artifact, config.dep_dir / dep, RESULT_ARCHIVE)

    def _store_result(self, name: str, buildid: str, archive: Path) -> str:
        server, location = self._storage(name)
        artifact = artifact_location(location, name, buildid)
        if self.cache.writeback_enabled(server):
            self.cache.push_file(archive, server, artifact)
        elif self.cache.store_in_cache(archive, server, artifact) is not None:
            logger.warning("writeback disabled for %s: %s stored in cache only", server, artifact)
        else:
            logger.warning("writeback disabled for %s: %s was not stored", server, artifact)
        return f"{server}:{artifact}"

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def select_sources(
        self,
        names: list[str] | None = None,
        *,
        by_result: bool = False,
        types: list[str] | None = None,
    ) -> list[str]:
        """Source names for *names* (sources, or results with ``by_result``).

        ``None`` selects every source; an empty list selects nothing.
        ``types`` keeps only sources of those types.

        Raises
        ------
        UnknownSourceError, UnknownResultError
            For the first unknown name; nothing is selected.
        """
        if names is None:
            selected = self.project.source_names()
        elif by_result:
            found: set[str] = set()
            for name in names:
                found.update(self.project.get_result(name).sources)
            selected = sorted(found)
        else:
            for name in names:
                self.project.get_source(name)
            selected = sorted(set(names))
        if types:
            selected = [name for name in selected if self.project.sources[name].type in types]
        return selected

    def fetch_sources(self, sources: list[str] | None = None, *, update: bool = False) -> dict[str, str]:
        """Fetch (and optionally update) *sources*; best effort.

        *sources* are source names as returned by ``select_sources``;
        ``None`` fetches every source and an empty list fetches nothing.
        Unknown names fail before anything is fetched.  Per-source failures
        are collected and returned as ``{source: message}``.
        """
        selected = self.select_sources(sources)

        failures: dict[str, str] = {}
        for name in selected:
            try:
                self.registry.call("fetch", name)
                if update and self.registry.call("working_copy_available", name):
                    self.registry.call("update", name)
            except ResultForgeError as exc:
                logger.error("fetching source %s failed: %s", name, exc)
                failures[name] = str(exc)
        if failures:
            logger.error("%d source(s) failed: %s", len(failures), ", ".join(sorted(failures)))
        return failures

    def display_source(self, name: str) -> list[str]:
        return self.registry.call("display", name)
