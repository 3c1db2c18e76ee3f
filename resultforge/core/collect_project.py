"""Project collection for ``collect_project`` results.

Before the build script of a ``collect_project`` result runs, its default
result, everything that result depends on and all their sources are
written to ``$T/project`` as a tree that builds without resultforge::

    proj/init/<files>       project init files
    proj/config             name, release_id, default_results, arch
    licences/<licence>/     licence files of every collected source
    res/<result>/           build-script, env, builtin, build-driver, config
    src/<source>/           the source as converted by its backend's to_result
    resultlist              collected results in build order

Each ``build-driver`` is meant to be sourced from the top of the tree.
Only plain results can be collected.
"""

from __future__ import annotations

import logging
import shlex
import shutil
from pathlib import Path

from resultforge.core.build_identity import IdentityCache
from resultforge.core.cache import Cache
from resultforge.core.dependency_graph import DependencyGraph
from resultforge.core.errors import OrchestrationError
from resultforge.core.source_registry import SourceBackendRegistry
from resultforge.core.string_set import StringSet
from resultforge.models.build import SourceSet
from resultforge.models.project import DOT_SERVER, RESULT, Project, ResultConfig, name_to_path

logger = logging.getLogger(__name__)

PROJECT_DIR = "project"


def _exports(env: dict[str, str]) -> str:
    return "".join(f"export {key}={shlex.quote(value)}\n" for key, value in sorted(env.items()))


class ProjectCollector:
    """Writes the collected project tree for one ``collect_project`` result."""

    def __init__(
        self,
        project: Project,
        cache: Cache,
        ids: IdentityCache,
        registry: SourceBackendRegistry,
        graph: DependencyGraph,
    ) -> None:
        self.project = project
        self.cache = cache
        self.ids = ids
        self.registry = registry
        self.graph = graph

    def results(self, result: ResultConfig) -> list[str]:
        """The default result and its dependencies in build order.

        Raises
        ------
        OrchestrationError
            If any of them is not a plain result.
        """
        default = result.collect_project_default_result
        if default is None:
            raise OrchestrationError([result.name], "collect_project_default_result is not set")
        order = self.graph.topological_order([default])
        for name in order:
            dep_type = self.project.get_result(name).type
            if dep_type != RESULT:
                raise OrchestrationError(
                    [result.name], f"can not convert result {name}, type {dep_type} is unsupported"
                )
        return order

    def collect(
        self,
        result_name: str,
        dest: Path,
        source_set: SourceSet,
        buildids: dict[str, str],
        init_files: list[Path] | None = None,
    ) -> Path:
        """Write the project tree of *result_name* to *dest*; return *dest*."""
        result = self.project.get_result(result_name)
        order = self.results(result)
        sources = StringSet()
        for name in order:
            sources.insert_many(self.project.get_result(name).sources)

        init_dir = dest / "proj" / "init"
        init_dir.mkdir(parents=True, exist_ok=True)
        for init_file in init_files or []:
            shutil.copy2(init_file, init_dir / init_file.name)
        self._write_config(dest, result)

        licences = StringSet()
        for name in sources:
            licences = licences.union(self.project.get_source(name).licence_set())
        for name in licences:
            self._write_licence(dest, name)

        for name in order:
            self._write_result(dest, name, buildids.get(name, ""))

        for name in sources:
            logger.debug("collecting source %s", name)
            self.registry.call("to_result", name, source_set, dest / "src" / name_to_path(name))

        (dest / "resultlist").write_text("".join(f"{name}\n" for name in order))
        logger.info(
            "collected project for %s: %d result(s), %d source(s), %d licence(s)",
            result_name, len(order), len(sources), len(licences),
        )
        return dest

    # ------------------------------------------------------------------
    # Pieces of the tree
    # ------------------------------------------------------------------

    def _write_config(self, dest: Path, result: ResultConfig) -> None:
        info = self.project.info
        values = {
            "name": info.name,
            "release_id": info.release_id,
            "default_results": result.collect_project_default_result or "",
            "arch": info.arch,
        }
        (dest / "proj" / "config").write_text(
            "".join(f"{key}={shlex.quote(value)}\n" for key, value in values.items())
        )

    def _write_licence(self, dest: Path, name: str) -> None:
        lic_dir = dest / "licences" / name
        lic_dir.mkdir(parents=True, exist_ok=True)
        for entry in self.project.get_licence(name).files:
            server = entry.server or DOT_SERVER
            self.ids.verify_file(entry, server)
            self.cache.fetch_file(server, entry.location, lic_dir)

    def _write_result(self, dest: Path, name: str, buildid: str) -> None:
        res = self.project.get_result(name)
        rel = Path("res") / res.path
        res_dir = dest / rel
        res_dir.mkdir(parents=True, exist_ok=True)
        shutil.copy2(self.project.root / self.project.build_script_location(name), res_dir / "build-script")
        (res_dir / "env").write_text(_exports(self.ids.merged_env(name)))
        builtin = {
            "RF_RESULT": name,
            "RF_BUILDID": buildid,
            "RF_RELEASE_ID": self.project.info.release_id,
            "RF_PROJECT_NAME": self.project.info.name,
            "r": name,
            "R": name,
        }
        (res_dir / "builtin").write_text(_exports(builtin))
        driver = [
            f"source {shlex.quote(str(rel / 'env'))}",
            f"source {shlex.quote(str(rel / 'builtin'))}",
            "for f in proj/init/*; do",
            '    [ -f "$f" ] && source "$f"',
            "done",
            f"source {shlex.quote(str(rel / 'build-script'))}",
        ]
        (res_dir / "build-driver").write_text("\n".join(driver) + "\n")
        (res_dir / "config").write_text(
            f"### generated by resultforge for result {name} ###\n"
            f"DEPEND={shlex.quote(StringSet(res.all_depends()).concat(' '))}\n"
            f"SOURCE={shlex.quote(StringSet(res.sources).concat(' '))}\n"
        )
