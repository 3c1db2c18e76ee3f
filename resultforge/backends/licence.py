"""``licence`` sources: the licences of other results and sources.

A licence source names ``results`` (taken with all their dependencies)
and ``sources``.  Preparing it writes no code, only a tree describing
who is under which licence::

    <name>/res/<result>/sources     sources of each result, one per line
    <name>/src/<source>/licences    licences of each source, one per line
    <name>/licences/<licence>/      the licence files, checksums verified

The source id is derived from the ids of every source covered, so a
change to any of them changes the licence source too.
"""

from __future__ import annotations

import logging
from pathlib import Path

from resultforge.backends.base import SourceBackend
from resultforge.core.dependency_graph import DependencyGraph
from resultforge.core.errors import BackendError, ErrorReport
from resultforge.core.source_registry import SourceBackendRegistry
from resultforge.core.string_set import StringSet
from resultforge.models.build import SourceSet
from resultforge.models.project import DOT_SERVER, SourceConfig

logger = logging.getLogger(__name__)


class LicenceBackend(SourceBackend):
    """Backend for licence sources; needs the registry to reach other sources."""

    type_name = "licence"
    allowed_attributes = frozenset({"results", "sources"})
    required_attributes = ()

    registry: SourceBackendRegistry | None = None

    def bind_registry(self, registry: SourceBackendRegistry) -> None:
        self.registry = registry

    def _call(self, op_name: str, source_name: str, *args):
        if self.registry is None:
            raise BackendError(f"licence source cannot reach source {source_name}: no registry")
        return self.registry.call(op_name, source_name, *args)

    def check_attributes(self, source: SourceConfig, report: ErrorReport) -> None:
        for name in source.results or []:
            if name not in self.project.results:
                report.append("result does not exist: %s", name)
        for name in source.sources or []:
            if name not in self.project.sources:
                report.append("source does not exist: %s", name)

    def result_list(self, source: SourceConfig) -> list[str]:
        """Listed results and their dependencies, in build order."""
        return DependencyGraph.from_project(self.project).topological_order(source.results or [])

    def covered_sources(self, source: SourceConfig) -> dict[str, list[str]]:
        """``{result: sources}`` for every result covered, without this source."""
        return {
            name: [src for src in self.project.get_result(name).sources if src != source.name]
            for name in self.result_list(source)
        }

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def fetch(self, source: SourceConfig) -> None:
        logger.debug("source %s: nothing to fetch", source.name)

    def update(self, source: SourceConfig) -> None:
        logger.debug("source %s: nothing to update", source.name)

    def working_copy_available(self, source: SourceConfig) -> bool:
        return False

    def check_workingcopy(self, source: SourceConfig) -> bool:
        return True

    def compute_sourceid(self, source: SourceConfig, source_set: SourceSet) -> str:
        hc = self.base_hasher(source)
        for result, sources in self.covered_sources(source).items():
            hc.append_line(result)
            for name in sources:
                hc.append_line(self._call("sourceid", name, source_set))
        for name in source.sources or []:
            if name != source.name:
                hc.append_line(self._call("sourceid", name, source_set))
        return hc.finish()

    def prepare(self, source: SourceConfig, source_set: SourceSet, build_path: Path) -> Path:
        dest = Path(build_path) / source.name
        for sub in ("src", "res", "licences"):
            (dest / sub).mkdir(parents=True, exist_ok=True)

        source_names = StringSet()
        for result, sources in self.covered_sources(source).items():
            res_dir = dest / "res" / result
            res_dir.mkdir(parents=True)
            (res_dir / "sources").write_text("".join(f"{name}\n" for name in sources))
            source_names.insert_many(sources)
        source_names.insert_many(name for name in source.sources or [] if name != source.name)

        licence_names = StringSet()
        for name in source_names:
            licences = self.project.get_source(name).licence_set()
            licence_names = licence_names.union(licences)
            src_dir = dest / "src" / name
            src_dir.mkdir(parents=True)
            (src_dir / "licences").write_text(licences.concat("\n") + "\n" if licences else "")

        for name in licence_names:
            lic_dir = dest / "licences" / name
            lic_dir.mkdir()
            for entry in self.project.get_licence(name).files:
                server = entry.server or DOT_SERVER
                self.ids.verify_file(entry, server)
                self.cache.fetch_file(server, entry.location, lic_dir)
        logger.info(
            "source %s: licences of %d source(s) prepared in %s", source.name, len(source_names), dest
        )
        return dest

    def display_attributes(self, source: SourceConfig) -> list[str]:
        lines = []
        if source.results:
            lines.append(f"results    = {' '.join(source.results)}")
        if source.sources:
            lines.append(f"sources    = {' '.join(source.sources)}")
        return lines
