"""Shared test fixtures for resultforge.

The default project has three results over two ``files`` sources that
live in the project tree (server ``.``)::

    A  <- srca
    B  <- srcb, depends A
    C  <- depends A, B

Servers ``upstream`` and ``results`` are plain directories reached over
``file://``.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from resultforge.backends import create_registry
from resultforge.core.build_identity import BuildIdentity, IdentityCache
from resultforge.core.cache import Cache
from resultforge.core.project_loader import load_project
from resultforge.core.source_registry import SourceBackendRegistry
from resultforge.models.project import Project

PROJECT_TOML = """\
[project]
name = "demo"
release_id = "demo-1.0"
location = "demo"

[env]
CFLAGS = "-O2"

[servers.upstream]
url = "{upstream_url}"

[servers.results]
url = "{results_url}"

[licences.gpl]

[licences.mit]

[sources.srca]
type = "files"
server = "."
licences = ["gpl"]

[[sources.srca.file]]
location = "src/a/hello.txt"
copy = "."

[sources.srcb]
type = "files"
server = "."
licences = ["mit"]
env = {{ WITH_B = "1" }}

[[sources.srcb.file]]
location = "src/b/data.txt"
copy = "."

[results.A]
sources = ["srca"]

[results.B]
sources = ["srcb"]
depends = ["A"]

[results.C]
depends = ["A", "B"]
"""

BUILD_SCRIPTS = {
    "A": 'cp srca/hello.txt "$RF_OUT/a.txt"\n',
    "B": 'test -f ../dep/A/result.tar\ncp srcb/data.txt "$RF_OUT/b.txt"\n',
    "C": 'test -f ../dep/A/result.tar\ntest -f ../dep/B/result.tar\necho "$RF_RESULT" > "$RF_OUT/c.txt"\n',
}


def write_project_tree(
    root: Path,
    toml_text: str,
    build_scripts: dict[str, str],
    files: dict[str, str] | None = None,
) -> Path:
    """Write a project file, build scripts and extra files below *root*."""
    root.mkdir(parents=True, exist_ok=True)
    (root / "resultforge.toml").write_text(toml_text)
    for result, script in build_scripts.items():
        path = root / "res" / result.replace(".", "/") / "build-script"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(script)
    for location, content in (files or {}).items():
        path = root / location
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


@pytest.fixture
def servers(tmp_path: Path) -> dict[str, Path]:
    """Directories backing the ``upstream`` and ``results`` servers."""
    dirs = {"upstream": tmp_path / "upstream-server", "results": tmp_path / "results-server"}
    for path in dirs.values():
        path.mkdir()
    return dirs


@pytest.fixture
def make_project(tmp_path: Path, servers: dict[str, Path]) -> Callable[..., Path]:
    """Factory fixture: write a project tree and return its root.

    ``toml_text`` may use ``{upstream_url}`` and ``{results_url}``.
    """

    def _factory(
        toml_text: str = PROJECT_TOML,
        build_scripts: dict[str, str] | None = None,
        files: dict[str, str] | None = None,
        name: str = "project",
    ) -> Path:
        text = toml_text.format(
            upstream_url=servers["upstream"].as_uri(),
            results_url=servers["results"].as_uri(),
        )
        default_files = {
            "src/a/hello.txt": "hello from a\n",
            "src/b/data.txt": "data for b\n",
            "proj/init/env": "export INIT_LOADED=1\n",
        }
        default_files.update(files or {})
        return write_project_tree(
            tmp_path / name,
            text,
            BUILD_SCRIPTS if build_scripts is None else build_scripts,
            default_files,
        )

    return _factory


@pytest.fixture
def project_root(make_project: Callable[..., Path]) -> Path:
    """The default three-result project on disk."""
    return make_project()


@pytest.fixture
def project(project_root: Path) -> Project:
    return load_project(project_root)


@pytest.fixture
def cache(project: Project, tmp_path: Path) -> Cache:
    """Cache for the default project with mirrors under ``tmp_path/cache``."""
    return Cache.for_project(project, tmp_path / "cache")


@pytest.fixture
def ids(project: Project, cache: Cache) -> IdentityCache:
    return IdentityCache(project, cache, tool_version="test")


@pytest.fixture
def registry(project: Project, cache: Cache, ids: IdentityCache) -> SourceBackendRegistry:
    """Registry with the default backends registered."""
    return create_registry(project, cache, ids)


@pytest.fixture
def identity(project: Project, ids: IdentityCache, registry: SourceBackendRegistry) -> BuildIdentity:
    return BuildIdentity(project, ids, registry)


@pytest.fixture
def project_toml() -> str:
    """The default project file template, for tests that derive variants."""
    return PROJECT_TOML
