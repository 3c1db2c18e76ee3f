"""Tests for SourceBackendRegistry dispatch and startup."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from resultforge.backends import DEFAULT_BACKENDS, GitBackend, create_registry
from resultforge.core.build_identity import IdentityCache
from resultforge.core.cache import Cache
from resultforge.core.errors import (
    BackendError,
    ConfigurationError,
    DuplicateBackendError,
    UnknownOperationError,
    UnknownSourceError,
    UnsupportedOperationError,
)
from resultforge.core.project_loader import load_project
from resultforge.core.source_registry import STANDARD_OPERATIONS, SourceBackendRegistry
from resultforge.models.build import SourceSet
from resultforge.models.project import Project


class TestStartup:
    def test_default_backends_registered(self, registry: SourceBackendRegistry):
        assert registry.types == sorted(b.type_name for b in DEFAULT_BACKENDS)
        assert registry.operations == list(STANDARD_OPERATIONS)

    def test_backend_before_operations_rejected(self, project: Project, cache: Cache, ids: IdentityCache):
        registry = SourceBackendRegistry(project)
        with pytest.raises(BackendError, match="operations must be registered"):
            registry.register_backend("git", GitBackend(project, cache, ids))

    def test_duplicate_backend_rejected(
        self, registry: SourceBackendRegistry, project: Project, cache: Cache, ids: IdentityCache
    ):
        with pytest.raises(DuplicateBackendError):
            registry.register_backend("git", GitBackend(project, cache, ids))

    def test_duplicate_operation_rejected(self, registry: SourceBackendRegistry):
        with pytest.raises(BackendError, match="already registered"):
            registry.register_operation("fetch")

    def test_backend_must_validate(self, project: Project):
        registry = SourceBackendRegistry(project)
        registry.register_operation("fetch")
        with pytest.raises(BackendError, match="does not implement validate"):
            registry.register_backend("odd", object())

    def test_backend_asking_for_the_registry_gets_it(self, project: Project, cache: Cache, ids: IdentityCache):
        class Binding(GitBackend):
            bound = None

            def bind_registry(self, registry):
                self.bound = registry

        backend = Binding(project, cache, ids)
        registry = SourceBackendRegistry(project)
        registry.register_operation("validate")
        registry.register_backend("git", backend)
        assert backend.bound is registry

    def test_unknown_source_type_reported_at_startup(
        self, make_project: Callable[..., Path], project_toml: str, tmp_path: Path
    ):
        text = project_toml.replace('[sources.srca]\ntype = "files"', '[sources.srca]\ntype = "hg"')
        project = load_project(make_project(text))
        cache = Cache.for_project(project, tmp_path / "cache")
        with pytest.raises(ConfigurationError, match="source srca: unknown source type: hg"):
            create_registry(project, cache, IdentityCache(project, cache))


class TestDispatch:
    def test_dispatcher_matches_call(self, registry: SourceBackendRegistry):
        sourceid = registry.dispatcher("sourceid")
        assert sourceid("srca", SourceSet.TAG) == registry.call("sourceid", "srca", SourceSet.TAG)

    def test_register_operation_returns_dispatcher(self, registry: SourceBackendRegistry):
        frobnicate = registry.register_operation("frobnicate")
        assert frobnicate.__name__ == "frobnicate"
        with pytest.raises(UnsupportedOperationError, match="does not support operation frobnicate"):
            frobnicate("srca")

    def test_unknown_operation(self, registry: SourceBackendRegistry):
        with pytest.raises(UnknownOperationError):
            registry.call("teleport", "srca")
        with pytest.raises(UnknownOperationError):
            registry.dispatcher("teleport")

    def test_unknown_source(self, registry: SourceBackendRegistry):
        with pytest.raises(UnknownSourceError):
            registry.call("fetch", "nope")

    def test_supports(self, registry: SourceBackendRegistry):
        assert registry.supports("files", "prepare")
        assert not registry.supports("files", "frobnicate")
        assert not registry.supports("hg", "prepare")

    def test_operations_validate_first(
        self, make_project: Callable[..., Path], project_toml: str, tmp_path: Path
    ):
        text = project_toml.replace('licences = ["mit"]\n', "")
        project = load_project(make_project(text))
        cache = Cache.for_project(project, tmp_path / "cache")
        registry = create_registry(project, cache, IdentityCache(project, cache))

        report = registry.validate("srcb")
        assert report.count == 1
        assert "source has no `licences' attribute" in report.render()
        with pytest.raises(ConfigurationError) as excinfo:
            registry.call("sourceid", "srcb", SourceSet.TAG)
        assert excinfo.value.count == 1
        # Other sources are unaffected
        registry.call("sourceid", "srca", SourceSet.TAG)

    def test_validate_through_call_does_not_raise(self, registry: SourceBackendRegistry):
        assert registry.call("validate", "srca").count == 0
