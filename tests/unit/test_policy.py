"""Tests for build-mode policy."""

from __future__ import annotations

from pathlib import Path

import pytest

from resultforge.core.cache import Cache
from resultforge.core.errors import ConfigurationError
from resultforge.core.policy import (
    BuildPolicy,
    ScratchIds,
    check_storage,
    parse_build_mode,
)
from resultforge.models.build import BuildMode, SourceSet
from resultforge.models.project import ServerConfig


class TestParseBuildMode:
    def test_default_is_tag(self):
        assert parse_build_mode() is BuildMode.TAG

    def test_name_and_flags(self):
        assert parse_build_mode("branch") is BuildMode.BRANCH
        assert parse_build_mode(working_copy=True) is BuildMode.WORKING_COPY
        assert parse_build_mode(release=True) is BuildMode.RELEASE

    def test_multiple_modes_rejected(self):
        with pytest.raises(ConfigurationError, match="multiple build modes"):
            parse_build_mode("tag", branch=True)
        with pytest.raises(ConfigurationError, match="multiple build modes"):
            parse_build_mode(tag=True, release=True)

    def test_invalid_name(self):
        with pytest.raises(ConfigurationError, match="invalid build mode: nightly"):
            parse_build_mode("nightly")


class TestBuildPolicy:
    @pytest.mark.parametrize(
        "mode, source_set, storage",
        [
            (BuildMode.TAG, SourceSet.TAG, ("results", "demo/shared")),
            (BuildMode.BRANCH, SourceSet.BRANCH, ("results", "demo/shared")),
            (BuildMode.WORKING_COPY, SourceSet.WORKING_COPY, (".", "out")),
            (BuildMode.RELEASE, SourceSet.TAG, ("results", "demo/release/demo-1.0")),
        ],
    )
    def test_mode_table(self, mode, source_set, storage):
        policy = BuildPolicy(mode)
        assert policy.source_set is source_set
        assert policy.storage("demo", "demo-1.0") == storage
        assert policy.scratch is (mode is BuildMode.WORKING_COPY)
        assert policy.check_remote is (mode is BuildMode.RELEASE)

    def test_empty_location(self):
        assert BuildPolicy(BuildMode.TAG).storage("", "r") == ("results", "shared")
        assert BuildPolicy(BuildMode.RELEASE).storage("/demo/", "r") == ("results", "demo/release/r")

    def test_final_buildid(self):
        scratch = ScratchIds(entropy=lambda n: b"\1" * n)
        assert BuildPolicy(BuildMode.TAG).final_buildid("abc", scratch) == "abc"
        assert BuildPolicy(BuildMode.WORKING_COPY).final_buildid("abc", scratch).startswith("scratch-")


class TestScratchIds:
    def test_stable_within_run(self):
        scratch = ScratchIds()
        assert scratch.get("abc") == scratch.get("abc")
        assert scratch.get("abc") != scratch.get("def")

    def test_random_across_runs(self):
        assert ScratchIds().get("abc") != ScratchIds().get("abc")

    def test_short_entropy(self):
        with pytest.raises(RuntimeError, match="entropy"):
            ScratchIds(entropy=lambda n: b"").get("abc")


class TestCheckStorage:
    def test_default_project_is_fine(self, cache: Cache):
        assert check_storage(cache, "demo", "demo-1.0").count == 0

    def test_missing_results_server(self, tmp_path: Path):
        cache = Cache(tmp_path / "cache", [ServerConfig(name=".", url=tmp_path.as_uri(), cache=False)])
        report = check_storage(cache, "demo", "demo-1.0")
        assert report.count == 1
        assert "no such server: results" in report.render()
        # Working-copy builds only need the project root
        assert check_storage(cache, "demo", "demo-1.0", [BuildMode.WORKING_COPY]).count == 0

    def test_results_server_must_store(self, tmp_path: Path):
        cache = Cache(
            tmp_path / "cache",
            [ServerConfig(name="results", url=tmp_path.as_uri(), cache=False, writeback=False)],
        )
        report = check_storage(cache, "demo", "demo-1.0", [BuildMode.TAG])
        assert "server results: cannot store results" in report.render()

    def test_cache_without_writeback_is_enough(self, tmp_path: Path):
        cache = Cache(tmp_path / "cache", [ServerConfig(name="results", url=tmp_path.as_uri(), writeback=False)])
        assert check_storage(cache, "demo", "demo-1.0", [BuildMode.TAG]).count == 0
