"""Tests for the files source backend."""

from __future__ import annotations

import io
import shutil
import tarfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from resultforge.backends import create_registry
from resultforge.backends.files import FilesBackend, copy_destination, unpack_command
from resultforge.config import settings
from resultforge.core.build_identity import IdentityCache
from resultforge.core.cache import Cache
from resultforge.core.errors import BackendError, CacheError, ConfigurationError
from resultforge.core.hasher import hash_file
from resultforge.core.project_loader import load_project, parse_project
from resultforge.core.source_registry import SourceBackendRegistry
from resultforge.models.build import SourceSet
from resultforge.models.project import Project


@pytest.fixture
def files_backend(tmp_path: Path) -> Callable[..., tuple[FilesBackend, Project]]:
    """Factory: a FilesBackend over a project that only declares *sources*."""

    def _factory(**sources: dict[str, Any]) -> tuple[FilesBackend, Project]:
        raw = {
            "project": {"name": "files", "release_id": "files-1"},
            "servers": {"upstream": {"url": (tmp_path / "upstream").as_uri()}},
            "licences": {"gpl": {}},
            "sources": sources,
        }
        project = parse_project(raw, tmp_path)
        cache = Cache.for_project(project, tmp_path / "cache")
        return FilesBackend(project, cache, IdentityCache(project, cache)), project

    return _factory


def problems(backend: FilesBackend, project: Project, name: str) -> list[str]:
    return list(backend.validate(project.get_source(name)).lines())[1:]


class TestValidate:
    def test_valid_source(self, files_backend):
        backend, project = files_backend(
            ok={"licences": ["gpl"], "server": ".", "file": [{"location": "a.txt", "copy": "."}]}
        )
        assert backend.validate(project.get_source("ok")).count == 0

    def test_missing_licences_and_server(self, files_backend):
        backend, project = files_backend(bare={"file": [{"location": "a.txt", "copy": "."}]})
        report = backend.validate(project.get_source("bare"))
        assert report.count == 2
        assert report.title == "in source bare:"
        assert "source has no `licences' attribute" in report.render()
        assert "source has no `server' attribute" in report.render()

    def test_every_problem_reported(self, files_backend):
        backend, project = files_backend(
            messy={
                "licences": ["bsd"],
                "server": "nowhere",
                "branch": "main",
                "file": [
                    {"location": "a.tar.gz", "unpack": "a", "copy": "."},
                    {"location": "b.diff", "patch": "one"},
                    {"location": "c.txt"},
                ],
            }
        )
        lines = problems(backend, project, "messy")
        assert "  attribute `branch' is not supported by source type files" in lines
        assert "  unknown licence: bsd" in lines
        assert "  invalid server: nowhere" in lines
        assert "  file entry a.tar.gz has more than one of `unpack', `copy' and `patch'" in lines
        assert "  file entry b.diff: `patch' must be a number, got 'one'" in lines
        assert "  file entry c.txt has no `unpack', `copy' or `patch' attribute" in lines

    def test_no_file_entries(self, files_backend):
        backend, project = files_backend(empty={"licences": ["gpl"], "server": "."})
        assert problems(backend, project, "empty") == ["  source has no `file' attribute"]

    def test_remote_files_need_checksum(self, files_backend):
        backend, project = files_backend(
            remote={
                "licences": ["gpl"],
                "server": "upstream",
                "file": [
                    {"location": "x.tar.gz", "unpack": "x"},
                    {"location": "y.tar.gz", "unpack": "y", "sha256": "ab" * 32},
                ],
            }
        )
        assert problems(backend, project, "remote") == [
            "  file entry for remote file upstream:x.tar.gz has no `sha256' attribute"
        ]

    def test_empty_licence_list(self, files_backend):
        backend, project = files_backend(
            nolic={"licences": [], "server": ".", "file": [{"location": "a.txt", "copy": "."}]}
        )
        assert problems(backend, project, "nolic") == ["  source has an empty `licences' attribute"]


class TestHelpers:
    def test_copy_into_directory_keeps_name(self, tmp_path: Path):
        assert copy_destination(tmp_path, "s", ".", "dist/x.txt") == tmp_path / "s" / "." / "x.txt"
        assert copy_destination(tmp_path, "s", "docs/", "dist/x.txt") == tmp_path / "s" / "docs" / "x.txt"

    def test_copy_to_existing_directory(self, tmp_path: Path):
        (tmp_path / "s" / "docs").mkdir(parents=True)
        assert copy_destination(tmp_path, "s", "docs", "dist/x.txt") == tmp_path / "s" / "docs" / "x.txt"

    def test_copy_renames(self, tmp_path: Path):
        assert copy_destination(tmp_path, "s", "README", "dist/x.txt") == tmp_path / "s" / "README"

    def test_unpack_command_by_suffix(self, tmp_path: Path):
        archive = tmp_path / "zlib-1.3.tar.gz"
        assert unpack_command(archive, tmp_path) == [
            settings.tar_tool, "-C", str(tmp_path), "-z", "-xf", str(archive)
        ]
        assert unpack_command(tmp_path / "a.tar", tmp_path)[-2:] == ["-xf", str(tmp_path / "a.tar")]
        assert unpack_command(tmp_path / "a.zip", tmp_path)[0] == settings.unzip_tool

    def test_unknown_archive_type(self, tmp_path: Path):
        with pytest.raises(BackendError, match="unknown archive type"):
            unpack_command(tmp_path / "a.rar", tmp_path)


class TestOperations:
    def test_prepare_copies_into_source_dir(self, registry: SourceBackendRegistry, tmp_path: Path):
        dest = registry.call("prepare", "srca", SourceSet.TAG, tmp_path / "build")
        assert dest == tmp_path / "build" / "srca"
        assert (dest / "hello.txt").read_text() == "hello from a\n"

    def test_sourceid_ignores_source_set(self, registry: SourceBackendRegistry):
        tag = registry.call("sourceid", "srca", SourceSet.TAG)
        assert registry.call("sourceid", "srca", SourceSet.BRANCH) == tag
        assert registry.call("sourceid", "srca", SourceSet.WORKING_COPY) == tag

    def test_no_working_copy(self, registry: SourceBackendRegistry):
        assert registry.call("working_copy_available", "srca") is False
        assert registry.call("check_workingcopy", "srca") is True

    def test_display(self, registry: SourceBackendRegistry):
        lines = registry.call("display", "srcb")
        assert lines == ["type       = files", "file       = .:src/b/data.txt", "licence    = mit"]

    @pytest.mark.skipif(shutil.which("tar") is None, reason="tar not installed")
    def test_to_result_packs_prepared_tree(self, registry: SourceBackendRegistry, tmp_path: Path):
        out = registry.call("to_result", "srcb", SourceSet.TAG, tmp_path / "collected" / "srcb")
        with tarfile.open(out / "source" / "srcb.tar.gz") as archive:
            member = archive.extractfile("./srcb/data.txt")
            assert member is not None and member.read() == b"data for b\n"
        assert (out / "Makefile").read_text().startswith(".PHONY: place\n")
        assert (out / "licences").read_text() == "mit\n"

    def test_fetch_mirrors_remote_files(
        self,
        make_project: Callable[..., Path],
        servers: dict[str, Path],
        tmp_path: Path,
    ):
        (servers["upstream"] / "dist").mkdir()
        (servers["upstream"] / "dist" / "notes.txt").write_text("remote notes\n")
        digest = hash_file(servers["upstream"] / "dist" / "notes.txt")
        text = (
            '[project]\nname = "r"\nrelease_id = "r-1"\n\n'
            '[servers.upstream]\nurl = "{upstream_url}"\n\n'
            "[licences.gpl]\n\n"
            '[sources.notes]\nserver = "upstream"\nlicences = ["gpl"]\n\n'
            f'[[sources.notes.file]]\nlocation = "dist/notes.txt"\ncopy = "NOTES"\nsha256 = "{digest}"\n'
        )
        project = load_project(make_project(text, build_scripts={}))
        cache = Cache.for_project(project, tmp_path / "cache")
        ids = IdentityCache(project, cache)
        backend = FilesBackend(project, cache, ids)
        source = project.get_source("notes")

        backend.fetch(source)
        assert cache.file_in_cache("upstream", "dist/notes.txt")
        dest = backend.prepare(source, SourceSet.TAG, tmp_path / "build")
        assert (dest / "NOTES").read_text() == "remote notes\n"

    def test_prepare_refuses_tampered_file(
        self,
        make_project: Callable[..., Path],
        servers: dict[str, Path],
        tmp_path: Path,
    ):
        (servers["upstream"] / "notes.txt").write_text("tampered\n")
        text = (
            '[project]\nname = "r"\nrelease_id = "r-1"\n\n'
            '[servers.upstream]\nurl = "{upstream_url}"\n\n'
            "[licences.gpl]\n\n"
            '[sources.notes]\nserver = "upstream"\nlicences = ["gpl"]\n\n'
            f'[[sources.notes.file]]\nlocation = "notes.txt"\ncopy = "."\nsha256 = "{"0" * 64}"\n'
        )
        project = load_project(make_project(text, build_scripts={}))
        cache = Cache.for_project(project, tmp_path / "cache")
        backend = FilesBackend(project, cache, IdentityCache(project, cache))
        with pytest.raises(CacheError, match="checksum verification failed"):
            backend.prepare(project.get_source("notes"), SourceSet.TAG, tmp_path / "build")

    @pytest.mark.skipif(shutil.which("tar") is None, reason="tar not installed")
    def test_prepare_unpacks_archive(
        self, make_project: Callable[..., Path], project_toml: str, tmp_path: Path
    ):
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz") as tar:
            data = b"unpacked\n"
            info = tarfile.TarInfo("pkg-1.0/README")
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
        text = project_toml + (
            '\n[sources.pkg]\nserver = "."\nlicences = ["gpl"]\n\n'
            '[[sources.pkg.file]]\nlocation = "src/pkg-1.0.tar.gz"\nunpack = "pkg-1.0"\n'
        )
        root = make_project(text)
        (root / "src" / "pkg-1.0.tar.gz").write_bytes(buf.getvalue())
        project = load_project(root)
        cache = Cache.for_project(project, tmp_path / "cache")
        backend = FilesBackend(project, cache, IdentityCache(project, cache))

        dest = backend.prepare(project.get_source("pkg"), SourceSet.TAG, tmp_path / "build")
        assert dest == tmp_path / "build" / "pkg"
        assert (dest / "README").read_text() == "unpacked\n"

    def test_invalid_source_is_not_prepared(
        self, make_project: Callable[..., Path], project_toml: str, tmp_path: Path
    ):
        text = project_toml.replace('copy = "."\n\n[sources.srcb]', '\n[sources.srcb]')
        project = load_project(make_project(text))
        cache = Cache.for_project(project, tmp_path / "cache")
        registry = create_registry(project, cache, IdentityCache(project, cache))
        with pytest.raises(ConfigurationError, match="has no `unpack', `copy' or `patch'"):
            registry.call("prepare", "srca", SourceSet.TAG, tmp_path / "build")
