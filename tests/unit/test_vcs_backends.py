"""Tests for the git, svn and cvs source backends."""

from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from resultforge.backends import create_registry
from resultforge.backends.base import WORKING_COPY_MARKER, SourceBackend
from resultforge.backends.cvs import CvsBackend, cvs_root
from resultforge.backends.git import GitBackend, git_url
from resultforge.backends.gitrepo import GitRepoBackend
from resultforge.backends.svn import SvnBackend, svn_url
from resultforge.core.build_identity import IdentityCache
from resultforge.core.cache import Cache
from resultforge.core.errors import BackendError
from resultforge.core.project_loader import load_project, parse_project
from resultforge.models.build import SourceSet

VCS_ATTRS = {"licences": ["gpl"], "server": "upstream", "branch": "main", "tag": "v1"}


@pytest.fixture
def vcs_backend(tmp_path: Path) -> Callable[..., tuple[SourceBackend, Any]]:
    """Factory: instantiate *backend_cls* over a project holding one source."""

    def _factory(backend_cls: type[SourceBackend], **attrs: Any):
        raw = {
            "project": {"name": "vcs", "release_id": "vcs-1"},
            "servers": {"upstream": {"url": "file:///srv/repos"}},
            "licences": {"gpl": {}},
            "sources": {"src": {"type": backend_cls.type_name, **attrs}},
        }
        project = parse_project(raw, tmp_path)
        cache = Cache.for_project(project, tmp_path / "cache")
        backend = backend_cls(project, cache, IdentityCache(project, cache))
        return backend, project.get_source("src")

    return _factory


class TestUrls:
    def test_git_url(self):
        assert git_url("file:///srv/git", "zlib.git") == "/srv/git/zlib.git"
        assert git_url("ssh://git.example.org/srv/git/", "/zlib.git") == "git+ssh://git.example.org/srv/git/zlib.git"
        assert git_url("https://example.org/git/", "zlib.git") == "https://example.org/git/zlib.git"

    def test_git_url_unsupported(self):
        with pytest.raises(BackendError, match="transport not supported"):
            git_url("ftp://example.org", "zlib.git")

    def test_svn_url(self):
        assert svn_url("file:///srv/svn", "proj") == "file:///srv/svn/proj"
        assert svn_url("ssh://svn.example.org/srv/svn", "proj") == "svn+ssh://svn.example.org/srv/svn/proj"
        with pytest.raises(BackendError):
            svn_url("ftp://example.org", "proj")

    def test_cvs_root(self):
        assert cvs_root("file:///srv/cvs", "root") == "/srv/cvs/root"
        assert cvs_root("ssh://cvs.example.org/srv", "root") == "cvs.example.org:/srv/root"
        assert cvs_root("cvspserver://anon@cvs.example.org/srv", "root") == ":pserver:anon@cvs.example.org:/srv/root"


class TestValidate:
    @pytest.mark.parametrize("backend_cls", [GitBackend, GitRepoBackend, SvnBackend])
    def test_required_attributes(self, vcs_backend, backend_cls):
        backend, source = vcs_backend(backend_cls, licences=["gpl"], server="upstream")
        report = backend.validate(source)
        assert report.count == 3
        for attr in ("location", "branch", "tag"):
            assert f"source has no `{attr}' attribute" in report.render()

    def test_cvs_required_attributes(self, vcs_backend):
        backend, source = vcs_backend(CvsBackend, **VCS_ATTRS)
        report = backend.validate(source)
        assert report.count == 2
        assert "`cvsroot'" in report.render()
        assert "`module'" in report.render()

    def test_git_rejects_svn_attributes(self, vcs_backend):
        backend, source = vcs_backend(GitBackend, location="x.git", workingcopy_subdir="trunk", **VCS_ATTRS)
        report = backend.validate(source)
        assert report.count == 1
        assert "attribute `workingcopy_subdir' is not supported by source type git" in report.render()

    def test_svn_accepts_workingcopy_subdir(self, vcs_backend):
        backend, source = vcs_backend(SvnBackend, location="proj", workingcopy_subdir="trunk", **VCS_ATTRS)
        assert backend.validate(source).count == 0
        assert backend.workingcopy_subdir(source) == "trunk"

    def test_valid_git_source(self, vcs_backend):
        backend, source = vcs_backend(GitBackend, location="zlib.git", **VCS_ATTRS)
        assert backend.validate(source).count == 0
        assert backend.remote_url(source) == "/srv/repos/zlib.git"

    @pytest.mark.parametrize(
        "backend_cls, method, missing",
        [
            (GitBackend, "remote_url", "location"),
            (SvnBackend, "repository_url", "location"),
            (CvsBackend, "root", "cvsroot"),
        ],
    )
    def test_unvalidated_source_fails_cleanly(self, vcs_backend, backend_cls, method, missing):
        backend, source = vcs_backend(backend_cls, licences=["gpl"], server="upstream")
        with pytest.raises(BackendError, match=f"source has no `{missing}' attribute"):
            getattr(backend, method)(source)


class TestSourceIds:
    def test_working_copy_marker(self, vcs_backend):
        for backend_cls, extra in (
            (GitBackend, {"location": "x.git"}),
            (GitRepoBackend, {"location": "x.git"}),
            (SvnBackend, {"location": "x"}),
            (CvsBackend, {"cvsroot": "root", "module": "x"}),
        ):
            backend, source = vcs_backend(backend_cls, **VCS_ATTRS, **extra)
            assert backend.sourceid(source, SourceSet.WORKING_COPY) == WORKING_COPY_MARKER

    def test_cvs_tag_id_needs_no_tool(self, vcs_backend):
        backend, source = vcs_backend(CvsBackend, cvsroot="root", module="x", **VCS_ATTRS)
        sid = backend.sourceid(source, SourceSet.TAG)
        assert len(sid) == 64

    def test_cvs_branch_has_no_source_id(self, vcs_backend):
        backend, source = vcs_backend(CvsBackend, cvsroot="root", module="x", **VCS_ATTRS)
        with pytest.raises(BackendError, match="cannot calculate sourceid for source set branch"):
            backend.sourceid(source, SourceSet.BRANCH)

    def test_cvs_without_tag(self, vcs_backend):
        attrs = {**VCS_ATTRS, "tag": "^"}
        backend, source = vcs_backend(CvsBackend, cvsroot="root", module="x", **attrs)
        with pytest.raises(BackendError):
            backend.sourceid(source, SourceSet.TAG)

    def test_git_needs_working_copy(self, vcs_backend):
        backend, source = vcs_backend(GitBackend, location="x.git", **VCS_ATTRS)
        assert not backend.working_copy_available(source)
        with pytest.raises(BackendError, match="run fetch-sources"):
            backend.sourceid(source, SourceSet.TAG)

    def test_working_dir_default_and_override(self, vcs_backend, tmp_path: Path):
        backend, source = vcs_backend(GitBackend, location="x.git", **VCS_ATTRS)
        assert backend.working_dir(source) == tmp_path / "in" / "src"
        backend, source = vcs_backend(GitBackend, location="x.git", working="wc/x", **VCS_ATTRS)
        assert backend.working_dir(source) == tmp_path / "wc" / "x"


# ---------------------------------------------------------------------------
# git against a real local repository
# ---------------------------------------------------------------------------

GIT_PROJECT = """\
[project]
name = "vcs"
release_id = "vcs-1"

[servers.upstream]
url = "{upstream_url}"

[licences.gpl]

[sources.hello]
type = "git"
server = "upstream"
location = "hello.git"
branch = "main"
tag = "v1"
licences = ["gpl"]

[results.H]
sources = ["hello"]
"""

_GIT_ENV = {
    "GIT_AUTHOR_NAME": "Test",
    "GIT_AUTHOR_EMAIL": "test@example.org",
    "GIT_COMMITTER_NAME": "Test",
    "GIT_COMMITTER_EMAIL": "test@example.org",
}


def git(cwd: Path, *args: str) -> str:
    proc = subprocess.run(
        ["git", *args],
        cwd=cwd,
        env={**os.environ, **_GIT_ENV},
        check=True,
        capture_output=True,
        text=True,
    )
    return proc.stdout.strip()


@pytest.fixture
def git_upstream(servers: dict[str, Path]) -> Path:
    """A repository with one tagged commit and a newer branch head."""
    repo = servers["upstream"] / "hello.git"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "checkout", "-q", "-b", "main")
    (repo / "README").write_text("v1\n")
    git(repo, "add", "README")
    git(repo, "commit", "-q", "-m", "first")
    git(repo, "tag", "v1")
    (repo / "README").write_text("v2\n")
    git(repo, "commit", "-q", "-am", "second")
    return repo


@pytest.mark.skipif(shutil.which("git") is None or shutil.which("tar") is None, reason="git or tar not installed")
class TestGitRepository:
    @pytest.fixture
    def registry(self, make_project: Callable[..., Path], git_upstream: Path, tmp_path: Path):
        project = load_project(make_project(GIT_PROJECT, build_scripts={"H": "true\n"}))
        cache = Cache.for_project(project, tmp_path / "cache")
        return create_registry(project, cache, IdentityCache(project, cache))

    def test_fetch_clones_working_copy(self, registry):
        registry.call("fetch", "hello")
        assert registry.call("working_copy_available", "hello")
        assert registry.call("check_workingcopy", "hello")
        # Second fetch is a no-op
        registry.call("fetch", "hello")

    def test_tag_and_branch_ids_differ(self, registry):
        registry.call("fetch", "hello")
        tag = registry.call("sourceid", "hello", SourceSet.TAG)
        branch = registry.call("sourceid", "hello", SourceSet.BRANCH)
        assert len(tag) == 64
        assert tag != branch

    def test_prepare_exports_tag_and_branch(self, registry, tmp_path: Path):
        registry.call("fetch", "hello")
        tagged = registry.call("prepare", "hello", SourceSet.TAG, tmp_path / "tag")
        head = registry.call("prepare", "hello", SourceSet.BRANCH, tmp_path / "branch")
        assert (tagged / "README").read_text() == "v1\n"
        assert (head / "README").read_text() == "v2\n"
        assert not (tagged / ".git").exists()

    def test_prepare_working_copy_skips_metadata(self, registry, tmp_path: Path):
        registry.call("fetch", "hello")
        wc = registry.project.root / "in" / "hello"
        (wc / "README").write_text("local edit\n")
        dest = registry.call("prepare", "hello", SourceSet.WORKING_COPY, tmp_path / "wc")
        assert (dest / "README").read_text() == "local edit\n"
        assert not (dest / ".git").exists()

    def test_update_fast_forwards(self, registry, git_upstream: Path):
        registry.call("fetch", "hello")
        before = registry.call("sourceid", "hello", SourceSet.BRANCH)
        (git_upstream / "README").write_text("v3\n")
        git(git_upstream, "commit", "-q", "-am", "third")
        registry.call("update", "hello")
        wc = registry.project.root / "in" / "hello"
        assert (wc / "README").read_text() == "v3\n"
        # Source ids are memoized for the lifetime of the registry
        assert registry.call("sourceid", "hello", SourceSet.BRANCH) == before


@pytest.mark.skipif(shutil.which("git") is None or shutil.which("tar") is None, reason="git or tar not installed")
class TestGitRepoRepository:
    @pytest.fixture
    def registry(self, make_project: Callable[..., Path], git_upstream: Path, tmp_path: Path):
        text = GIT_PROJECT.replace('type = "git"', 'type = "gitrepo"')
        project = load_project(make_project(text, build_scripts={"H": "true\n"}))
        cache = Cache.for_project(project, tmp_path / "cache")
        registry = create_registry(project, cache, IdentityCache(project, cache))
        registry.call("fetch", "hello")
        return registry

    def test_prepare_keeps_history(self, registry, tmp_path: Path):
        tagged = registry.call("prepare", "hello", SourceSet.TAG, tmp_path / "tag")
        head = registry.call("prepare", "hello", SourceSet.BRANCH, tmp_path / "branch")
        assert (tagged / "README").read_text() == "v1\n"
        assert (head / "README").read_text() == "v2\n"
        assert (tagged / ".git").is_dir()
        assert git(tagged, "log", "--format=%s") == "first"
        assert git(head, "log", "--format=%s").splitlines() == ["second", "first"]

    def test_prepare_working_copy_keeps_metadata(self, registry, tmp_path: Path):
        wc = registry.project.root / "in" / "hello"
        (wc / "README").write_text("local edit\n")
        dest = registry.call("prepare", "hello", SourceSet.WORKING_COPY, tmp_path / "wc")
        assert (dest / "README").read_text() == "local edit\n"
        assert (dest / ".git").is_dir()

    def test_sourceid_covers_every_ref(self, registry, tmp_path: Path):
        before = registry.call("sourceid", "hello", SourceSet.TAG)
        assert registry.call("sourceid", "hello", SourceSet.BRANCH) != before
        git(registry.project.root / "in" / "hello", "tag", "v1.1")
        project, cache = registry.project, Cache.for_project(registry.project, tmp_path / "cache")
        fresh = create_registry(project, cache, IdentityCache(project, cache))
        assert fresh.call("sourceid", "hello", SourceSet.TAG) != before

    def test_to_result_packs_repository(self, registry, tmp_path: Path):
        out = registry.call("to_result", "hello", SourceSet.TAG, tmp_path / "collected" / "hello")
        assert (out / "source" / "hello.tar.gz").is_file()
        assert 'tar xzf "source/hello.tar.gz" -C "$(BUILD)"' in (out / "Makefile").read_text()
        assert (out / "licences").read_text() == "gpl\n"
        listing = subprocess.run(
            ["tar", "-tzf", str(out / "source" / "hello.tar.gz")], check=True, capture_output=True, text=True
        ).stdout
        assert "./hello/.git/" in listing.splitlines()
