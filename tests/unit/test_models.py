"""Tests for the project and build models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from resultforge.core.errors import UnknownLicenceError, UnknownServerError, UnknownSourceError
from resultforge.models.build import BuildReport, ResultOutcome, ResultState
from resultforge.models.project import FileEntry, ResultConfig, SourceConfig


class TestProjectModels:
    def test_result_lists_sorted_and_unique(self):
        result = ResultConfig(name="app", sources="zlib", depends=["b", "a", "b"])
        assert result.sources == ["zlib"]
        assert result.depends == ["a", "b"]

    def test_models_are_frozen(self):
        result = ResultConfig(name="app")
        with pytest.raises(ValidationError):
            result.name = "other"

    def test_unknown_source_attribute(self):
        with pytest.raises(ValidationError):
            SourceConfig(name="s", colour="blue")

    def test_attributes_set(self):
        source = SourceConfig.model_validate(
            {"name": "s", "type": "git", "server": "up", "licences": ["gpl"], "env": {}}
        )
        assert source.attributes_set() == ["licences", "server"]

    def test_licence_set_includes_file_licences(self):
        source = SourceConfig.model_validate(
            {
                "name": "s",
                "licences": ["mit"],
                "file": [{"location": "a", "copy": ".", "licences": ["gpl", "mit"]}],
            }
        )
        assert list(source.licence_set()) == ["gpl", "mit"]

    def test_file_entry_copy_alias(self):
        entry = FileEntry.model_validate({"location": "a.txt", "copy": "docs/"})
        assert entry.copy_to == "docs/"
        assert FileEntry(server="up", location="a.txt").servloc() == "up:a.txt"


class TestProjectLookups:
    def test_known_names(self, project):
        assert project.get_server("upstream").name == "upstream"
        assert project.get_licence("gpl").name == "gpl"
        assert project.get_source("srcb").env == {"WITH_B": "1"}

    @pytest.mark.parametrize(
        "lookup, error, message",
        [
            ("get_server", UnknownServerError, "no such server: nowhere"),
            ("get_licence", UnknownLicenceError, "no such licence: nowhere"),
            ("get_source", UnknownSourceError, "no such source: nowhere"),
        ],
    )
    def test_unknown_names(self, project, lookup, error, message):
        with pytest.raises(error, match=message):
            getattr(project, lookup)("nowhere")


class TestBuildReport:
    def test_exit_code(self):
        report = BuildReport(
            outcomes=[
                ResultOutcome(name="a", state=ResultState.UP_TO_DATE),
                ResultOutcome(name="b", state=ResultState.FAILED),
                ResultOutcome(name="c", state=ResultState.DEPENDENCY_FAILED),
            ]
        )
        assert not report.ok
        assert report.exit_code == 1
        assert report.failed == ["b", "c"]
        assert report.outcome("a").succeeded
        assert report.outcome("z") is None

    def test_playground_counts_as_success(self):
        report = BuildReport(outcomes=[ResultOutcome(name="a", state=ResultState.PLAYGROUND)])
        assert report.ok
        assert report.exit_code == 0
