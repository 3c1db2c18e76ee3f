"""Project configuration models: servers, licences, sources, results.

These models are the schema layer.  They are populated by the project
loader and are immutable afterwards; semantic checks that depend on the
source type (required attributes, allowed combinations) belong to the
source backends' ``validate`` operation.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from resultforge.core.errors import (
    UnknownLicenceError,
    UnknownResultError,
    UnknownServerError,
    UnknownSourceError,
)
from resultforge.core.string_set import StringSet

# Result and source names: dotted groups map to nested directories.
NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+(\.[A-Za-z0-9_-]+)*$")

# Name of the built-in server addressing the project root.
DOT_SERVER = "."

# Result types: plain results and project collectors.
RESULT = "result"
COLLECT_PROJECT = "collect_project"
RESULT_TYPES = (RESULT, COLLECT_PROJECT)


def _sorted_unique(values: list[str]) -> list[str]:
    return StringSet(values).to_list()


def name_to_path(name: str) -> str:
    """``group.result`` -> ``group/result``."""
    return name.replace(".", "/")


class ServerConfig(BaseModel):
    """One entry of the server table used by the cache layer."""

    model_config = ConfigDict(frozen=True)

    name: str
    url: str
    cachable: bool = True
    cache: bool = True
    writeback: bool = True
    islocal: bool | None = None
    push_permissions: str | None = None

    @property
    def cache_enabled(self) -> bool:
        return self.cache and self.cachable


class FileEntry(BaseModel):
    """A file addressed by server and location, with optional checksums.

    Used for the entries of ``files`` sources and for licence texts.  At
    most one of ``unpack``, ``copy`` and ``patch`` is meaningful per entry;
    the files backend enforces exactly one.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    server: str | None = None
    location: str
    sha1: str | None = None
    sha256: str | None = None
    unpack: str | None = None
    copy_to: str | None = Field(default=None, alias="copy")
    patch: str | None = None
    licences: list[str] | None = None

    def servloc(self) -> str:
        return f"{self.server}:{self.location}"


class Licence(BaseModel):
    """A named licence, optionally backed by licence text files."""

    model_config = ConfigDict(frozen=True)

    name: str
    files: list[FileEntry] = Field(default_factory=list)


class SourceConfig(BaseModel):
    """A named build input.

    The ``type`` selects the backend and cannot change after creation.
    Attributes not used by a backend must stay unset; backends report any
    that are set as a configuration problem.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    name: str
    type: str = "files"
    licences: list[str] | None = None
    env: dict[str, str] = Field(default_factory=dict)
    server: str | None = None
    location: str | None = None
    working: str | None = None
    branch: str | None = None
    tag: str | None = None
    workingcopy_subdir: str | None = None
    module: str | None = None
    cvsroot: str | None = None
    files: list[FileEntry] | None = Field(default=None, alias="file")
    results: list[str] | None = None
    sources: list[str] | None = None

    def attributes_set(self) -> list[str]:
        """Names of optional attributes that carry a value, sorted."""
        data = self.model_dump(exclude_none=True, exclude={"name", "type"})
        if not self.env:
            data.pop("env", None)
        return sorted(data)

    def licence_set(self) -> StringSet:
        names = StringSet(self.licences or [])
        for entry in self.files or []:
            names.insert_many(entry.licences or [])
        return names


class ResultConfig(BaseModel):
    """A named build target.

    A result without a ``type`` that sets ``collect_project`` is a
    ``collect_project`` result: it gathers its default result, that
    result's dependencies and their sources into a self-contained project
    tree before its own build script runs.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    type: str = RESULT
    sources: list[str] = Field(default_factory=list)
    depends: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    collect_project: bool | None = None
    collect_project_default_result: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _detect_type(cls, data: Any) -> Any:
        if isinstance(data, dict) and "type" not in data and "collect_project" in data:
            return {**data, "type": COLLECT_PROJECT}
        return data

    @field_validator("sources", "depends", mode="before")
    @classmethod
    def _string_to_list(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("sources", "depends")
    @classmethod
    def _normalize(cls, value: list[str]) -> list[str]:
        return _sorted_unique(value)

    def all_depends(self) -> list[str]:
        """Declared dependencies plus the default result of a project collector."""
        if self.type == COLLECT_PROJECT and self.collect_project_default_result:
            return _sorted_unique([*self.depends, self.collect_project_default_result])
        return list(self.depends)

    @property
    def path(self) -> str:
        return name_to_path(self.name)


class ProjectInfo(BaseModel):
    """Static project identity inputs."""

    model_config = ConfigDict(frozen=True)

    name: str
    release_id: str
    arch: str = "x86_64"
    location: str = ""
    default_results: list[str] = Field(default_factory=list)


class Project(BaseModel):
    """The complete, schema-validated project configuration."""

    model_config = ConfigDict(frozen=True)

    root: Path
    info: ProjectInfo
    servers: dict[str, ServerConfig] = Field(default_factory=dict)
    licences: dict[str, Licence] = Field(default_factory=dict)
    sources: dict[str, SourceConfig] = Field(default_factory=dict)
    results: dict[str, ResultConfig] = Field(default_factory=dict)
    env: dict[str, str] = Field(default_factory=dict)
    result_env: dict[str, dict[str, str]] = Field(default_factory=dict)

    # -- Lookup ---------------------------------------------------------

    def get_result(self, name: str) -> ResultConfig:
        try:
            return self.results[name]
        except KeyError:
            raise UnknownResultError(name) from None

    def get_source(self, name: str) -> SourceConfig:
        try:
            return self.sources[name]
        except KeyError:
            raise UnknownSourceError(name) from None

    def get_licence(self, name: str) -> Licence:
        try:
            return self.licences[name]
        except KeyError:
            raise UnknownLicenceError(name) from None

    def get_server(self, name: str) -> ServerConfig:
        try:
            return self.servers[name]
        except KeyError:
            raise UnknownServerError(name) from None

    def result_names(self) -> list[str]:
        return sorted(self.results)

    def source_names(self) -> list[str]:
        return sorted(self.sources)

    # -- Paths ----------------------------------------------------------

    def build_script_location(self, result_name: str) -> str:
        """Location of a result's build script relative to the project root."""
        return f"res/{name_to_path(result_name)}/build-script"

    @property
    def init_dir(self) -> Path:
        return self.root / "proj" / "init"
