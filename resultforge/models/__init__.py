"""Resultforge data models: pydantic v2, frozen."""

from resultforge.models.build import (
    SUCCESS_STATES,
    BuildConfig,
    BuildMode,
    BuildReport,
    BuildSettings,
    ResultOutcome,
    ResultState,
    SourceSet,
)
from resultforge.models.project import (
    DOT_SERVER,
    NAME_PATTERN,
    FileEntry,
    Licence,
    Project,
    ProjectInfo,
    ResultConfig,
    ServerConfig,
    SourceConfig,
    name_to_path,
)

__all__ = [
    # project
    "DOT_SERVER",
    "NAME_PATTERN",
    "FileEntry",
    "Licence",
    "Project",
    "ProjectInfo",
    "ResultConfig",
    "ServerConfig",
    "SourceConfig",
    "name_to_path",
    # build
    "BuildMode",
    "SourceSet",
    "BuildSettings",
    "BuildConfig",
    "ResultState",
    "ResultOutcome",
    "BuildReport",
    "SUCCESS_STATES",
]
