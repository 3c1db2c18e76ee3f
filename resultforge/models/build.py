"""Build mode, per-result settings and build outcome models."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class SourceSet(str, Enum):
    """Which revision of a source is materialized and identified."""

    TAG = "tag"
    BRANCH = "branch"
    WORKING_COPY = "working-copy"


class BuildMode(str, Enum):
    """How a result is built, identified and stored."""

    TAG = "tag"
    BRANCH = "branch"
    WORKING_COPY = "working-copy"
    RELEASE = "release"


class ResultState(str, Enum):
    """Per-result outcome of a build run."""

    PENDING = "pending"
    BUILT = "built"
    UP_TO_DATE = "up_to_date"
    FAILED = "failed"
    DEPENDENCY_FAILED = "dependency_failed"
    PLAYGROUND = "playground"


# States that count as a usable result for dependents.
SUCCESS_STATES: frozenset[ResultState] = frozenset(
    {ResultState.BUILT, ResultState.UP_TO_DATE, ResultState.PLAYGROUND}
)


class BuildSettings(BaseModel):
    """Per-result settings attached after selection."""

    model_config = ConfigDict(frozen=True)

    selected: bool = False
    force_rebuild: bool = False
    keep_sandbox: bool = False
    playground: bool = False


class BuildConfig(BaseModel):
    """Resolved paths and environment for one result's sandbox run.

    ``base`` is the per-result scratch directory; ``source_dir`` and
    ``dep_dir`` live below it and ``out_dir`` receives the build output
    that gets packed into ``result.tar``.
    """

    model_config = ConfigDict(frozen=True)

    result: str
    buildid: str
    base: Path
    build_script: Path
    project: str = ""
    release_id: str = ""
    init_files: list[Path] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)

    @property
    def source_dir(self) -> Path:
        return self.base / "build"

    @property
    def dep_dir(self) -> Path:
        return self.base / "dep"

    @property
    def out_dir(self) -> Path:
        return self.base / "out"

    @property
    def tmp_dir(self) -> Path:
        return self.base / "tmp"

    @property
    def script_dir(self) -> Path:
        return self.base / "script"

    @property
    def build_log(self) -> Path:
        return self.base / "build.log"

    @property
    def builtin_env(self) -> dict[str, str]:
        """Variables every build script sees, layered over ``env``."""
        tmp = str(self.tmp_dir)
        return {
            "RF_TMPDIR": tmp,
            "RF_OUT": str(self.out_dir),
            "RF_RESULT": self.result,
            "RF_RELEASE_ID": self.release_id,
            "RF_PROJECT_NAME": self.project,
            "RF_BUILDID": self.buildid,
            "T": tmp,
            "r": self.result,
            "R": self.result,
        }


class ResultOutcome(BaseModel):
    """What happened to one result during a run."""

    model_config = ConfigDict(frozen=True)

    name: str
    state: ResultState
    buildid: str | None = None
    message: str = ""
    artifact: str | None = None  # server:location of the stored result.tar

    @property
    def succeeded(self) -> bool:
        return self.state in SUCCESS_STATES


class BuildReport(BaseModel):
    """Aggregated outcome of a build run, in build order."""

    model_config = ConfigDict(frozen=True)

    outcomes: list[ResultOutcome] = Field(default_factory=list)

    @property
    def failed(self) -> list[str]:
        return [o.name for o in self.outcomes if not o.succeeded]

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def outcome(self, name: str) -> ResultOutcome | None:
        for item in self.outcomes:
            if item.name == name:
                return item
        return None
