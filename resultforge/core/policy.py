"""Build-mode policy: source set, storage location and final build-id per mode.

| mode         | source set   | build-id | storage                                  |
|--------------|--------------|----------|------------------------------------------|
| tag          | tag          | plain    | results, <location>/shared               |
| branch       | branch       | plain    | results, <location>/shared               |
| working-copy | working-copy | scratch  | ., out                                   |
| release      | tag          | plain    | results, <location>/release/<release_id> |
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from resultforge.core.cache import Cache
from resultforge.core.errors import ConfigurationError, ErrorReport
from resultforge.core.hasher import ContentHasher
from resultforge.models.build import BuildMode, SourceSet
from resultforge.models.project import DOT_SERVER

logger = logging.getLogger(__name__)

RESULTS_SERVER = "results"
DEFAULT_BUILD_MODE = BuildMode.TAG
SCRATCH_PREFIX = "scratch-"
_ENTROPY_BYTES = 16


def _location(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p.strip("/"))


class ScratchIds:
    """Randomized build-ids for working-copy builds, stable within one run.

    Each plain build-id maps to ``scratch-<digest(buildid + 16 random
    bytes)>``, computed on first use and reused for the rest of the run.
    """

    def __init__(self, entropy: Callable[[int], bytes] = os.urandom) -> None:
        self._entropy = entropy
        self._ids: dict[str, str] = {}

    def get(self, buildid: str) -> str:
        if buildid not in self._ids:
            random_bytes = self._entropy(_ENTROPY_BYTES)
            if len(random_bytes) != _ENTROPY_BYTES:
                raise RuntimeError(f"could not get {_ENTROPY_BYTES} bytes of entropy")
            scratch = SCRATCH_PREFIX + ContentHasher().append(buildid).append(random_bytes).finish()
            logger.debug("BUILDID: buildid=%s buildid_scratch=%s", buildid, scratch)
            self._ids[buildid] = scratch
        return self._ids[buildid]


@dataclass(frozen=True)
class BuildPolicy:
    """What a build mode implies for identity and storage."""

    mode: BuildMode

    @property
    def source_set(self) -> SourceSet:
        if self.mode is BuildMode.BRANCH:
            return SourceSet.BRANCH
        if self.mode is BuildMode.WORKING_COPY:
            return SourceSet.WORKING_COPY
        return SourceSet.TAG

    @property
    def scratch(self) -> bool:
        return self.mode is BuildMode.WORKING_COPY

    @property
    def check_remote(self) -> bool:
        return self.mode is BuildMode.RELEASE

    def storage(self, location: str, release_id: str) -> tuple[str, str]:
        """``(server, location)`` where results of this mode are stored."""
        if self.mode is BuildMode.WORKING_COPY:
            return DOT_SERVER, "out"
        if self.mode is BuildMode.RELEASE:
            return RESULTS_SERVER, _location(location, "release", release_id)
        return RESULTS_SERVER, _location(location, "shared")

    def final_buildid(self, buildid: str, scratch_ids: ScratchIds) -> str:
        return scratch_ids.get(buildid) if self.scratch else buildid


def parse_build_mode(
    build_mode: str | None = None,
    *,
    tag: bool = False,
    branch: bool = False,
    working_copy: bool = False,
    release: bool = False,
) -> BuildMode:
    """Resolve ``--build-mode`` and its shortcut flags to one mode.

    Raises
    ------
    ConfigurationError
        If more than one mode is given or the name is not a mode.
    """
    chosen: list[str] = []
    if build_mode:
        chosen.append(build_mode)
    for flag, mode in (
        (tag, BuildMode.TAG),
        (branch, BuildMode.BRANCH),
        (working_copy, BuildMode.WORKING_COPY),
        (release, BuildMode.RELEASE),
    ):
        if flag:
            chosen.append(mode.value)
    if len(chosen) > 1:
        raise ConfigurationError("multiple build modes are not supported")
    if not chosen:
        return DEFAULT_BUILD_MODE
    try:
        return BuildMode(chosen[0])
    except ValueError:
        raise ConfigurationError(f"invalid build mode: {chosen[0]}") from None


def check_storage(
    cache: Cache,
    location: str,
    release_id: str,
    modes: Iterable[BuildMode] = tuple(BuildMode),
) -> ErrorReport:
    """Check that the storage server of each of *modes* exists and can take results."""
    report = ErrorReport("checking policy:")
    servers = sorted({BuildPolicy(mode).storage(location, release_id)[0] for mode in modes})
    for server in servers:
        if not cache.valid_server(server):
            report.append("no such server: %s", server)
            continue
        writeback = cache.writeback_enabled(server)
        if not writeback:
            logger.warning("results will not be pushed to server %s (writeback disabled)", server)
        if not (writeback or cache.cache_enabled(server)):
            report.append("server %s: cannot store results, enable cache or writeback", server)
    return report
