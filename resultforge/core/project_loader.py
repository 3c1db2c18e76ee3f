"""Load ``resultforge.toml`` into a validated ``Project``.

Layout of the project file::

    [project]                 name, release_id, arch, location, default_results
    [env]                     global build environment
    [result_env.<result>]     per-result environment from the project
    [servers.<name>]          url, cachable, cache, writeback, islocal, push_permissions
    [licences.<name>]         files = [{server, location, sha256}]
    [sources.<name>]          type, licences, server, ... , [[sources.<name>.file]]
                              (licence sources: results, sources)
    [results.<name>]          type, sources, depends, env,
                              collect_project, collect_project_default_result

Only schema problems are reported here.  Per-type source checks run in
the backends' ``validate`` operation.  All problems found in the file are
collected into one ``ConfigurationError``.
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from resultforge.config import settings
from resultforge.core.errors import ConfigurationError, ErrorReport
from resultforge.models.project import (
    COLLECT_PROJECT,
    DOT_SERVER,
    NAME_PATTERN,
    RESULT_TYPES,
    Licence,
    Project,
    ProjectInfo,
    ResultConfig,
    ServerConfig,
    SourceConfig,
)

logger = logging.getLogger(__name__)

_TOP_LEVEL_KEYS = {"project", "env", "result_env", "servers", "licences", "sources", "results"}


def locate_project_root(start: Path | None = None, project_file: str | None = None) -> Path:
    """Walk up from *start* to the first directory holding the project file."""
    project_file = project_file or settings.project_file
    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / project_file).is_file():
            return candidate
    raise ConfigurationError(f"not in a project: no {project_file} above {current}")


def _format_validation(report: ErrorReport, exc: ValidationError) -> None:
    for item in exc.errors():
        where = ".".join(str(part) for part in item["loc"]) or "(root)"
        report.append("%s: %s", where, item["msg"])


def _build(
    report: ErrorReport,
    model: type[BaseModel],
    data: Any,
    context: str,
    **extra: Any,
) -> Any:
    if not isinstance(data, dict):
        report.append("%s: expected a table", context)
        return None
    try:
        return model.model_validate({**data, **extra})
    except ValidationError as exc:
        sub = ErrorReport("in %s:", context)
        _format_validation(sub, exc)
        report.extend(sub)
        return None


def _section(report: ErrorReport, raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key, {})
    if not isinstance(value, dict):
        report.append("[%s] must be a table", key)
        return {}
    return value


def _check_name(report: ErrorReport, kind: str, name: str) -> bool:
    if not NAME_PATTERN.match(name):
        report.append("%s name is invalid: %r", kind, name)
        return False
    return True


def _check_result_type(report: ErrorReport, res: ResultConfig, results: dict[str, ResultConfig]) -> None:
    if res.type not in RESULT_TYPES:
        report.append("in result %s: unknown result type: %s", res.name, res.type)
        return
    if res.type != COLLECT_PROJECT:
        for attr in ("collect_project", "collect_project_default_result"):
            if getattr(res, attr) is not None:
                report.append("in result %s: `%s' requires type %s", res.name, attr, COLLECT_PROJECT)
        return
    if res.collect_project is not True:
        report.append("in result %s: collect_project must be true", res.name)
    default = res.collect_project_default_result
    if default is None:
        report.append("in result %s: collect_project_default_result is not set", res.name)
    elif default not in results or default == res.name:
        report.append(
            "in result %s: collect_project_default_result is set to an invalid result: %s", res.name, default
        )


def parse_project(raw: dict[str, Any], root: Path) -> Project:
    """Validate the parsed TOML document *raw* for the project at *root*."""
    report = ErrorReport("in project configuration %s:", root / settings.project_file)

    for key in sorted(set(raw) - _TOP_LEVEL_KEYS):
        report.append("unknown top-level key: %s", key)

    info = _build(report, ProjectInfo, raw.get("project"), "[project]")

    servers: dict[str, ServerConfig] = {}
    for name, data in sorted(_section(report, raw, "servers").items()):
        if name == DOT_SERVER:
            report.append("server name %r is reserved", DOT_SERVER)
            continue
        server = _build(report, ServerConfig, data, f"server {name}", name=name)
        if server is not None:
            servers[name] = server

    licences: dict[str, Licence] = {}
    for name, data in sorted(_section(report, raw, "licences").items()):
        licence = _build(report, Licence, data, f"licence {name}", name=name)
        if licence is not None:
            licences[name] = licence

    sources: dict[str, SourceConfig] = {}
    for name, data in sorted(_section(report, raw, "sources").items()):
        if not _check_name(report, "source", name):
            continue
        source = _build(report, SourceConfig, data, f"source {name}", name=name)
        if source is not None:
            sources[name] = source

    results: dict[str, ResultConfig] = {}
    for name, data in sorted(_section(report, raw, "results").items()):
        if not _check_name(report, "result", name):
            continue
        res = _build(report, ResultConfig, data, f"result {name}", name=name)
        if res is not None:
            results[name] = res

    env = _section(report, raw, "env")
    result_env = _section(report, raw, "result_env")
    for name, table in sorted(result_env.items()):
        if name not in results:
            report.append("[result_env.%s]: no such result", name)
        elif not isinstance(table, dict):
            report.append("[result_env.%s] must be a table", name)

    # Cross references
    for res in results.values():
        for src in res.sources:
            if src not in sources:
                report.append("in result %s: no such source: %s", res.name, src)
        for dep in res.depends:
            if dep not in results:
                report.append("in result %s: no such result: %s", res.name, dep)
            elif dep == res.name:
                report.append("in result %s: result depends on itself", res.name)
        _check_result_type(report, res, results)
        script = root / "res" / res.path / "build-script"
        if not script.is_file():
            report.append("in result %s: missing build script %s", res.name, script)
    if info is not None:
        for name in info.default_results:
            if name not in results:
                report.append("default result is not a result: %s", name)

    if report.is_fatal or info is None:
        raise ConfigurationError(report)
    return Project(
        root=root,
        info=info,
        servers=servers,
        licences=licences,
        sources=sources,
        results=results,
        env={str(k): str(v) for k, v in env.items()},
        result_env={
            name: {str(k): str(v) for k, v in table.items()}
            for name, table in result_env.items()
        },
    )


def load_project(root: Path | None = None) -> Project:
    """Read and validate the project file below *root*.

    Without *root* the project is located by walking up from
    ``settings.project_root``, or from the current directory when unset.

    Raises
    ------
    ConfigurationError
        With every schema problem found in the file.
    """
    root = Path(root).resolve() if root is not None else locate_project_root(settings.project_root)
    path = root / settings.project_file
    try:
        with open(path, "rb") as fh:
            raw = tomllib.load(fh)
    except FileNotFoundError:
        raise ConfigurationError(f"project file not found: {path}") from None
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"{path}: {exc}") from exc

    project = parse_project(raw, root)
    logger.debug(
        "loaded project %s: %d results, %d sources, %d servers",
        project.info.name,
        len(project.results),
        len(project.sources),
        len(project.servers),
    )
    return project
