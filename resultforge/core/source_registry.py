"""Dispatch of source operations to the backend registered for a source type.

Startup is two-phase: operations are declared first with
``register_operation``, then backends are registered against them with
``register_backend``.  Callers never talk to a backend directly; they
call an operation by source name and the registry resolves the source's
``type`` to its backend.

Every operation other than ``validate`` re-runs validation for the source
first and raises ``ConfigurationError`` if it reports any problem.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from resultforge.core.errors import (
    BackendError,
    ConfigurationError,
    DuplicateBackendError,
    ErrorReport,
    UnknownOperationError,
    UnknownSourceTypeError,
    UnsupportedOperationError,
)
from resultforge.models.project import Project, SourceConfig

logger = logging.getLogger(__name__)

# Operations every installation declares, in registration order.
STANDARD_OPERATIONS: tuple[str, ...] = (
    "validate",
    "fetch",
    "prepare",
    "update",
    "sourceid",
    "display",
    "check_workingcopy",
    "working_copy_available",
    "to_result",
)

VALIDATE = "validate"


class SourceBackendRegistry:
    """Registry of source backends keyed by source type.

    Parameters
    ----------
    project:
        Project whose sources are dispatched.

    Examples
    --------
    >>> registry = SourceBackendRegistry(project)              # doctest: +SKIP
    >>> fetch = registry.register_operation("fetch")           # doctest: +SKIP
    >>> registry.register_backend("files", FilesBackend(...))  # doctest: +SKIP
    >>> fetch("zlib")                                          # doctest: +SKIP
    """

    def __init__(self, project: Project) -> None:
        self._project = project
        self._operations: dict[str, Callable[..., Any]] = {}
        self._backends: dict[str, Any] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_operation(self, op_name: str) -> Callable[..., Any]:
        """Declare *op_name* and return a dispatcher bound to it."""
        if op_name in self._operations:
            raise BackendError(f"operation already registered: {op_name}")

        def dispatcher(source_name: str, *args: Any, **kwargs: Any) -> Any:
            return self.call(op_name, source_name, *args, **kwargs)

        dispatcher.__name__ = op_name
        self._operations[op_name] = dispatcher
        logger.debug("registry: operation %s declared", op_name)
        return dispatcher

    def register_backend(self, type_name: str, backend: Any) -> None:
        """Register *backend* as the implementation of source type *type_name*.

        Raises
        ------
        DuplicateBackendError
            If *type_name* already has a backend.
        """
        if not self._operations:
            raise BackendError("operations must be registered before backends")
        if type_name in self._backends:
            raise DuplicateBackendError(f"backend already registered for source type: {type_name}")
        if not callable(getattr(backend, VALIDATE, None)):
            raise BackendError(f"backend for source type {type_name} does not implement {VALIDATE}")
        self._backends[type_name] = backend
        # Backends that resolve other sources get dispatch access
        bind = getattr(backend, "bind_registry", None)
        if callable(bind):
            bind(self)
        supported = [op for op in self._operations if self.supports(type_name, op)]
        logger.debug("registry: backend %s registered (%s)", type_name, ", ".join(supported))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def operations(self) -> list[str]:
        return list(self._operations)

    @property
    def types(self) -> list[str]:
        return sorted(self._backends)

    @property
    def project(self) -> Project:
        return self._project

    def dispatcher(self, op_name: str) -> Callable[..., Any]:
        try:
            return self._operations[op_name]
        except KeyError:
            raise UnknownOperationError(f"no such operation: {op_name}") from None

    def supports(self, type_name: str, op_name: str) -> bool:
        backend = self._backends.get(type_name)
        return backend is not None and callable(getattr(backend, op_name, None))

    def backend_for(self, source: SourceConfig) -> Any:
        try:
            return self._backends[source.type]
        except KeyError:
            raise UnknownSourceTypeError(
                f"no backend for source type: {source.type}", source=source.name
            ) from None

    def check_source_types(self) -> ErrorReport:
        """Report every source whose type has no registered backend."""
        report = ErrorReport("checking source types:")
        for name in self._project.source_names():
            src_type = self._project.sources[name].type
            if src_type not in self._backends:
                report.append("source %s: unknown source type: %s", name, src_type)
        return report

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def validate(self, source_name: str) -> ErrorReport:
        """Run the backend's ``validate`` and return its report (no raise)."""
        source = self._project.get_source(source_name)
        return self.backend_for(source).validate(source)

    def call(self, op_name: str, source_name: str, *args: Any, **kwargs: Any) -> Any:
        """Invoke *op_name* on the backend for *source_name*'s type.

        Raises
        ------
        UnknownOperationError
            If *op_name* was never declared.
        UnsupportedOperationError
            If the backend does not implement *op_name*.
        ConfigurationError
            If the source does not validate.
        """
        if op_name not in self._operations:
            raise UnknownOperationError(f"no such operation: {op_name}", source=source_name)
        source = self._project.get_source(source_name)
        backend = self.backend_for(source)
        method = getattr(backend, op_name, None)
        if not callable(method):
            raise UnsupportedOperationError(
                f"source type {source.type} does not support operation {op_name}",
                source=source_name,
            )
        if op_name == VALIDATE:
            return method(source, *args, **kwargs)

        report = backend.validate(source)
        if report.is_fatal:
            raise ConfigurationError(report)
        return method(source, *args, **kwargs)
