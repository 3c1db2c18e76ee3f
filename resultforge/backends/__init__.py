"""Source backends and the startup routine that registers them."""

from __future__ import annotations

from resultforge.backends.base import SourceBackend
from resultforge.backends.cvs import CvsBackend
from resultforge.backends.files import FilesBackend
from resultforge.backends.git import GitBackend
from resultforge.backends.gitrepo import GitRepoBackend
from resultforge.backends.licence import LicenceBackend
from resultforge.backends.svn import SvnBackend
from resultforge.core.build_identity import IdentityCache
from resultforge.core.cache import Cache
from resultforge.core.source_registry import STANDARD_OPERATIONS, SourceBackendRegistry
from resultforge.models.project import Project

# Backends enabled by default, in registration order.
DEFAULT_BACKENDS: tuple[type[SourceBackend], ...] = (
    FilesBackend,
    GitBackend,
    GitRepoBackend,
    SvnBackend,
    CvsBackend,
    LicenceBackend,
)


def create_registry(
    project: Project,
    cache: Cache,
    ids: IdentityCache,
    backends: tuple[type[SourceBackend], ...] = DEFAULT_BACKENDS,
) -> SourceBackendRegistry:
    """Build the source registry: declare operations, then register backends.

    Sources whose type has no backend are reported here, before any of
    them is used.
    """
    registry = SourceBackendRegistry(project)
    for op_name in STANDARD_OPERATIONS:
        registry.register_operation(op_name)
    for backend_cls in backends:
        registry.register_backend(backend_cls.type_name, backend_cls(project, cache, ids))
    registry.check_source_types().raise_if_fatal()
    return registry


__all__ = [
    "DEFAULT_BACKENDS",
    "CvsBackend",
    "FilesBackend",
    "GitBackend",
    "GitRepoBackend",
    "LicenceBackend",
    "SourceBackend",
    "SvnBackend",
    "create_registry",
]
