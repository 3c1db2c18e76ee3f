"""Runtime settings, env-driven.

Reads from a .env file and RESULTFORGE_* environment variables.  Project
content (results, sources, servers) is not configured here; it comes from
``resultforge.toml`` in the project root.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class ForgeSettings(BaseSettings):
    """Process-level settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export RESULTFORGE_LOG_LEVEL=DEBUG
        export RESULTFORGE_CACHE_DIR=/var/cache/resultforge
        export RESULTFORGE_CHECK_REMOTE=true
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="RESULTFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    # Project and storage paths
    project_root: Path | None = None
    project_file: str = "resultforge.toml"
    cache_dir: Path = Path(".resultforge/cache")
    build_tmpdir: Path = Path("/tmp/resultforge-build")

    # Verify remote checksums against the cache when computing file ids
    check_remote: bool = False

    # Transport
    http_timeout_seconds: float = 60.0

    # External tools
    git_tool: str = "git"
    svn_tool: str = "svn"
    cvs_tool: str = "cvs"
    tar_tool: str = "tar"
    unzip_tool: str = "unzip"
    patch_tool: str = "patch"
    rsync_tool: str = "rsync"
    ssh_tool: str = "ssh"
    scp_tool: str = "scp"
    shell_tool: str = "bash"
    tool_timeout_seconds: float | None = None

    def resolve_cache_dir(self, root: Path) -> Path:
        """Cache directory, relative paths anchored at the project root."""
        if self.cache_dir.is_absolute():
            return self.cache_dir
        return root / self.cache_dir


# Module-level singleton: import as `from resultforge.config import settings`
settings = ForgeSettings()
