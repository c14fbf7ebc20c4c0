"""Service configuration loaded from COHEREX_* environment variables."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class CoherexSettings(BaseSettings):
    """Coherex Agent Runtime settings.

    All fields are read from environment variables with the ``COHEREX_`` prefix.
    For example, ``COHEREX_LOG_LEVEL=DEBUG`` maps to ``log_level``.
    """

    model_config = SettingsConfigDict(
        env_prefix="COHEREX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"

    # -- Infrastructure --------------------------------------------------------
    database_url: str | None = None
    """PostgreSQL connection string (``postgresql+psycopg://``).  Required for full operation."""

    redis_url: str | None = None
    """Redis connection string.  When set, per-session leases are Redis locks."""

    # -- Data storage ----------------------------------------------------------
    data_root: str = "./data"
    """Root directory for hibernation snapshots."""

    data_prefix: str | None = None
    """Optional namespace prefix: snapshots live under ``{data_root}/{data_prefix}/...``."""

    # -- Sandbox service -------------------------------------------------------
    e2b_api_key: SecretStr | None = None
    """Sandbox service key.  Without it every provisioning attempt fails."""

    e2b_template: str | None = None

    ephemeral_sandbox_timeout: int = 300
    """Lifetime ceiling (seconds) for single-use sandboxes."""

    session_sandbox_timeout: int = 3600
    """Lifetime ceiling (seconds) for persistent-session sandboxes."""

    command_timeout: int = 120
    install_packages: bool = True
    """pip-install the model provider SDK into every fresh sandbox."""

    snapshot_files: list[str] = Field(default_factory=list)
    """Sandbox file paths captured on hibernate and restored on resume."""

    # -- Provider keys forwarded into sandboxes --------------------------------
    openai_api_key: SecretStr | None = None
    anthropic_api_key: SecretStr | None = None

    # -- Execution -------------------------------------------------------------
    simulation_fallback: bool = True
    """Run ephemeral executions in simulation mode when no sandbox can be provisioned.

    Simulated outcomes are always tagged and logged at WARNING.
    """

    lock_timeout: int = 600
    """TTL (seconds) of a per-session execution lease."""

    lock_wait_timeout: float = 30.0
    """Maximum seconds to wait for a busy session before giving up."""

    # -- Idle sweeper ----------------------------------------------------------
    idle_check_interval: int = 60
    """Seconds between idle sweeps.  ``0`` disables the sweeper."""

    idle_after_seconds: int = 300
    """Active sessions untouched for this long are reported as ``idle``."""

    # -- Server ----------------------------------------------------------------
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8000
    graceful_shutdown_timeout: int = 600
    """Seconds to wait for in-flight executions to finish during shutdown."""

    public_base_url: str | None = None
    """External base URL used to build preview links.  Defaults to the request's base URL."""


def get_settings() -> CoherexSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to
    force a re-read after overriding env vars.
    """
    return _get_settings_cached()


@lru_cache(maxsize=1)
def _get_settings_cached() -> CoherexSettings:
    return CoherexSettings()
