from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List


@dataclass(frozen=True)
class SyncConfig:
    """
    Knobs of the sync engine. Passed explicitly to SyncEngine so a pass never
    depends on process environment.

    - api_base_url: base address of the remote authority (no trailing slash)
    - batch_size: max queue items per remote round-trip (default 10)
    - max_retry: failed attempts before an entry is marked permanently failed (default 3)
    - connectivity_timeout: seconds allowed for the health probe (default 5)
    - request_timeout: seconds allowed for one batch round-trip (default 30)
    """

    api_base_url: str = "http://localhost:3000/api"
    batch_size: int = 10
    max_retry: int = 3
    connectivity_timeout: float = 5.0
    request_timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.max_retry < 1:
            raise ValueError("max_retry must be at least 1")
        object.__setattr__(self, "api_base_url", self.api_base_url.rstrip("/"))


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PERSISTENCE_BACKEND: 'memory' (default) or 'sqlite'
    - SQLITE_DB_PATH: path to sqlite db file. Default './data/tasks.db'
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - LOG_LEVEL: logging level name, 'INFO' by default
    - API_BASE_URL: remote authority base address
    - SYNC_BATCH_SIZE, SYNC_MAX_RETRY: integers
    - SYNC_CONNECTIVITY_TIMEOUT, SYNC_REQUEST_TIMEOUT: seconds (float)
    """

    persistence_backend: str
    sqlite_db_path: str
    cors_allow_origins: List[str]
    log_level: str = "INFO"
    sync: SyncConfig = field(default_factory=SyncConfig)


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_int(value: str, default: int, minimum: int = 1) -> int:
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _parse_float(value: str, default: float) -> float:
    try:
        parsed = float(value.strip())
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


# PUBLIC_INTERFACE
def get_sync_config() -> SyncConfig:
    """Build a SyncConfig from environment variables, falling back to defaults."""
    defaults = SyncConfig()
    return SyncConfig(
        api_base_url=_get_env("API_BASE_URL", defaults.api_base_url).strip(),
        batch_size=_parse_int(_get_env("SYNC_BATCH_SIZE", str(defaults.batch_size)), defaults.batch_size),
        max_retry=_parse_int(_get_env("SYNC_MAX_RETRY", str(defaults.max_retry)), defaults.max_retry),
        connectivity_timeout=_parse_float(
            _get_env("SYNC_CONNECTIVITY_TIMEOUT", str(defaults.connectivity_timeout)),
            defaults.connectivity_timeout,
        ),
        request_timeout=_parse_float(
            _get_env("SYNC_REQUEST_TIMEOUT", str(defaults.request_timeout)),
            defaults.request_timeout,
        ),
    )


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("PERSISTENCE_BACKEND", "memory").strip().lower()
    if backend not in {"memory", "sqlite"}:
        # Fallback to memory if unsupported
        backend = "memory"

    sqlite_path = _get_env("SQLITE_DB_PATH", "./data/tasks.db").strip()
    origins = _parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*"))
    log_level = _get_env("LOG_LEVEL", "INFO").strip().upper()

    return Settings(
        persistence_backend=backend,
        sqlite_db_path=sqlite_path,
        cors_allow_origins=origins,
        log_level=log_level,
        sync=get_sync_config(),
    )
