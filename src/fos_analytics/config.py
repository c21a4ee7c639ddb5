"""Runtime settings read from the environment."""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from fos_analytics.cache import (
    FILTER_OPTIONS_TTL_SECONDS,
    RESPONSE_CACHE_TTL_SECONDS,
    TABLE_CHECK_TTL_SECONDS,
)
from fos_analytics.store import ConfigurationError

DATABASE_PATH_ENV = "FOS_DATABASE_PATH"
DEFAULT_QUERY_WORKERS = 6


def _float_env(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value >= 0 else default


def _int_env(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key, "").strip()
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _bool_env(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key, "").strip().lower()
    if not raw:
        return default
    return raw not in ("0", "false", "no", "off")


@dataclass(frozen=True, slots=True)
class Settings:
    database_path: Path | None
    read_only: bool = True
    query_workers: int = DEFAULT_QUERY_WORKERS
    response_cache_ttl: float = RESPONSE_CACHE_TTL_SECONDS
    table_check_ttl: float = TABLE_CHECK_TTL_SECONDS
    filter_options_ttl: float = FILTER_OPTIONS_TTL_SECONDS
    cron_secret: str | None = None

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        source = os.environ if env is None else env
        raw_path = source.get(DATABASE_PATH_ENV, "").strip()
        return cls(
            database_path=Path(raw_path).expanduser() if raw_path else None,
            read_only=_bool_env(source, "FOS_READ_ONLY", True),
            query_workers=_int_env(source, "FOS_QUERY_WORKERS", DEFAULT_QUERY_WORKERS),
            response_cache_ttl=_float_env(
                source, "FOS_RESPONSE_CACHE_TTL", RESPONSE_CACHE_TTL_SECONDS,
            ),
            table_check_ttl=_float_env(source, "FOS_TABLE_CHECK_TTL", TABLE_CHECK_TTL_SECONDS),
            filter_options_ttl=_float_env(
                source, "FOS_FILTER_OPTIONS_TTL", FILTER_OPTIONS_TTL_SECONDS,
            ),
            cron_secret=source.get("FOS_CRON_SECRET", "").strip() or None,
        )

    def require_database_path(self) -> Path:
        """The configured database path; raises when it is missing."""
        if self.database_path is None:
            raise ConfigurationError(
                f"FOS database is not configured. Set {DATABASE_PATH_ENV}."
            )
        return self.database_path
