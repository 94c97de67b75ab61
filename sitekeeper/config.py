"""Configuration loading from environment variables."""

from __future__ import annotations

import os
import re

from sitekeeper.models.config import (
    APIConfig,
    CacheConfig,
    LogConfig,
    ReconcilerConfig,
    SiteKeeperConfig,
    WatchTarget,
)

_DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"SITEKEEPER_{key}", default)


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None) -> float:
    val = float(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    return val


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_namespace(value: str) -> str:
    if value and not _DNS_LABEL.match(value):
        raise ValueError(f"Invalid namespace: {value}")
    return value


def _validate_plural(value: str) -> str:
    if not _DNS_LABEL.match(value):
        raise ValueError(f"Invalid resource plural: {value}")
    return value


def load_config() -> SiteKeeperConfig:
    """Load configuration from SITEKEEPER_* environment variables."""
    base = _env_float("BACKOFF_BASE_SECONDS", 1.0, min_val=0.01)
    return SiteKeeperConfig(
        target=WatchTarget(
            group=_env("GROUP", "example.com"),
            version=_env("VERSION", "v1"),
            plural=_validate_plural(_env("PLURAL", "websites")),
            namespace=_validate_namespace(_env("NAMESPACE", "")),
        ),
        cache=CacheConfig(
            initial_list_retries=_env_int("INITIAL_LIST_RETRIES", 5, min_val=1, max_val=20),
            sync_timeout_seconds=_env_float("SYNC_TIMEOUT_SECONDS", 120.0, min_val=1.0),
            watch_timeout_seconds=_env_int("WATCH_TIMEOUT_SECONDS", 300, min_val=10, max_val=3600),
        ),
        reconciler=ReconcilerConfig(
            workers=_env_int("WORKERS", 2, min_val=1, max_val=10),
            backoff_base_seconds=base,
            backoff_max_seconds=_env_float("BACKOFF_MAX_SECONDS", 300.0, min_val=base),
            progress_poll_seconds=_env_float("PROGRESS_POLL_SECONDS", 5.0, min_val=0.1),
        ),
        api=APIConfig(
            port=_env_int("API_PORT", 8080, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )
