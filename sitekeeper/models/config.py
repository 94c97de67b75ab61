"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class WatchTarget:
    """Group/version/resource coordinates of the watched kind.

    An empty ``namespace`` watches every namespace.
    """

    group: str = "example.com"
    version: str = "v1"
    plural: str = "websites"
    namespace: str = ""

    def __str__(self) -> str:
        return f"{self.plural}.{self.version}.{self.group}"


@dataclass
class CacheConfig:
    """Event cache configuration."""

    initial_list_retries: int = 5
    sync_timeout_seconds: float = 120.0
    watch_timeout_seconds: int = 300
    list_retry_base_seconds: float = 1.0
    relist_backoff_max_seconds: float = 30.0


@dataclass
class ReconcilerConfig:
    """Reconciler and worker-pool configuration."""

    workers: int = 2
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 300.0
    progress_poll_seconds: float = 5.0


@dataclass
class APIConfig:
    """Health and metrics HTTP surface configuration."""

    port: int = 8080


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class SiteKeeperConfig:
    """Top-level SiteKeeper configuration."""

    target: WatchTarget = field(default_factory=WatchTarget)
    cache: CacheConfig = field(default_factory=CacheConfig)
    reconciler: ReconcilerConfig = field(default_factory=ReconcilerConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
