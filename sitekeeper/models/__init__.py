"""Core data structures for SiteKeeper."""

from sitekeeper.models.config import SiteKeeperConfig, WatchTarget
from sitekeeper.models.events import EventType, ObservedEvent, WatchEvent, WatchEventType
from sitekeeper.models.reconcile import ReconcileResult
from sitekeeper.models.website import (
    LAST_APPLIED_ANNOTATION,
    CachedObject,
    LastApplied,
    Phase,
    ResourceIdentity,
    Website,
    WebsiteSpec,
    WebsiteStatus,
    Workload,
)

__all__ = [
    "LAST_APPLIED_ANNOTATION",
    "CachedObject",
    "EventType",
    "LastApplied",
    "ObservedEvent",
    "Phase",
    "ReconcileResult",
    "ResourceIdentity",
    "SiteKeeperConfig",
    "WatchEvent",
    "WatchEventType",
    "WatchTarget",
    "Website",
    "WebsiteSpec",
    "WebsiteStatus",
    "Workload",
]
