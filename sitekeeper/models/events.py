"""Event data structures flowing from the store to the work queue."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from sitekeeper.models.website import CachedObject, Website


class WatchEventType(StrEnum):
    """Event types emitted by the store's watch stream."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"


class EventType(StrEnum):
    """Change classification produced by the event cache."""

    ADDED = "Added"
    UPDATED = "Updated"
    DELETED = "Deleted"


@dataclass(frozen=True)
class WatchEvent:
    """One item of a watch stream.

    ``website`` is None only for BOOKMARK events, which carry nothing but a
    resource version.
    """

    type: WatchEventType
    resource_version: str
    website: Website | None = None


@dataclass(frozen=True)
class ObservedEvent:
    """A cache change handed to the delta detector.

    For UPDATED events ``old`` is the snapshot that was replaced; for DELETED
    events ``obj`` is the last snapshot the cache held.
    """

    type: EventType
    obj: CachedObject
    old: CachedObject | None = None
