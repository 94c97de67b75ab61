"""Cache layer for SiteKeeper.

Provides the list/watch mirror of the watched Website kind.

Submodules:
    event_cache -- EventCache: initial list, watch stream, relist recovery,
                   synced signal, ordered handoff to the delta detector.
"""

from sitekeeper.cache.event_cache import EventCache

__all__ = ["EventCache"]
