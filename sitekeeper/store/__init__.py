"""Resource store access for SiteKeeper.

Submodules:
    client -- ResourceStore protocol consumed by the cache and reconciler.
    kube   -- KubeResourceStore over kubernetes-asyncio CustomObjectsApi.
"""

from sitekeeper.store.client import ResourceStore

__all__ = ["ResourceStore"]
