"""Resource store client interface.

The controller talks to the object store only through ``ResourceStore``.
Implementations convert raw objects into ``Website`` values and map their
transport errors onto the ``sitekeeper.errors`` hierarchy.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol

from sitekeeper.models.events import WatchEvent
from sitekeeper.models.website import ResourceIdentity, Website, WebsiteStatus


class ResourceStore(Protocol):
    """List/watch/get/update primitives over the remote object store."""

    async def list(self) -> tuple[list[Website], str]:
        """Return every object of the watched kind and the list resource version."""
        ...

    def watch(self, resource_version: str) -> AsyncIterator[WatchEvent]:
        """Stream changes after *resource_version*.

        The iterator ends when the server closes the stream.  Raises
        ResourceVersionExpiredError when *resource_version* is too old.
        """
        ...

    async def get(self, identity: ResourceIdentity) -> Website:
        """Read one object.  Raises NotFoundError if it does not exist."""
        ...

    async def update(
        self,
        identity: ResourceIdentity,
        annotations: dict[str, str],
        expected_resource_version: str,
    ) -> Website:
        """Merge *annotations* into the object's metadata.

        Conditioned on *expected_resource_version*; raises ConflictError on
        mismatch.  Returns the updated object.
        """
        ...

    async def update_status(
        self,
        identity: ResourceIdentity,
        status: WebsiteStatus,
        expected_resource_version: str,
    ) -> Website:
        """Write the status sub-resource.

        Conditioned on *expected_resource_version*; raises ConflictError on
        mismatch.  Returns the updated object.
        """
        ...
