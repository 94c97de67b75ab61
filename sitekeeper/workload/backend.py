"""Workload backend interface.

A Website's replicas are provisioned as external resources keyed by the
Website's identity.  The reconciler only sees them through this protocol.
"""

from __future__ import annotations

from typing import Protocol

from sitekeeper.models.website import ResourceIdentity, Website, Workload


class WorkloadBackend(Protocol):
    """Provisioning primitives for the resources backing one Website."""

    async def observe(self, identity: ResourceIdentity) -> Workload | None:
        """Return the provisioned workload, or None if nothing is provisioned."""
        ...

    async def create(self, website: Website) -> None:
        """Provision a workload matching the Website's (validated) spec."""
        ...

    async def scale(self, identity: ResourceIdentity, replicas: int) -> None:
        """Set the provisioned replica count."""
        ...

    async def rollout(self, identity: ResourceIdentity, image: str, port: int) -> None:
        """Roll the workload to a new image and port."""
        ...

    async def delete(self, identity: ResourceIdentity) -> bool:
        """Release everything provisioned for *identity*.

        Returns True if anything was deleted.  Absence is not an error.
        """
        ...
