"""Status reporter: conditional, idempotent writes of the status sub-resource."""

from __future__ import annotations

from sitekeeper.errors import ConflictError, StoreError
from sitekeeper.models.website import Website, WebsiteStatus
from sitekeeper.observability.logging import get_logger
from sitekeeper.observability.metrics import status_writes_total
from sitekeeper.store.client import ResourceStore


class StatusReporter:
    """Publishes computed status back onto the Website.

    Writes are conditioned on the resource version read by the reconciler.
    A ``ConflictError`` is re-raised untouched: the object changed
    concurrently and the whole reconcile must be retried against fresh
    state, not just the write.
    """

    def __init__(self, store: ResourceStore) -> None:
        self._log = get_logger("controller.status")
        self._store = store

    async def publish_status(self, website: Website, status: WebsiteStatus) -> bool:
        """Write *status* unless the object already carries it.

        Returns True if a write was made.
        """
        if website.status == status:
            status_writes_total.labels(outcome="unchanged").inc()
            return False
        try:
            await self._store.update_status(website.identity, status, website.resource_version)
        except ConflictError:
            status_writes_total.labels(outcome="conflict").inc()
            self._log.info(
                "status_conflict",
                website=str(website.identity),
                resource_version=website.resource_version,
            )
            raise
        except StoreError:
            status_writes_total.labels(outcome="error").inc()
            raise
        status_writes_total.labels(outcome="written").inc()
        self._log.info(
            "status_published",
            website=str(website.identity),
            phase=status.phase.value,
            available_replicas=status.available_replicas,
        )
        return True
