"""Delta detector: turns cache events into work-queue entries.

Only the identity travels onward; the reconciler always re-reads the object
from the store.  An Updated event whose resource version was already
dispatched for the identity is suppressed, which absorbs resync re-delivery
of unchanged objects after every relist.
"""

from __future__ import annotations

import asyncio

from sitekeeper.controller.queue import WorkQueue
from sitekeeper.models.events import EventType, ObservedEvent
from sitekeeper.models.website import ResourceIdentity
from sitekeeper.observability.logging import get_logger
from sitekeeper.observability.metrics import events_total


class DeltaDetector:
    """Classify observed events and enqueue the affected identities."""

    def __init__(self, queue: WorkQueue, source: asyncio.Queue[ObservedEvent] | None = None) -> None:
        self._log = get_logger("controller.delta")
        self._queue = queue
        self._source = source
        # identity -> resource version last handed to the work queue
        self._dispatched: dict[ResourceIdentity, str] = {}

    def handle(self, event: ObservedEvent) -> bool:
        """Process one event.  Returns True if the identity was enqueued."""
        identity = event.obj.identity
        rv = event.obj.resource_version

        if event.type == EventType.DELETED:
            self._dispatched.pop(identity, None)
            self._log.info("website_deleted", website=str(identity), resource_version=rv)
            return self._enqueue(event, identity)

        if event.type == EventType.UPDATED and self._dispatched.get(identity) == rv:
            events_total.labels(type=event.type.value, outcome="suppressed").inc()
            self._log.debug("website_update_suppressed", website=str(identity), resource_version=rv)
            return False

        self._dispatched[identity] = rv
        if event.type == EventType.ADDED:
            self._log.info("website_added", website=str(identity), resource_version=rv)
        else:
            self._log.info(
                "website_updated",
                website=str(identity),
                resource_version=rv,
                previous_resource_version=event.old.resource_version if event.old else "",
            )
        return self._enqueue(event, identity)

    async def run(self) -> None:
        """Drain the source channel until cancelled."""
        if self._source is None:
            raise RuntimeError("DeltaDetector.run() needs a source channel")
        while True:
            event = await self._source.get()
            try:
                self.handle(event)
            finally:
                self._source.task_done()

    def last_dispatched(self, identity: ResourceIdentity) -> str | None:
        """Resource version last enqueued for *identity*, if any."""
        return self._dispatched.get(identity)

    def _enqueue(self, event: ObservedEvent, identity: ResourceIdentity) -> bool:
        self._queue.add(identity)
        events_total.labels(type=event.type.value, outcome="enqueued").inc()
        return True
