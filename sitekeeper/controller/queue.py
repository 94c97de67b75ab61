"""Deduplicating work queue of resource identities.

Semantics follow the classic controller work queue:

* ``add`` inserts an identity unless it is already waiting; bursts of events
  for one identity collapse into a single pending entry.
* ``get`` hands an identity to exactly one worker and marks it in flight.
* An ``add`` for an in-flight identity marks it dirty; ``done`` puts it back
  so the change that raced with processing is not lost.
* ``add_after`` schedules a delayed re-add (retry backoff, progress polls).
  At most one scheduled entry exists per identity; the earlier eligible time
  wins.  ``forget`` cancels it once the identity has settled.

No ordering is guaranteed across identities.  For one identity the queue
guarantees at-least-once delivery of "needs reconciling", never of a
particular event.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field

from sitekeeper.models.website import ResourceIdentity
from sitekeeper.observability.logging import get_logger
from sitekeeper.observability.metrics import (
    workqueue_adds_total,
    workqueue_depth,
    workqueue_retries_total,
)


class QueueShutDownError(Exception):
    """Raised by ``get`` once the queue has been shut down."""


@dataclass
class QueueEntry:
    """A scheduled re-add for one identity."""

    identity: ResourceIdentity
    retries: int
    eligible_at: float
    _handle: asyncio.TimerHandle | None = field(default=None, repr=False, compare=False)


class WorkQueue:
    """asyncio work queue safe for any number of producers and consumers.

    Example::

        queue = WorkQueue()
        queue.add(identity)
        identity = await queue.get()
        try:
            ...
        finally:
            queue.done(identity)
    """

    def __init__(self) -> None:
        self._log = get_logger("controller.queue")
        self._ready: deque[ResourceIdentity] = deque()
        self._dirty: set[ResourceIdentity] = set()
        self._processing: set[ResourceIdentity] = set()
        self._scheduled: dict[ResourceIdentity, QueueEntry] = {}
        self._wakeup = asyncio.Event()
        self._shutting_down = False

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def add(self, identity: ResourceIdentity) -> bool:
        """Mark *identity* as needing reconciliation.

        Returns True if a new ready entry was created, False if the add was
        coalesced into an existing entry, deferred until ``done``, or
        ignored because the queue is shutting down.
        """
        if self._shutting_down:
            return False
        if identity in self._dirty:
            return False
        self._dirty.add(identity)
        if identity in self._processing:
            return False
        self._push(identity)
        return True

    def add_after(self, identity: ResourceIdentity, delay: float, retries: int = 0) -> None:
        """Add *identity* once *delay* seconds have passed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(identity)
            return

        loop = asyncio.get_running_loop()
        eligible_at = loop.time() + delay
        existing = self._scheduled.get(identity)
        if existing is not None:
            if existing.eligible_at <= eligible_at:
                existing.retries = max(existing.retries, retries)
                return
            if existing._handle is not None:
                existing._handle.cancel()

        entry = QueueEntry(identity=identity, retries=retries, eligible_at=eligible_at)
        entry._handle = loop.call_at(eligible_at, self._fire, entry)
        self._scheduled[identity] = entry
        workqueue_retries_total.inc()

    def forget(self, identity: ResourceIdentity) -> None:
        """Cancel the scheduled re-add for *identity*, if any.

        Entries that are ready or marked dirty are kept; they stand for
        changes observed after the identity settled.
        """
        entry = self._scheduled.pop(identity, None)
        if entry is not None and entry._handle is not None:
            entry._handle.cancel()

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def get(self) -> ResourceIdentity:
        """Wait for the next ready identity and mark it in flight.

        Raises:
            QueueShutDownError: the queue was shut down.
        """
        while True:
            if self._shutting_down:
                raise QueueShutDownError("work queue is shut down")
            if self._ready:
                break
            self._wakeup.clear()
            await self._wakeup.wait()
        identity = self._ready.popleft()
        self._processing.add(identity)
        self._dirty.discard(identity)
        workqueue_depth.set(len(self._ready))
        return identity

    def done(self, identity: ResourceIdentity) -> None:
        """Finish processing *identity*, re-queueing it if it was re-added meanwhile."""
        self._processing.discard(identity)
        if identity in self._dirty and not self._shutting_down:
            self._push(identity)

    # ------------------------------------------------------------------
    # Lifecycle / introspection
    # ------------------------------------------------------------------

    def shutdown(self) -> None:
        """Wake every blocked ``get`` and drop scheduled re-adds."""
        self._shutting_down = True
        for entry in self._scheduled.values():
            if entry._handle is not None:
                entry._handle.cancel()
        self._scheduled.clear()
        self._wakeup.set()
        self._log.info("workqueue_shut_down", dropped=len(self._ready), in_flight=len(self._processing))

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def __len__(self) -> int:
        return len(self._ready)

    def __contains__(self, identity: object) -> bool:
        return identity in self._dirty

    def in_flight(self) -> int:
        """Number of identities currently handed out to workers."""
        return len(self._processing)

    def pending_retries(self) -> int:
        """Number of scheduled (delayed) entries."""
        return len(self._scheduled)

    def scheduled(self, identity: ResourceIdentity) -> QueueEntry | None:
        """Return the scheduled entry for *identity*, if any."""
        return self._scheduled.get(identity)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _push(self, identity: ResourceIdentity) -> None:
        self._ready.append(identity)
        workqueue_adds_total.inc()
        workqueue_depth.set(len(self._ready))
        self._wakeup.set()

    def _fire(self, entry: QueueEntry) -> None:
        if self._scheduled.get(entry.identity) is entry:
            del self._scheduled[entry.identity]
        self.add(entry.identity)
