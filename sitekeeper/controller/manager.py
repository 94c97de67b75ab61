"""Controller: wires cache -> delta detector -> work queue -> worker pool.

Startup order: delta detector task, event cache task, initial sync (fatal on
failure), then ``workers`` worker tasks.  Workers never run before the cache
has synced, so no reconcile acts on a partial view of the world.

Shutdown: the work queue is shut down first; each worker finishes the
identity it holds and exits.  Then the cache and detector tasks are
cancelled.
"""

from __future__ import annotations

import asyncio
from typing import Any

from sitekeeper.cache.event_cache import EventCache
from sitekeeper.controller.backoff import ExponentialBackoff
from sitekeeper.controller.delta import DeltaDetector
from sitekeeper.controller.queue import QueueShutDownError, WorkQueue
from sitekeeper.controller.reconciler import Reconciler
from sitekeeper.controller.status import StatusReporter
from sitekeeper.models.config import SiteKeeperConfig
from sitekeeper.models.events import ObservedEvent
from sitekeeper.models.reconcile import ReconcileResult
from sitekeeper.models.website import ResourceIdentity
from sitekeeper.observability.logging import get_logger
from sitekeeper.store.client import ResourceStore
from sitekeeper.workload.backend import WorkloadBackend


class Controller:
    """One controller loop over the configured Website kind."""

    def __init__(
        self,
        store: ResourceStore,
        workloads: WorkloadBackend,
        config: SiteKeeperConfig | None = None,
    ) -> None:
        self._log = get_logger("controller")
        self._config = config or SiteKeeperConfig()
        rc = self._config.reconciler

        self._events: asyncio.Queue[ObservedEvent] = asyncio.Queue()
        self.queue = WorkQueue()
        self.cache = EventCache(store, self._config.target, self._events, self._config.cache)
        self.detector = DeltaDetector(self.queue, self._events)
        self.reconciler = Reconciler(
            store,
            workloads,
            reporter=StatusReporter(store),
            backoff=ExponentialBackoff(rc.backoff_base_seconds, rc.backoff_max_seconds),
            progress_poll_seconds=rc.progress_poll_seconds,
        )

        self._detector_task: asyncio.Task[None] | None = None
        self._workers: list[asyncio.Task[None]] = []
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the pipeline and block until workers are running.

        Raises:
            CacheSyncError: the initial list could not be completed.
        """
        self._detector_task = asyncio.create_task(self.detector.run(), name="delta-detector")
        await self.cache.start()
        await self.cache.wait_for_sync(self._config.cache.sync_timeout_seconds)

        for index in range(self._config.reconciler.workers):
            self._workers.append(asyncio.create_task(self._worker(index), name=f"reconcile-worker-{index}"))
        self._running = True
        self._log.info(
            "controller_started",
            target=str(self._config.target),
            workers=len(self._workers),
            cached_objects=len(self.cache),
        )

    async def run(self, stop: asyncio.Event) -> None:
        """Start, serve until *stop* is set, then drain and stop."""
        try:
            await self.start()
            await stop.wait()
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Drain workers, then stop the cache and detector.  Idempotent."""
        self._running = False
        self.queue.shutdown()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
            self._workers.clear()
        await self.cache.stop()
        if self._detector_task is not None:
            self._detector_task.cancel()
            await asyncio.gather(self._detector_task, return_exceptions=True)
            self._detector_task = None
        self._log.info("controller_stopped")

    @property
    def running(self) -> bool:
        return self._running

    def status(self) -> dict[str, Any]:
        """Point-in-time snapshot for the health API."""
        return {
            "running": self._running,
            "synced": self.cache.has_synced(),
            "cached_objects": len(self.cache),
            "queue_depth": len(self.queue),
            "in_flight": self.queue.in_flight(),
            "pending_retries": self.queue.pending_retries(),
            "workers": len(self._workers),
        }

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def _worker(self, index: int) -> None:
        log = self._log.bind(worker=index)
        log.debug("worker_started")
        while True:
            try:
                identity = await self.queue.get()
            except QueueShutDownError:
                log.debug("worker_stopped")
                return
            try:
                result = await self._process(identity)
                if result.requeue:
                    self.queue.add_after(
                        identity,
                        result.requeue_after,
                        retries=self.reconciler.backoff.failures(identity),
                    )
                else:
                    # Settled: a progress poll or retry scheduled earlier is stale.
                    self.queue.forget(identity)
            finally:
                self.queue.done(identity)

    async def _process(self, identity: ResourceIdentity) -> ReconcileResult:
        """Reconcile one identity; unexpected errors are contained to it."""
        try:
            return await self.reconciler.reconcile(identity)
        except Exception as exc:
            delay = self.reconciler.backoff.next_delay(identity)
            self._log.error(
                "reconcile_crashed",
                website=str(identity),
                error=str(exc),
                requeue_after=delay,
                exc_info=True,
            )
            return ReconcileResult(requeue=True, requeue_after=delay, error=exc)
