"""Event cache: an eventually-consistent local mirror of the watched kind.

Built from an initial full list followed by a watch stream.  Every change
applied to the mirror is handed to the delta detector through an
``asyncio.Queue`` in the order the store delivered it.

Sync model
----------
``has_synced()`` turns true once the first list has been applied.  The
initial list is attempted ``initial_list_retries`` times; if every attempt
fails the cache task ends with ``CacheSyncError`` and ``wait_for_sync``
re-raises it, which is fatal to the process.

Watch restarts
--------------
When a watch stream ends for any reason (server timeout, connection loss,
expired resource version) the cache performs a fresh list and starts a new
watch from the list's resource version.  Identities cached before the
relist but absent from it are emitted as Deleted.  Relists after the first
sync retry forever with capped exponential delay.
"""

from __future__ import annotations

import asyncio

from sitekeeper.errors import CacheSyncError, ResourceVersionExpiredError, StoreError
from sitekeeper.models.config import CacheConfig, WatchTarget
from sitekeeper.models.events import EventType, ObservedEvent, WatchEventType
from sitekeeper.models.website import CachedObject, ResourceIdentity, Website
from sitekeeper.observability.logging import get_logger
from sitekeeper.observability.metrics import (
    cache_objects,
    cache_relists_total,
    cache_synced,
    cache_watch_restarts_total,
)
from sitekeeper.store.client import ResourceStore

_MIN_WATCH_SECONDS: float = 1.0


class EventCache:
    """List/watch mirror of one resource kind.

    Example::

        events: asyncio.Queue[ObservedEvent] = asyncio.Queue()
        cache = EventCache(store, WatchTarget(), events)
        await cache.start()
        await cache.wait_for_sync(timeout=60)
        obj = cache.get(ResourceIdentity("default", "blog"))
    """

    def __init__(
        self,
        store: ResourceStore,
        target: WatchTarget,
        sink: asyncio.Queue[ObservedEvent],
        config: CacheConfig | None = None,
    ) -> None:
        self._log = get_logger("cache.event")
        self._store = store
        self._target = target
        self._sink = sink
        self._config = config or CacheConfig()

        self._objects: dict[ResourceIdentity, CachedObject] = {}
        self._resource_version: str = ""
        self._synced = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Launch the list-then-watch loop as a background task."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self.run(), name=f"event-cache-{self._target.plural}")

    async def stop(self) -> None:
        """Cancel the background loop.  Safe to call when never started."""
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            self._log.warning("cache_task_failed", target=str(self._target), error=str(exc))
        self._log.info("cache_stopped", target=str(self._target))

    async def wait_for_sync(self, timeout: float | None = None) -> None:
        """Block until the initial list has been applied.

        Raises:
            CacheSyncError: the initial list failed, the cache loop died, or
                *timeout* seconds elapsed first.
        """
        if self._task is None:
            raise CacheSyncError("event cache was never started")
        if self._synced.is_set():
            return

        sync_wait = asyncio.ensure_future(self._synced.wait())
        try:
            await asyncio.wait({sync_wait, self._task}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not sync_wait.done():
                sync_wait.cancel()

        if self._synced.is_set():
            return
        if self._task.done():
            if self._task.cancelled():
                raise CacheSyncError("event cache stopped before the initial sync")
            exc = self._task.exception()
            if isinstance(exc, CacheSyncError):
                raise exc
            raise CacheSyncError(f"event cache failed before the initial sync: {exc}") from exc
        raise CacheSyncError(f"initial sync did not complete within {timeout}s")

    async def run(self) -> None:
        """Run list-then-watch cycles until cancelled."""
        await self._initial_sync()
        loop = asyncio.get_running_loop()
        delay = self._config.list_retry_base_seconds
        while True:
            started = loop.time()
            reason = "closed"
            try:
                await self._watch()
            except ResourceVersionExpiredError:
                reason = "expired"
            except StoreError as exc:
                reason = "error"
                self._log.warning("cache_watch_failed", target=str(self._target), error=str(exc))
            cache_watch_restarts_total.labels(reason=reason).inc()
            self._log.debug("cache_watch_restart", target=str(self._target), reason=reason)

            # A stream that fails or closes right away must not spin the relist loop.
            if reason == "error" or loop.time() - started < _MIN_WATCH_SECONDS:
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._config.relist_backoff_max_seconds)
            else:
                delay = self._config.list_retry_base_seconds
            await self._relist()

    # ------------------------------------------------------------------
    # Read interface
    # ------------------------------------------------------------------

    def has_synced(self) -> bool:
        """Return True once the initial list has been fully applied."""
        return self._synced.is_set()

    def get(self, identity: ResourceIdentity) -> CachedObject | None:
        """Return the last-known snapshot for *identity*, or None."""
        return self._objects.get(identity)

    def list(self) -> list[CachedObject]:
        """Return every cached snapshot."""
        return list(self._objects.values())

    def __len__(self) -> int:
        return len(self._objects)

    @property
    def resource_version(self) -> str:
        """Resource version the next watch will start from."""
        return self._resource_version

    # ------------------------------------------------------------------
    # List / watch cycles
    # ------------------------------------------------------------------

    async def _initial_sync(self) -> None:
        attempts = self._config.initial_list_retries
        delay = self._config.list_retry_base_seconds
        for attempt in range(1, attempts + 1):
            try:
                websites, rv = await self._store.list()
            except StoreError as exc:
                cache_relists_total.labels(outcome="error").inc()
                self._log.warning(
                    "cache_initial_list_failed",
                    target=str(self._target),
                    attempt=attempt,
                    attempts=attempts,
                    error=str(exc),
                )
                if attempt == attempts:
                    raise CacheSyncError(
                        f"initial list of {self._target} failed after {attempts} attempts: {exc}"
                    ) from exc
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._config.relist_backoff_max_seconds)
                continue

            cache_relists_total.labels(outcome="success").inc()
            self._apply_list(websites, rv)
            self._synced.set()
            cache_synced.set(1)
            self._log.info(
                "cache_synced",
                target=str(self._target),
                objects=len(self._objects),
                resource_version=rv,
            )
            return

    async def _relist(self) -> None:
        delay = self._config.list_retry_base_seconds
        while True:
            try:
                websites, rv = await self._store.list()
            except StoreError as exc:
                cache_relists_total.labels(outcome="error").inc()
                self._log.warning("cache_relist_failed", target=str(self._target), error=str(exc), retry_in=delay)
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._config.relist_backoff_max_seconds)
                continue
            cache_relists_total.labels(outcome="success").inc()
            self._apply_list(websites, rv)
            return

    async def _watch(self) -> None:
        async for event in self._store.watch(self._resource_version):
            if event.type == WatchEventType.BOOKMARK or event.website is None:
                if event.resource_version:
                    self._resource_version = event.resource_version
                continue
            if event.type == WatchEventType.DELETED:
                self._remove(event.website.identity, event.website)
            else:
                self._upsert(event.website)
            if event.resource_version:
                self._resource_version = event.resource_version

    # ------------------------------------------------------------------
    # Mutation (each step updates the mirror and emits in one go)
    # ------------------------------------------------------------------

    def _apply_list(self, websites: list[Website], resource_version: str) -> None:
        seen: set[ResourceIdentity] = set()
        for website in websites:
            seen.add(website.identity)
            self._upsert(website)
        for identity in [i for i in self._objects if i not in seen]:
            self._remove(identity, None)
        self._resource_version = resource_version
        self._log.debug("cache_list_applied", objects=len(websites), resource_version=resource_version)

    def _upsert(self, website: Website) -> None:
        new = CachedObject.from_website(website)
        old = self._objects.get(website.identity)
        self._objects[website.identity] = new
        event_type = EventType.ADDED if old is None else EventType.UPDATED
        self._sink.put_nowait(ObservedEvent(type=event_type, obj=new, old=old))
        cache_objects.set(len(self._objects))

    def _remove(self, identity: ResourceIdentity, website: Website | None) -> None:
        old = self._objects.pop(identity, None)
        if old is None and website is None:
            return
        last = old if old is not None else CachedObject.from_website(website)  # type: ignore[arg-type]
        self._sink.put_nowait(ObservedEvent(type=EventType.DELETED, obj=last))
        cache_objects.set(len(self._objects))
