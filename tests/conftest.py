"""Shared fixtures and in-memory fakes for SiteKeeper tests.

``FakeStore`` behaves like the Kubernetes API for one custom resource kind:
every write bumps a cluster-wide resource version, writes conditioned on a
stale resource version fail with ``ConflictError``, and watches replay the
change history from the requested resource version.

``FakeWorkloads`` keeps provisioned workloads in a dict.  By default the
available replica count follows the desired count immediately; tests that
exercise progress reporting turn that off and drive it by hand.
"""

from __future__ import annotations

import asyncio
import copy
from collections import defaultdict
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from sitekeeper.errors import ConflictError, NotFoundError
from sitekeeper.models.events import WatchEvent, WatchEventType
from sitekeeper.models.website import ResourceIdentity, Website, WebsiteStatus, Workload

# ---------------------------------------------------------------------------
# Object factories
# ---------------------------------------------------------------------------


def website_dict(
    name: str = "blog",
    namespace: str = "default",
    *,
    domain: Any = "blog.example.org",
    replicas: Any = 2,
    image: Any = "nginx:1.25",
    port: Any = 8080,
    resource_version: str = "1",
    uid: str = "",
    annotations: dict[str, str] | None = None,
    status: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a raw Website object as the API server would return it."""
    raw: dict[str, Any] = {
        "apiVersion": "example.com/v1",
        "kind": "Website",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "resourceVersion": resource_version,
            "uid": uid,
            "annotations": dict(annotations or {}),
        },
        "spec": {"domain": domain, "replicas": replicas, "image": image, "port": port},
    }
    if status is not None:
        raw["status"] = status
    return raw


def make_website(**kwargs: Any) -> Website:
    """Build a typed Website with sensible defaults."""
    return Website.from_dict(website_dict(**kwargs))


async def eventually(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01) -> None:
    """Poll *predicate* until it returns True or fail after *timeout* seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError(f"condition not met within {timeout}s")
        await asyncio.sleep(interval)


# ---------------------------------------------------------------------------
# Fake resource store
# ---------------------------------------------------------------------------


class FakeStore:
    """In-memory ``ResourceStore`` with API-server-like versioning."""

    def __init__(self) -> None:
        self._raw: dict[ResourceIdentity, dict[str, Any]] = {}
        self._rv = 0
        self._history: list[WatchEvent] = []
        self._changed = asyncio.Event()
        self._generation = 0
        self._watch_error: Exception | None = None

        # Failures to inject, consumed one per call.
        self.failures: dict[str, list[Exception]] = defaultdict(list)
        # Optional gate that blocks list() until set.
        self.list_gate: asyncio.Event | None = None

        self.calls: dict[str, int] = defaultdict(int)

    # -- test helpers --------------------------------------------------

    def create(self, raw: dict[str, Any], *, emit: bool = True) -> Website:
        """Add a new object (as a user would)."""
        raw = copy.deepcopy(raw)
        meta = raw["metadata"]
        identity = ResourceIdentity(namespace=meta.get("namespace", ""), name=meta["name"])
        meta["resourceVersion"] = self._next_rv()
        self._raw[identity] = raw
        website = Website.from_dict(raw)
        if emit:
            self._record(WatchEventType.ADDED, raw)
        return website

    def set_spec(self, identity: ResourceIdentity, **changes: Any) -> Website:
        """Change spec fields of an existing object (as a user would)."""
        raw = self._raw[identity]
        raw["spec"].update(changes)
        raw["metadata"]["resourceVersion"] = self._next_rv()
        self._record(WatchEventType.MODIFIED, raw)
        return Website.from_dict(raw)

    def delete(self, identity: ResourceIdentity, *, emit: bool = True) -> None:
        """Remove an object.  With ``emit=False`` the watch never sees it."""
        raw = self._raw.pop(identity)
        raw["metadata"]["resourceVersion"] = self._next_rv()
        if emit:
            self._record(WatchEventType.DELETED, raw)

    def website(self, identity: ResourceIdentity) -> Website | None:
        """Read an object without counting a call or consuming failures."""
        raw = self._raw.get(identity)
        return Website.from_dict(raw) if raw is not None else None

    def resource_version_of(self, identity: ResourceIdentity) -> str:
        return self._raw[identity]["metadata"]["resourceVersion"]

    def close_watches(self) -> None:
        """End every open watch stream cleanly (server-side timeout)."""
        self._generation += 1
        self._changed.set()

    def fail_watch(self, exc: Exception) -> None:
        """Make the open watch stream raise *exc*."""
        self._watch_error = exc
        self._changed.set()

    # -- ResourceStore -------------------------------------------------

    async def list(self) -> tuple[list[Website], str]:
        self.calls["list"] += 1
        if self.list_gate is not None:
            await self.list_gate.wait()
        self._maybe_fail("list")
        return [Website.from_dict(raw) for raw in self._raw.values()], str(self._rv)

    async def watch(self, resource_version: str) -> AsyncIterator[WatchEvent]:
        self.calls["watch"] += 1
        generation = self._generation
        since = int(resource_version or 0)
        pos = 0
        while generation == self._generation:
            if self._watch_error is not None:
                exc, self._watch_error = self._watch_error, None
                raise exc
            if pos < len(self._history):
                event = self._history[pos]
                pos += 1
                if int(event.resource_version) > since:
                    yield event
                continue
            self._changed.clear()
            await self._changed.wait()

    async def get(self, identity: ResourceIdentity) -> Website:
        self.calls["get"] += 1
        self._maybe_fail("get")
        raw = self._raw.get(identity)
        if raw is None:
            raise NotFoundError(f"{identity} not found", 404)
        return Website.from_dict(raw)

    async def update(
        self,
        identity: ResourceIdentity,
        annotations: dict[str, str],
        expected_resource_version: str,
    ) -> Website:
        self.calls["update"] += 1
        self._maybe_fail("update")
        raw = self._checked(identity, expected_resource_version)
        raw["metadata"].setdefault("annotations", {}).update(annotations)
        raw["metadata"]["resourceVersion"] = self._next_rv()
        self._record(WatchEventType.MODIFIED, raw)
        return Website.from_dict(raw)

    async def update_status(
        self,
        identity: ResourceIdentity,
        status: WebsiteStatus,
        expected_resource_version: str,
    ) -> Website:
        self.calls["update_status"] += 1
        self._maybe_fail("update_status")
        raw = self._checked(identity, expected_resource_version)
        raw["status"] = status.to_dict()
        raw["metadata"]["resourceVersion"] = self._next_rv()
        self._record(WatchEventType.MODIFIED, raw)
        return Website.from_dict(raw)

    # -- internals -----------------------------------------------------

    def _checked(self, identity: ResourceIdentity, expected_resource_version: str) -> dict[str, Any]:
        raw = self._raw.get(identity)
        if raw is None:
            raise NotFoundError(f"{identity} not found", 404)
        current = raw["metadata"]["resourceVersion"]
        if expected_resource_version and expected_resource_version != current:
            raise ConflictError(f"{identity}: resource version {expected_resource_version} != {current}", 409)
        return raw

    def _maybe_fail(self, op: str) -> None:
        if self.failures[op]:
            raise self.failures[op].pop(0)

    def _next_rv(self) -> str:
        self._rv += 1
        return str(self._rv)

    def _record(self, event_type: WatchEventType, raw: dict[str, Any]) -> None:
        snapshot = copy.deepcopy(raw)
        self._history.append(
            WatchEvent(
                type=event_type,
                resource_version=snapshot["metadata"]["resourceVersion"],
                website=Website.from_dict(snapshot),
            )
        )
        self._changed.set()


# ---------------------------------------------------------------------------
# Fake workload backend
# ---------------------------------------------------------------------------


class FakeWorkloads:
    """In-memory ``WorkloadBackend``."""

    def __init__(self) -> None:
        self.workloads: dict[ResourceIdentity, Workload] = {}
        self.calls: dict[str, int] = defaultdict(int)
        self.failures: dict[str, list[Exception]] = defaultdict(list)
        self.auto_available = True
        self.gate: asyncio.Event | None = None
        self.blocked = 0

    def set_available(self, identity: ResourceIdentity, available: int) -> None:
        current = self.workloads[identity]
        self.workloads[identity] = Workload(current.replicas, available, current.image, current.port)

    async def observe(self, identity: ResourceIdentity) -> Workload | None:
        self.calls["observe"] += 1
        if self.gate is not None:
            gate = self.gate
            self.blocked += 1
            try:
                await gate.wait()
            finally:
                self.blocked -= 1
        self._maybe_fail("observe")
        return self.workloads.get(identity)

    async def create(self, website: Website) -> None:
        self.calls["create"] += 1
        self._maybe_fail("create")
        spec = website.checked_spec()
        available = spec.replicas if self.auto_available else 0
        self.workloads[website.identity] = Workload(spec.replicas, available, spec.image, spec.port)

    async def scale(self, identity: ResourceIdentity, replicas: int) -> None:
        self.calls["scale"] += 1
        self._maybe_fail("scale")
        current = self.workloads[identity]
        available = replicas if self.auto_available else min(current.available_replicas, replicas)
        self.workloads[identity] = Workload(replicas, available, current.image, current.port)

    async def rollout(self, identity: ResourceIdentity, image: str, port: int) -> None:
        self.calls["rollout"] += 1
        self._maybe_fail("rollout")
        current = self.workloads[identity]
        self.workloads[identity] = Workload(current.replicas, current.available_replicas, image, port)

    async def delete(self, identity: ResourceIdentity) -> bool:
        self.calls["delete"] += 1
        self._maybe_fail("delete")
        return self.workloads.pop(identity, None) is not None

    def _maybe_fail(self, op: str) -> None:
        if self.failures[op]:
            raise self.failures[op].pop(0)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def workloads() -> FakeWorkloads:
    return FakeWorkloads()


@pytest.fixture
def identity() -> ResourceIdentity:
    return ResourceIdentity(namespace="default", name="blog")
