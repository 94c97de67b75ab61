"""Unit tests for the Kubernetes resource store client.

The kubernetes-asyncio APIs are replaced by AsyncMocks; only the request
shapes and the error translation are under test.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest
from conftest import website_dict
from kubernetes_asyncio.client import ApiClient, ApiException, Configuration, CustomObjectsApi

from sitekeeper.errors import (
    ConflictError,
    NotFoundError,
    RejectedError,
    ResourceVersionExpiredError,
    StoreError,
    ThrottledError,
    TransientError,
)
from sitekeeper.models.config import WatchTarget
from sitekeeper.models.events import WatchEventType
from sitekeeper.models.website import Phase, ResourceIdentity, WebsiteStatus
from sitekeeper.store.kube import KubeResourceStore, _convert_watch_event, translate_api_error

_BLOG = ResourceIdentity("default", "blog")


def _api() -> MagicMock:
    api = MagicMock()
    api.list_namespaced_custom_object = AsyncMock()
    api.list_cluster_custom_object = AsyncMock()
    api.get_namespaced_custom_object = AsyncMock()
    api.patch_namespaced_custom_object = AsyncMock()
    api.patch_namespaced_custom_object_status = AsyncMock()
    return api


class _FakeStream:
    """Stands in for ``watch.Watch().stream(...)``."""

    def __init__(self, events: list[Any], error: Exception | None = None) -> None:
        self._events = events
        self._error = error
        self.kwargs: dict[str, Any] = {}

    def stream(self, func: Any, **kwargs: Any) -> _FakeStream:
        self.func = func
        self.kwargs = kwargs
        return self

    async def __aenter__(self) -> _FakeStream:
        return self

    async def __aexit__(self, *exc: object) -> None:
        return None

    def __aiter__(self) -> _FakeStream:
        return self

    async def __anext__(self) -> Any:
        if self._events:
            return self._events.pop(0)
        if self._error is not None:
            raise self._error
        raise StopAsyncIteration


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


class TestTranslateApiError:
    @pytest.mark.parametrize(
        "status,expected",
        [
            (404, NotFoundError),
            (409, ConflictError),
            (410, ResourceVersionExpiredError),
            (429, ThrottledError),
            (500, TransientError),
            (503, TransientError),
            (400, RejectedError),
            (403, RejectedError),
            (422, RejectedError),
        ],
    )
    def test_http_status_mapping(self, status: int, expected: type[StoreError]) -> None:
        err = translate_api_error(ApiException(status=status, reason="x"))
        assert type(err) is expected
        assert err.status == status

    def test_transient_subclasses(self) -> None:
        assert isinstance(translate_api_error(ApiException(status=409, reason="Conflict")), TransientError)
        assert isinstance(translate_api_error(ApiException(status=429, reason="Slow down")), TransientError)

    @pytest.mark.parametrize(
        "exc",
        [aiohttp.ClientConnectionError("refused"), asyncio.TimeoutError(), ConnectionResetError("reset")],
    )
    def test_network_errors_are_transient(self, exc: Exception) -> None:
        assert isinstance(translate_api_error(exc), TransientError)

    def test_store_errors_pass_through(self) -> None:
        original = ConflictError("409", 409)
        assert translate_api_error(original) is original

    def test_unknown_errors_are_generic(self) -> None:
        err = translate_api_error(RuntimeError("boom"))
        assert type(err) is StoreError


# ---------------------------------------------------------------------------
# Watch event conversion
# ---------------------------------------------------------------------------


class TestConvertWatchEvent:
    def test_modified_event(self) -> None:
        raw = website_dict(resource_version="12")
        event = _convert_watch_event({"type": "MODIFIED", "object": raw, "raw_object": raw})
        assert event is not None
        assert event.type == WatchEventType.MODIFIED
        assert event.resource_version == "12"
        assert event.website.identity == _BLOG

    def test_bookmark_carries_only_version(self) -> None:
        event = _convert_watch_event({"type": "BOOKMARK", "object": {"metadata": {"resourceVersion": "99"}}})
        assert event is not None
        assert event.website is None
        assert event.resource_version == "99"

    def test_gone_error_requests_relist(self) -> None:
        with pytest.raises(ResourceVersionExpiredError):
            _convert_watch_event({"type": "ERROR", "object": {"code": 410, "message": "too old"}})

    def test_other_error_is_transient(self) -> None:
        with pytest.raises(TransientError):
            _convert_watch_event({"type": "ERROR", "object": {"code": 500}})

    def test_malformed_object_is_dropped(self) -> None:
        assert _convert_watch_event({"type": "ADDED", "object": {"metadata": {}}}) is None

    def test_unknown_type_is_ignored(self) -> None:
        assert _convert_watch_event({"type": "SYNC", "object": website_dict()}) is None


# ---------------------------------------------------------------------------
# KubeResourceStore
# ---------------------------------------------------------------------------


class TestKubeResourceStore:
    async def test_list_cluster_wide(self) -> None:
        api = _api()
        api.list_cluster_custom_object.return_value = {
            "metadata": {"resourceVersion": "100"},
            "items": [website_dict("a"), website_dict("b"), {"metadata": {}}],
        }
        store = KubeResourceStore(api, WatchTarget())

        websites, rv = await store.list()

        assert rv == "100"
        assert [w.identity.name for w in websites] == ["a", "b"]
        api.list_cluster_custom_object.assert_awaited_once_with("example.com", "v1", "websites")

    async def test_list_single_namespace(self) -> None:
        api = _api()
        api.list_namespaced_custom_object.return_value = {"metadata": {"resourceVersion": "5"}, "items": []}
        store = KubeResourceStore(api, WatchTarget(namespace="web"))

        await store.list()

        api.list_namespaced_custom_object.assert_awaited_once_with("example.com", "v1", "web", "websites")

    async def test_list_failure_is_translated(self) -> None:
        api = _api()
        api.list_cluster_custom_object.side_effect = ApiException(status=503, reason="Unavailable")
        with pytest.raises(TransientError):
            await KubeResourceStore(api, WatchTarget()).list()

    async def test_get_missing_object(self) -> None:
        api = _api()
        api.get_namespaced_custom_object.side_effect = ApiException(status=404, reason="Not Found")
        with pytest.raises(NotFoundError):
            await KubeResourceStore(api, WatchTarget()).get(_BLOG)

    async def test_get_converts_object(self) -> None:
        api = _api()
        api.get_namespaced_custom_object.return_value = website_dict(resource_version="8")
        website = await KubeResourceStore(api, WatchTarget()).get(_BLOG)
        assert website.resource_version == "8"
        api.get_namespaced_custom_object.assert_awaited_once_with("example.com", "v1", "default", "websites", "blog")

    async def test_update_is_conditioned_on_resource_version(self) -> None:
        api = _api()
        api.patch_namespaced_custom_object.return_value = website_dict(resource_version="9")
        store = KubeResourceStore(api, WatchTarget())

        website = await store.update(_BLOG, {"k": "v"}, "8")

        assert website.resource_version == "9"
        body = api.patch_namespaced_custom_object.await_args.args[-1]
        assert body == {"metadata": {"annotations": {"k": "v"}, "resourceVersion": "8"}}

    async def test_update_status_conflict(self) -> None:
        api = _api()
        api.patch_namespaced_custom_object_status.side_effect = ApiException(status=409, reason="Conflict")
        store = KubeResourceStore(api, WatchTarget())
        with pytest.raises(ConflictError):
            await store.update_status(_BLOG, WebsiteStatus(1, Phase.PROGRESSING), "8")

    async def test_update_status_body(self) -> None:
        api = _api()
        api.patch_namespaced_custom_object_status.return_value = website_dict(resource_version="10")
        store = KubeResourceStore(api, WatchTarget())

        await store.update_status(_BLOG, WebsiteStatus(2, Phase.AVAILABLE), "9")

        body = api.patch_namespaced_custom_object_status.await_args.args[-1]
        assert body == {
            "metadata": {"resourceVersion": "9"},
            "status": {"availableReplicas": 2, "phase": "Available"},
        }

    async def test_watch_streams_converted_events(self) -> None:
        api = _api()
        events = [
            {"type": "ADDED", "object": website_dict("a", resource_version="11")},
            {"type": "BOOKMARK", "object": {"metadata": {"resourceVersion": "12"}}},
            {"type": "DELETED", "object": website_dict("a", resource_version="13")},
        ]
        fake = _FakeStream(events)
        store = KubeResourceStore(api, WatchTarget(namespace="web"), watch_timeout_seconds=60)

        with patch("sitekeeper.store.kube.watch.Watch", return_value=fake):
            received = [event async for event in store.watch("10")]

        assert [e.type for e in received] == [WatchEventType.ADDED, WatchEventType.BOOKMARK, WatchEventType.DELETED]
        assert fake.func is api.list_namespaced_custom_object
        assert fake.kwargs["resource_version"] == "10"
        assert fake.kwargs["timeout_seconds"] == 60
        assert fake.kwargs["namespace"] == "web"
        assert fake.kwargs["allow_watch_bookmarks"] is True

    async def test_watch_expired_version(self) -> None:
        fake = _FakeStream([{"type": "ERROR", "object": {"code": 410}}])
        store = KubeResourceStore(_api(), WatchTarget())
        with patch("sitekeeper.store.kube.watch.Watch", return_value=fake):
            with pytest.raises(ResourceVersionExpiredError):
                async for _ in store.watch("10"):
                    pass

    async def test_watch_connection_loss_is_transient(self) -> None:
        fake = _FakeStream([], error=aiohttp.ClientPayloadError("connection lost"))
        store = KubeResourceStore(_api(), WatchTarget())
        with patch("sitekeeper.store.kube.watch.Watch", return_value=fake):
            with pytest.raises(TransientError):
                async for _ in store.watch("10"):
                    pass


# ---------------------------------------------------------------------------
# Wire format through a real ApiClient
# ---------------------------------------------------------------------------


class TestPatchWireFormat:
    """Only the transport is replaced; header selection runs for real."""

    @pytest.fixture
    async def api_client(self) -> Any:
        async with ApiClient(Configuration(host="http://cluster.test")) as client:
            yield client

    @pytest.fixture
    def sent(self, api_client: Any, monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, str, str, Any]]:
        requests: list[tuple[str, str, str, Any]] = []

        async def request(method: str, url: str, headers: Any = None, body: Any = None, **_: Any) -> MagicMock:
            requests.append((method, url, headers["Content-Type"], body))
            response = MagicMock(status=200, data=json.dumps(website_dict(resource_version="11")).encode())
            response.getheader.return_value = "application/json"
            return response

        monkeypatch.setattr(api_client.rest_client, "request", request)
        return requests

    async def test_update_is_sent_as_merge_patch(self, api_client: Any, sent: list[Any]) -> None:
        store = KubeResourceStore(CustomObjectsApi(api_client), WatchTarget())

        website = await store.update(_BLOG, {"k": "v"}, "10")

        method, url, content_type, body = sent[0]
        assert method == "PATCH"
        assert url.endswith("/apis/example.com/v1/namespaces/default/websites/blog")
        assert content_type == "application/merge-patch+json"
        assert body["metadata"]["resourceVersion"] == "10"
        assert website.resource_version == "11"

    async def test_update_status_is_sent_as_merge_patch(self, api_client: Any, sent: list[Any]) -> None:
        store = KubeResourceStore(CustomObjectsApi(api_client), WatchTarget())

        await store.update_status(_BLOG, WebsiteStatus(2, Phase.AVAILABLE), "10")

        method, url, content_type, body = sent[0]
        assert method == "PATCH"
        assert url.endswith("/websites/blog/status")
        assert content_type == "application/merge-patch+json"
        assert body["status"] == {"availableReplicas": 2, "phase": "Available"}
