"""Kubernetes-backed resource store using kubernetes-asyncio.

Custom objects come back from ``CustomObjectsApi`` as plain dicts; they are
converted to ``Website`` here and nowhere else.  Objects that cannot be
converted are logged and dropped.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import aiohttp
from kubernetes_asyncio import watch
from kubernetes_asyncio.client import ApiException, CustomObjectsApi

from sitekeeper.errors import (
    ConflictError,
    MalformedObjectError,
    NotFoundError,
    RejectedError,
    ResourceVersionExpiredError,
    StoreError,
    ThrottledError,
    TransientError,
)
from sitekeeper.models.config import WatchTarget
from sitekeeper.models.events import WatchEvent, WatchEventType
from sitekeeper.models.website import ResourceIdentity, Website, WebsiteStatus
from sitekeeper.observability.logging import get_logger

_HTTP_NOT_FOUND = 404
_HTTP_CONFLICT = 409
_HTTP_GONE = 410
_HTTP_TOO_MANY_REQUESTS = 429
_HTTP_SERVER_ERROR = 500
# CustomObjectsApi would otherwise label a dict body as a JSON Patch.
_MERGE_PATCH = "application/merge-patch+json"

_log = get_logger("store.kube")


def translate_api_error(exc: BaseException) -> StoreError:
    """Map a kubernetes-asyncio / aiohttp failure onto the store error taxonomy."""
    if isinstance(exc, StoreError):
        return exc
    if isinstance(exc, ApiException):
        status = int(exc.status or 0)
        message = f"{status} {exc.reason}"
        if status == _HTTP_NOT_FOUND:
            return NotFoundError(message, status)
        if status == _HTTP_CONFLICT:
            return ConflictError(message, status)
        if status == _HTTP_GONE:
            return ResourceVersionExpiredError(message, status)
        if status == _HTTP_TOO_MANY_REQUESTS:
            return ThrottledError(message, status)
        if status == 0 or status >= _HTTP_SERVER_ERROR:
            return TransientError(message, status)
        return RejectedError(message, status)
    if isinstance(exc, aiohttp.ClientError | asyncio.TimeoutError | ConnectionError):
        return TransientError(f"{type(exc).__name__}: {exc}")
    return StoreError(f"{type(exc).__name__}: {exc}")


class KubeResourceStore:
    """``ResourceStore`` over a custom resource served by the Kubernetes API."""

    def __init__(
        self,
        api: CustomObjectsApi,
        target: WatchTarget,
        watch_timeout_seconds: int = 300,
    ) -> None:
        self._api = api
        self._target = target
        self._watch_timeout = watch_timeout_seconds

    # ------------------------------------------------------------------
    # Read interface
    # ------------------------------------------------------------------

    async def list(self) -> tuple[list[Website], str]:
        try:
            if self._target.namespace:
                result = await self._api.list_namespaced_custom_object(
                    self._target.group,
                    self._target.version,
                    self._target.namespace,
                    self._target.plural,
                )
            else:
                result = await self._api.list_cluster_custom_object(
                    self._target.group,
                    self._target.version,
                    self._target.plural,
                )
        except Exception as exc:
            raise translate_api_error(exc) from exc

        items = result.get("items", []) if isinstance(result, dict) else []
        metadata = result.get("metadata", {}) if isinstance(result, dict) else {}
        websites = [w for w in (_convert(item) for item in items) if w is not None]
        return websites, str(metadata.get("resourceVersion") or "")

    async def watch(self, resource_version: str) -> AsyncIterator[WatchEvent]:
        list_func = (
            self._api.list_namespaced_custom_object if self._target.namespace else self._api.list_cluster_custom_object
        )
        kwargs: dict[str, Any] = {
            "group": self._target.group,
            "version": self._target.version,
            "plural": self._target.plural,
            "resource_version": resource_version,
            "timeout_seconds": self._watch_timeout,
            "allow_watch_bookmarks": True,
        }
        if self._target.namespace:
            kwargs["namespace"] = self._target.namespace

        try:
            async with watch.Watch().stream(list_func, **kwargs) as stream:
                async for event in stream:
                    converted = _convert_watch_event(event)
                    if converted is not None:
                        yield converted
        except StoreError:
            raise
        except Exception as exc:
            raise translate_api_error(exc) from exc

    async def get(self, identity: ResourceIdentity) -> Website:
        try:
            raw = await self._api.get_namespaced_custom_object(
                self._target.group,
                self._target.version,
                identity.namespace,
                self._target.plural,
                identity.name,
            )
        except Exception as exc:
            raise translate_api_error(exc) from exc
        return Website.from_dict(raw)

    # ------------------------------------------------------------------
    # Write interface
    # ------------------------------------------------------------------

    async def update(
        self,
        identity: ResourceIdentity,
        annotations: dict[str, str],
        expected_resource_version: str,
    ) -> Website:
        body = {"metadata": {"annotations": annotations, "resourceVersion": expected_resource_version}}
        try:
            raw = await self._api.patch_namespaced_custom_object(
                self._target.group,
                self._target.version,
                identity.namespace,
                self._target.plural,
                identity.name,
                body,
                _content_type=_MERGE_PATCH,
            )
        except Exception as exc:
            raise translate_api_error(exc) from exc
        return Website.from_dict(raw)

    async def update_status(
        self,
        identity: ResourceIdentity,
        status: WebsiteStatus,
        expected_resource_version: str,
    ) -> Website:
        # metadata.resourceVersion in a merge patch acts as a precondition.
        body = {"metadata": {"resourceVersion": expected_resource_version}, "status": status.to_dict()}
        try:
            raw = await self._api.patch_namespaced_custom_object_status(
                self._target.group,
                self._target.version,
                identity.namespace,
                self._target.plural,
                identity.name,
                body,
                _content_type=_MERGE_PATCH,
            )
        except Exception as exc:
            raise translate_api_error(exc) from exc
        return Website.from_dict(raw)


def _convert(raw: Any) -> Website | None:
    if not isinstance(raw, dict):
        return None
    try:
        return Website.from_dict(raw)
    except MalformedObjectError as exc:
        _log.warning("store_object_dropped", error=str(exc))
        return None


def _convert_watch_event(event: Any) -> WatchEvent | None:
    """Convert one raw watch event dict; returns None for unusable events."""
    if not isinstance(event, dict):
        return None
    raw_type = str(event.get("type", ""))
    raw_obj = event.get("raw_object") or event.get("object")

    if raw_type == "ERROR":
        code = raw_obj.get("code") if isinstance(raw_obj, dict) else None
        if code == _HTTP_GONE:
            raise ResourceVersionExpiredError("watch resource version expired", _HTTP_GONE)
        raise TransientError(f"watch error event: {raw_obj}", code if isinstance(code, int) else None)

    try:
        event_type = WatchEventType(raw_type)
    except ValueError:
        _log.debug("store_watch_event_ignored", type=raw_type)
        return None

    metadata = raw_obj.get("metadata", {}) if isinstance(raw_obj, dict) else {}
    rv = str(metadata.get("resourceVersion") or "") if isinstance(metadata, dict) else ""
    if event_type == WatchEventType.BOOKMARK:
        return WatchEvent(type=event_type, resource_version=rv)

    website = _convert(raw_obj)
    if website is None:
        return None
    return WatchEvent(type=event_type, resource_version=rv, website=website)
