"""Kubernetes workload backend: one Deployment and one Service per Website."""

from __future__ import annotations

from typing import Any

from kubernetes_asyncio.client import AppsV1Api, CoreV1Api

from sitekeeper.errors import ConflictError, NotFoundError
from sitekeeper.models.config import WatchTarget
from sitekeeper.models.website import ResourceIdentity, Website, Workload
from sitekeeper.observability.logging import get_logger
from sitekeeper.store.kube import translate_api_error

MANAGED_BY = "sitekeeper"
DOMAIN_ANNOTATION = "sitekeeper.example.com/domain"
_CONTAINER_NAME = "website"
_PORT_NAME = "http"

_log = get_logger("workload.kube")


class KubeWorkloadBackend:
    """``WorkloadBackend`` that provisions a Deployment and a ClusterIP Service.

    Both objects share the Website's name and namespace.  When the Website's
    uid is known an owner reference is set so the API server garbage-collects
    them even if the controller misses the deletion.
    """

    def __init__(self, apps_api: AppsV1Api, core_api: CoreV1Api, target: WatchTarget) -> None:
        self._apps = apps_api
        self._core = core_api
        self._target = target

    async def observe(self, identity: ResourceIdentity) -> Workload | None:
        try:
            deployment = await self._apps.read_namespaced_deployment(identity.name, identity.namespace)
        except Exception as exc:
            err = translate_api_error(exc)
            if isinstance(err, NotFoundError):
                return None
            raise err from exc
        workload = _workload_from_deployment(deployment)
        await self._ensure_service(identity, deployment, workload.port)
        return workload

    async def create(self, website: Website) -> None:
        spec = website.checked_spec()
        identity = website.identity
        try:
            await self._apps.create_namespaced_deployment(identity.namespace, self._deployment_body(website))
        except Exception as exc:
            raise translate_api_error(exc) from exc

        try:
            await self._core.create_namespaced_service(
                identity.namespace,
                _service_body(identity, spec.port, self._metadata(website)),
            )
        except Exception as exc:
            err = translate_api_error(exc)
            if not isinstance(err, ConflictError):
                raise err from exc
            # Left over from an earlier partial create.
            await self._patch_service_port(identity, spec.port)
        _log.info("workload_created", website=str(identity), replicas=spec.replicas, image=spec.image)

    async def scale(self, identity: ResourceIdentity, replicas: int) -> None:
        try:
            await self._apps.patch_namespaced_deployment(
                identity.name,
                identity.namespace,
                {"spec": {"replicas": replicas}},
            )
        except Exception as exc:
            raise translate_api_error(exc) from exc
        _log.info("workload_scaled", website=str(identity), replicas=replicas)

    async def rollout(self, identity: ResourceIdentity, image: str, port: int) -> None:
        # JSON patch: a strategic merge would append to the ports list.
        patch = [
            {"op": "replace", "path": "/spec/template/spec/containers/0/image", "value": image},
            {
                "op": "replace",
                "path": "/spec/template/spec/containers/0/ports",
                "value": [{"name": _PORT_NAME, "containerPort": port}],
            },
        ]
        try:
            await self._apps.patch_namespaced_deployment(identity.name, identity.namespace, patch)
        except Exception as exc:
            raise translate_api_error(exc) from exc
        await self._patch_service_port(identity, port)
        _log.info("workload_rolled_out", website=str(identity), image=image, port=port)

    async def delete(self, identity: ResourceIdentity) -> bool:
        deleted = False
        for delete_fn in (self._apps.delete_namespaced_deployment, self._core.delete_namespaced_service):
            try:
                await delete_fn(identity.name, identity.namespace)
                deleted = True
            except Exception as exc:
                err = translate_api_error(exc)
                if not isinstance(err, NotFoundError):
                    raise err from exc
        if deleted:
            _log.info("workload_deleted", website=str(identity))
        return deleted

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _ensure_service(self, identity: ResourceIdentity, deployment: Any, port: int) -> None:
        """Recreate the Service of an existing Deployment if it has gone missing.

        Covers a create that failed between the two objects and a Service
        deleted out of band.  The replacement copies the Deployment's owner
        references and domain annotation.
        """
        if port <= 0:
            return
        try:
            await self._core.read_namespaced_service(identity.name, identity.namespace)
            return
        except Exception as exc:
            err = translate_api_error(exc)
            if not isinstance(err, NotFoundError):
                raise err from exc

        body = _service_body(identity, port, _metadata_from_deployment(identity, deployment))
        try:
            await self._core.create_namespaced_service(identity.namespace, body)
        except Exception as exc:
            err = translate_api_error(exc)
            if not isinstance(err, ConflictError):
                raise err from exc
        _log.warning("service_recreated", website=str(identity), port=port)

    async def _patch_service_port(self, identity: ResourceIdentity, port: int) -> None:
        patch = [
            {
                "op": "replace",
                "path": "/spec/ports",
                "value": [{"name": _PORT_NAME, "port": port, "targetPort": port}],
            }
        ]
        try:
            await self._core.patch_namespaced_service(identity.name, identity.namespace, patch)
        except Exception as exc:
            raise translate_api_error(exc) from exc

    def _metadata(self, website: Website) -> dict[str, Any]:
        spec = website.checked_spec()
        metadata: dict[str, Any] = {
            "name": website.identity.name,
            "namespace": website.identity.namespace,
            "labels": _labels(website.identity),
            "annotations": {DOMAIN_ANNOTATION: spec.domain},
        }
        if website.uid:
            metadata["ownerReferences"] = [
                {
                    "apiVersion": f"{self._target.group}/{self._target.version}",
                    "kind": "Website",
                    "name": website.identity.name,
                    "uid": website.uid,
                    "controller": True,
                    "blockOwnerDeletion": True,
                }
            ]
        return metadata

    def _deployment_body(self, website: Website) -> dict[str, Any]:
        spec = website.checked_spec()
        labels = _labels(website.identity)
        return {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": self._metadata(website),
            "spec": {
                "replicas": spec.replicas,
                "selector": {"matchLabels": {"app.kubernetes.io/name": website.identity.name}},
                "template": {
                    "metadata": {"labels": labels},
                    "spec": {
                        "containers": [
                            {
                                "name": _CONTAINER_NAME,
                                "image": spec.image,
                                "ports": [{"name": _PORT_NAME, "containerPort": spec.port}],
                            }
                        ],
                    },
                },
            },
        }


def _service_body(identity: ResourceIdentity, port: int, metadata: dict[str, Any]) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": metadata,
        "spec": {
            "type": "ClusterIP",
            "selector": {"app.kubernetes.io/name": identity.name},
            "ports": [{"name": _PORT_NAME, "port": port, "targetPort": port}],
        },
    }


def _metadata_from_deployment(identity: ResourceIdentity, deployment: Any) -> dict[str, Any]:
    source = getattr(deployment, "metadata", None)
    metadata: dict[str, Any] = {
        "name": identity.name,
        "namespace": identity.namespace,
        "labels": _labels(identity),
    }
    annotations = getattr(source, "annotations", None) or {}
    if DOMAIN_ANNOTATION in annotations:
        metadata["annotations"] = {DOMAIN_ANNOTATION: annotations[DOMAIN_ANNOTATION]}
    owners = getattr(source, "owner_references", None) or []
    if owners:
        metadata["ownerReferences"] = [
            {
                "apiVersion": owner.api_version,
                "kind": owner.kind,
                "name": owner.name,
                "uid": owner.uid,
                "controller": owner.controller,
                "blockOwnerDeletion": owner.block_owner_deletion,
            }
            for owner in owners
        ]
    return metadata


def _labels(identity: ResourceIdentity) -> dict[str, str]:
    return {
        "app.kubernetes.io/name": identity.name,
        "app.kubernetes.io/managed-by": MANAGED_BY,
    }


def _workload_from_deployment(deployment: Any) -> Workload:
    """Extract the provisioned state from a V1Deployment."""
    spec = getattr(deployment, "spec", None)
    status = getattr(deployment, "status", None)
    replicas = int(getattr(spec, "replicas", 0) or 0)
    available = int(getattr(status, "available_replicas", 0) or 0)

    image = ""
    port = 0
    template_spec = getattr(getattr(spec, "template", None), "spec", None)
    containers = getattr(template_spec, "containers", None) or []
    if containers:
        container = containers[0]
        image = getattr(container, "image", "") or ""
        ports = getattr(container, "ports", None) or []
        if ports:
            port = int(getattr(ports[0], "container_port", 0) or 0)
    return Workload(replicas=replicas, available_replicas=available, image=image, port=port)
