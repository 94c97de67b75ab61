"""Reconciler: one idempotent convergence pass per identity.

Each pass re-reads the Website from the store (never from the cache),
observes the provisioned workload, applies the planned actions, records the
last-applied image/port on the Website and publishes status.

Error classes
-------------
Transient (network, timeouts, throttling, version conflicts) -> requeue with
per-identity exponential backoff.  The next attempt starts from a fresh read.

Terminal (invalid spec, request rejected by the API server) -> phase Failed,
no requeue.  The next external update of the object triggers a new pass.

A missing object means it was deleted: its workload is released and the
identity is forgotten.
"""

from __future__ import annotations

import time

from sitekeeper.controller.backoff import ExponentialBackoff
from sitekeeper.controller.planner import Action, ActionKind, compute_status, plan_actions
from sitekeeper.controller.status import StatusReporter
from sitekeeper.errors import (
    InvalidSpecError,
    NotFoundError,
    RejectedError,
    StoreError,
    TerminalError,
    TransientError,
)
from sitekeeper.models.reconcile import ReconcileResult
from sitekeeper.models.website import (
    LAST_APPLIED_ANNOTATION,
    LastApplied,
    Phase,
    ResourceIdentity,
    Website,
    WebsiteSpec,
    WebsiteStatus,
    Workload,
)
from sitekeeper.observability.logging import get_logger
from sitekeeper.observability.metrics import (
    reconcile_actions_total,
    reconcile_duration_seconds,
    reconcile_total,
)
from sitekeeper.store.client import ResourceStore
from sitekeeper.workload.backend import WorkloadBackend

_CONVERGING_PHASES = frozenset({Phase.PENDING, Phase.PROGRESSING})


class Reconciler:
    """Drives one Website toward its spec.

    Args:
        store:                 Resource store client (authoritative reads and writes).
        workloads:             Backend provisioning the Website's replicas.
        reporter:              Status reporter; defaults to one over *store*.
        backoff:               Per-identity backoff for transient failures.
        progress_poll_seconds: Requeue delay while replicas are still coming up.
    """

    def __init__(
        self,
        store: ResourceStore,
        workloads: WorkloadBackend,
        reporter: StatusReporter | None = None,
        backoff: ExponentialBackoff | None = None,
        progress_poll_seconds: float = 5.0,
    ) -> None:
        self._log = get_logger("controller.reconciler")
        self._store = store
        self._workloads = workloads
        self._reporter = reporter or StatusReporter(store)
        self._backoff = backoff or ExponentialBackoff()
        self._progress_poll = progress_poll_seconds

    @property
    def backoff(self) -> ExponentialBackoff:
        return self._backoff

    async def reconcile(self, identity: ResourceIdentity) -> ReconcileResult:
        """Run one convergence pass for *identity*."""
        started = time.monotonic()
        result = await self._reconcile(identity)
        reconcile_duration_seconds.observe(time.monotonic() - started)
        reconcile_total.labels(outcome=_outcome(result)).inc()
        return result

    # ------------------------------------------------------------------
    # Pass stages
    # ------------------------------------------------------------------

    async def _reconcile(self, identity: ResourceIdentity) -> ReconcileResult:
        try:
            website = await self._store.get(identity)
        except NotFoundError:
            return await self._cleanup(identity)
        except TransientError as exc:
            return self._retry(identity, exc, stage="fetch")

        try:
            spec = website.checked_spec()
        except InvalidSpecError as exc:
            available = website.status.available_replicas if website.status else 0
            return await self._fail(website, available, exc)

        workload: Workload | None = None
        try:
            workload = await self._workloads.observe(identity)
            website = await self._converge(website, spec, workload)
        except (TransientError, NotFoundError) as exc:
            # NotFound: the object or its workload vanished mid-pass.
            return self._retry(identity, exc, stage="apply")
        except RejectedError as exc:
            available = workload.available_replicas if workload else 0
            return await self._fail(website, available, exc)

        status = compute_status(spec, workload.available_replicas if workload else 0)
        try:
            await self._reporter.publish_status(website, status)
        except TransientError as exc:
            return self._retry(identity, exc, stage="status")
        except RejectedError as exc:
            self._log.error("status_rejected", website=str(identity), error=str(exc))
            self._backoff.forget(identity)
            return ReconcileResult(error=exc)
        except StoreError as exc:
            # NotFound here means the object vanished mid-pass; the retry observes the deletion.
            return self._retry(identity, exc, stage="status")

        self._backoff.forget(identity)
        self._log.info(
            "reconcile_succeeded",
            website=str(identity),
            phase=status.phase.value,
            available_replicas=status.available_replicas,
            desired_replicas=spec.replicas,
        )
        if status.phase in _CONVERGING_PHASES:
            return ReconcileResult(requeue=True, requeue_after=self._progress_poll)
        return ReconcileResult()

    async def _converge(self, website: Website, spec: WebsiteSpec, workload: Workload | None) -> Website:
        """Apply planned actions; return the Website to condition the status write on."""
        identity = website.identity
        actions = plan_actions(spec, workload, website.last_applied)
        for action in actions:
            await self._apply(website, action)
            reconcile_actions_total.labels(action=action.kind.value).inc()
            self._log.info(
                "reconcile_action_applied",
                website=str(identity),
                action=action.kind.value,
                replicas=action.replicas,
                image=action.image,
                port=action.port,
            )

        desired = LastApplied(image=spec.image, port=spec.port)
        if website.last_applied != desired:
            website = await self._store.update(
                identity,
                {LAST_APPLIED_ANNOTATION: desired.to_annotation()},
                website.resource_version,
            )
        return website

    async def _apply(self, website: Website, action: Action) -> None:
        identity = website.identity
        if action.kind == ActionKind.CREATE:
            await self._workloads.create(website)
        elif action.kind == ActionKind.SCALE:
            await self._workloads.scale(identity, action.replicas)
        elif action.kind == ActionKind.ROLLOUT:
            await self._workloads.rollout(identity, action.image, action.port)

    async def _cleanup(self, identity: ResourceIdentity) -> ReconcileResult:
        try:
            released = await self._workloads.delete(identity)
        except TransientError as exc:
            return self._retry(identity, exc, stage="cleanup")
        except RejectedError as exc:
            self._log.error("cleanup_rejected", website=str(identity), error=str(exc))
            self._backoff.forget(identity)
            return ReconcileResult(error=exc)
        self._backoff.forget(identity)
        self._log.info("website_cleaned_up", website=str(identity), released=released)
        return ReconcileResult()

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    async def _fail(
        self,
        website: Website,
        available_replicas: int,
        cause: TerminalError | RejectedError,
    ) -> ReconcileResult:
        """Record a terminal failure on the object's status; never requeue."""
        identity = website.identity
        self._backoff.forget(identity)
        self._log.warning("reconcile_failed_terminal", website=str(identity), error=str(cause))
        status = WebsiteStatus(available_replicas=max(available_replicas, 0), phase=Phase.FAILED)
        try:
            await self._reporter.publish_status(website, status)
        except TransientError as exc:
            return self._retry(identity, exc, stage="status")
        except StoreError as exc:
            self._log.error("status_write_failed", website=str(identity), error=str(exc))
        return ReconcileResult(error=cause)

    def _retry(self, identity: ResourceIdentity, exc: StoreError, stage: str) -> ReconcileResult:
        delay = self._backoff.next_delay(identity)
        self._log.warning(
            "reconcile_retry",
            website=str(identity),
            stage=stage,
            error=str(exc),
            error_type=type(exc).__name__,
            failures=self._backoff.failures(identity),
            requeue_after=delay,
        )
        return ReconcileResult(requeue=True, requeue_after=delay, error=exc)


def _outcome(result: ReconcileResult) -> str:
    if result.error is None:
        return "progressing" if result.requeue else "success"
    return "retry" if result.requeue else "failed"
