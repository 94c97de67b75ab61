"""Pure convergence planning: desired spec + observed state -> actions, status."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from sitekeeper.models.website import LastApplied, Phase, WebsiteSpec, WebsiteStatus, Workload


class ActionKind(StrEnum):
    """Kinds of workload mutations the reconciler can issue."""

    CREATE = "create"
    SCALE = "scale"
    ROLLOUT = "rollout"


@dataclass(frozen=True)
class Action:
    """One workload mutation."""

    kind: ActionKind
    replicas: int = 0
    image: str = ""
    port: int = 0


def plan_actions(spec: WebsiteSpec, workload: Workload | None, last_applied: LastApplied | None) -> list[Action]:
    """Return the actions that move *workload* to *spec*.

    Replica counts are compared against the provisioned workload.  Image and
    port are compared against the last-applied record, not against an
    assumption that an earlier run succeeded.  An unchanged spec on a
    converged workload yields no actions.
    """
    if workload is None:
        return [Action(ActionKind.CREATE, replicas=spec.replicas, image=spec.image, port=spec.port)]

    actions: list[Action] = []
    if workload.replicas != spec.replicas:
        actions.append(Action(ActionKind.SCALE, replicas=spec.replicas))
    if last_applied != LastApplied(image=spec.image, port=spec.port):
        actions.append(Action(ActionKind.ROLLOUT, image=spec.image, port=spec.port))
    return actions


def compute_status(spec: WebsiteSpec, available_replicas: int, failed: bool = False) -> WebsiteStatus:
    """Derive the status to publish.

    Failed wins over everything.  Otherwise the phase is Available once the
    available count matches the desired count, Pending while nothing is
    available yet, and Progressing in between.
    """
    available = max(available_replicas, 0)
    if failed:
        return WebsiteStatus(available_replicas=available, phase=Phase.FAILED)
    if available == spec.replicas:
        return WebsiteStatus(available_replicas=available, phase=Phase.AVAILABLE)
    if available == 0:
        return WebsiteStatus(available_replicas=available, phase=Phase.PENDING)
    return WebsiteStatus(available_replicas=available, phase=Phase.PROGRESSING)
