"""Reconcile outcome."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconcile pass.

    ``requeue_after`` is in seconds and only meaningful when ``requeue`` is
    True.  ``error`` carries the failure that caused a retry or a terminal
    phase, for logging.
    """

    requeue: bool = False
    requeue_after: float = 0.0
    error: Exception | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None
