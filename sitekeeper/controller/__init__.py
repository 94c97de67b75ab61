"""Controller package: delta detector, work queue, reconciler, worker pool.

Submodules
----------
delta      -- DeltaDetector: cache events -> work-queue identities.
queue      -- WorkQueue: deduplicating, delayed-retry identity queue.
backoff    -- ExponentialBackoff: per-identity retry delays.
planner    -- plan_actions / compute_status: pure convergence logic.
status     -- StatusReporter: conditional status writes.
reconciler -- Reconciler: one convergence pass per identity.
manager    -- Controller: cache + detector + worker pool lifecycle.
"""

from sitekeeper.controller.backoff import ExponentialBackoff
from sitekeeper.controller.delta import DeltaDetector
from sitekeeper.controller.manager import Controller
from sitekeeper.controller.queue import QueueShutDownError, WorkQueue
from sitekeeper.controller.reconciler import Reconciler
from sitekeeper.controller.status import StatusReporter

__all__ = [
    "Controller",
    "DeltaDetector",
    "ExponentialBackoff",
    "QueueShutDownError",
    "Reconciler",
    "StatusReporter",
    "WorkQueue",
]
