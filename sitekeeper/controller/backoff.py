"""Per-identity exponential backoff for transient reconcile failures."""

from __future__ import annotations

from sitekeeper.models.website import ResourceIdentity


class ExponentialBackoff:
    """Delay ``base * 2**failures`` seconds, capped at ``maximum``.

    The failure count is tracked per identity and reset by ``forget`` after a
    fully successful reconcile, so one flapping object never slows others.
    """

    def __init__(self, base: float = 1.0, maximum: float = 300.0) -> None:
        if base <= 0:
            raise ValueError("base delay must be positive")
        if maximum < base:
            raise ValueError("maximum delay must be >= base delay")
        self._base = base
        self._max = maximum
        self._failures: dict[ResourceIdentity, int] = {}

    def next_delay(self, identity: ResourceIdentity) -> float:
        """Record one more failure for *identity* and return the delay to wait."""
        failures = self._failures.get(identity, 0)
        self._failures[identity] = failures + 1
        if failures >= 64:
            return self._max
        return min(self._base * (2**failures), self._max)

    def failures(self, identity: ResourceIdentity) -> int:
        return self._failures.get(identity, 0)

    def forget(self, identity: ResourceIdentity) -> None:
        """Reset the failure count for *identity*."""
        self._failures.pop(identity, None)
