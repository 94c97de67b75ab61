"""Website resource data structures.

Raw objects from the store are converted exactly once, at the client
boundary, into the typed ``Website`` below.  Everything downstream of the
store client works with these types only.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from sitekeeper.errors import InvalidSpecError, MalformedObjectError

LAST_APPLIED_ANNOTATION = "sitekeeper.example.com/last-applied"

_MIN_PORT = 1
_MAX_PORT = 65535


class Phase(StrEnum):
    """Coarse lifecycle state reported in a Website's status."""

    PENDING = "Pending"
    PROGRESSING = "Progressing"
    AVAILABLE = "Available"
    FAILED = "Failed"


@dataclass(frozen=True, order=True)
class ResourceIdentity:
    """Unique key of one Website object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name

    @classmethod
    def parse(cls, key: str) -> ResourceIdentity:
        """Parse ``namespace/name`` (or a bare cluster-scoped ``name``)."""
        namespace, sep, name = key.partition("/")
        if not sep:
            return cls(namespace="", name=namespace)
        if not name or "/" in name:
            raise ValueError(f"Invalid resource key: {key!r}")
        return cls(namespace=namespace, name=name)


@dataclass(frozen=True)
class WebsiteSpec:
    """Desired state, set by users.  Never mutated by the controller."""

    domain: str
    replicas: int
    image: str
    port: int

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> WebsiteSpec:
        """Build a spec from the stored camelCase mapping.

        Raises:
            InvalidSpecError: a field has the wrong type.
        """
        return cls(
            domain=_as_str(raw, "domain"),
            replicas=_as_int(raw, "replicas"),
            image=_as_str(raw, "image"),
            port=_as_int(raw, "port"),
        )

    def validate(self) -> None:
        """Raise InvalidSpecError if any field is outside its allowed range."""
        if not self.domain.strip():
            raise InvalidSpecError("spec.domain must not be empty")
        if self.replicas < 0:
            raise InvalidSpecError(f"spec.replicas must be >= 0, got {self.replicas}")
        if not self.image.strip():
            raise InvalidSpecError("spec.image must not be empty")
        if not _MIN_PORT <= self.port <= _MAX_PORT:
            raise InvalidSpecError(f"spec.port must be in [{_MIN_PORT}, {_MAX_PORT}], got {self.port}")

    def to_dict(self) -> dict[str, Any]:
        return {"domain": self.domain, "replicas": self.replicas, "image": self.image, "port": self.port}


@dataclass(frozen=True)
class WebsiteStatus:
    """Observed state.  Owned exclusively by the controller."""

    available_replicas: int = 0
    phase: Phase = Phase.PENDING

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> WebsiteStatus | None:
        """Parse a stored status; returns None when the object has none yet."""
        if not raw:
            return None
        try:
            available = int(raw.get("availableReplicas", 0) or 0)
        except (TypeError, ValueError):
            available = 0
        try:
            phase = Phase(raw.get("phase", Phase.PENDING.value))
        except ValueError:
            # Written by someone else; overwritten on the next reconcile.
            phase = Phase.PENDING
        return cls(available_replicas=available, phase=phase)

    def to_dict(self) -> dict[str, Any]:
        return {"availableReplicas": self.available_replicas, "phase": self.phase.value}


@dataclass(frozen=True)
class LastApplied:
    """Controller's record of the image and port last rolled out."""

    image: str
    port: int

    @classmethod
    def from_annotations(cls, annotations: dict[str, str]) -> LastApplied | None:
        raw = annotations.get(LAST_APPLIED_ANNOTATION)
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return cls(image=str(data["image"]), port=int(data["port"]))
        except (ValueError, KeyError, TypeError):
            return None

    def to_annotation(self) -> str:
        return json.dumps({"image": self.image, "port": self.port}, sort_keys=True, separators=(",", ":"))


@dataclass(frozen=True)
class Website:
    """Typed view of one Website object as held by the store.

    ``spec`` is None when the stored spec could not be parsed; the reason is
    kept in ``spec_error`` so the reconciler can report the object as failed.
    """

    identity: ResourceIdentity
    resource_version: str
    spec: WebsiteSpec | None
    status: WebsiteStatus | None = None
    uid: str = ""
    annotations: dict[str, str] = field(default_factory=dict)
    spec_error: str = ""

    @property
    def last_applied(self) -> LastApplied | None:
        return LastApplied.from_annotations(self.annotations)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Website:
        """Convert a raw store object.

        Raises:
            MalformedObjectError: metadata or metadata.name is missing.
        """
        metadata = raw.get("metadata")
        if not isinstance(metadata, dict) or not metadata.get("name"):
            raise MalformedObjectError("object has no metadata.name")

        annotations_raw = metadata.get("annotations") or {}
        annotations = {str(k): str(v) for k, v in annotations_raw.items()} if isinstance(annotations_raw, dict) else {}

        spec: WebsiteSpec | None = None
        spec_error = ""
        spec_raw = raw.get("spec")
        if not isinstance(spec_raw, dict):
            spec_error = "spec is missing"
        else:
            try:
                spec = WebsiteSpec.from_dict(spec_raw)
            except InvalidSpecError as exc:
                spec_error = str(exc)

        status_raw = raw.get("status")
        return cls(
            identity=ResourceIdentity(namespace=str(metadata.get("namespace") or ""), name=str(metadata["name"])),
            resource_version=str(metadata.get("resourceVersion") or ""),
            spec=spec,
            status=WebsiteStatus.from_dict(status_raw if isinstance(status_raw, dict) else None),
            uid=str(metadata.get("uid") or ""),
            annotations=annotations,
            spec_error=spec_error,
        )

    def checked_spec(self) -> WebsiteSpec:
        """Return the parsed and validated spec.

        Raises:
            InvalidSpecError: the spec is unparseable or out of range.
        """
        if self.spec is None:
            raise InvalidSpecError(self.spec_error or "spec is missing")
        self.spec.validate()
        return self.spec


@dataclass(frozen=True)
class CachedObject:
    """The event cache's last-known snapshot of one Website."""

    identity: ResourceIdentity
    spec: WebsiteSpec | None
    status: WebsiteStatus | None
    resource_version: str
    website: Website

    @classmethod
    def from_website(cls, website: Website) -> CachedObject:
        return cls(
            identity=website.identity,
            spec=website.spec,
            status=website.status,
            resource_version=website.resource_version,
            website=website,
        )


@dataclass(frozen=True)
class Workload:
    """Provisioned external resources for one Website, as observed."""

    replicas: int
    available_replicas: int
    image: str
    port: int


def _as_str(raw: dict[str, Any], key: str) -> str:
    value = raw.get(key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InvalidSpecError(f"spec.{key} must be a string, got {type(value).__name__}")
    return value


def _as_int(raw: dict[str, Any], key: str) -> int:
    value = raw.get(key, 0)
    if value is None:
        return 0
    # bool is an int subclass; reject it explicitly.
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidSpecError(f"spec.{key} must be an integer, got {type(value).__name__}")
    return value
