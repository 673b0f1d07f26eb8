"""
Resource models - VirtualService, Mesh and the remote control-plane objects.

Local objects convert to and from Kubernetes-style manifests
(apiVersion/kind/metadata/spec/status). Remote objects are plain values
returned by the control-plane client.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

API_VERSION = "appmesh.k8s.aws/v1alpha1"

KIND_MESH = "Mesh"
KIND_VIRTUAL_SERVICE = "VirtualService"
KIND_VIRTUAL_NODE = "VirtualNode"
KIND_VIRTUAL_ROUTER = "VirtualRouter"


class ConditionStatus(str, Enum):
    """Tri-state value of a status condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ConditionType(str, Enum):
    """Condition types written on a VirtualService."""

    VIRTUAL_SERVICE_ACTIVE = "VirtualServiceActive"
    VIRTUAL_ROUTER_ACTIVE = "VirtualRouterActive"
    ROUTES_ACTIVE = "RoutesActive"


MESH_ACTIVE = "MeshActive"


class RemoteStatus(Enum):
    """Lifecycle state reported by the remote control plane."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    DELETED = "DELETED"

    @classmethod
    def parse(cls, value: Optional[str]) -> "RemoteStatus":
        """Parse an API status string; anything unrecognised is INACTIVE."""
        try:
            return cls((value or "").upper())
        except ValueError:
            return cls.INACTIVE


_CONDITION_FOR_REMOTE_STATUS = {
    RemoteStatus.ACTIVE: ConditionStatus.TRUE,
    RemoteStatus.INACTIVE: ConditionStatus.FALSE,
    RemoteStatus.DELETED: ConditionStatus.FALSE,
}


def condition_status_for(status: RemoteStatus) -> ConditionStatus:
    """Map a remote lifecycle state to a condition value."""
    try:
        return _CONDITION_FOR_REMOTE_STATUS[status]
    except KeyError:
        raise ValueError(f"No condition mapping for remote status {status!r}")


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class ObjectKey:
    """Namespace-qualified object name."""

    namespace: str
    name: str

    @classmethod
    def parse(cls, key: str) -> "ObjectKey":
        """Parse ``namespace/name``; a bare name lands in ``default``."""
        if "/" in key:
            namespace, name = key.split("/", 1)
        else:
            namespace, name = "default", key
        if not namespace or not name:
            raise ValueError(f"Invalid object key: {key!r}")
        return cls(namespace=namespace, name=name)

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


def parse_mesh_name(mesh_name: str, namespace: str) -> Tuple[str, str]:
    """
    Split a mesh reference of the form ``name`` or ``name.namespace``.

    Returns:
        (mesh name, mesh namespace); the namespace defaults to ``namespace``.
    """
    if "." in mesh_name:
        name, mesh_namespace = mesh_name.split(".", 1)
        return name, mesh_namespace or namespace
    return mesh_name, namespace


@dataclass
class ObjectMeta:
    name: str
    namespace: str = "default"
    finalizers: List[str] = field(default_factory=list)
    deletion_timestamp: Optional[datetime] = None
    resource_version: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectMeta":
        resource_version = data.get("resourceVersion")
        return cls(
            name=data["name"],
            namespace=data.get("namespace") or "default",
            finalizers=list(data.get("finalizers") or []),
            deletion_timestamp=parse_timestamp(data.get("deletionTimestamp")),
            resource_version=(
                int(resource_version) if resource_version is not None else None
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "namespace": self.namespace,
            "finalizers": list(self.finalizers),
        }
        if self.deletion_timestamp is not None:
            result["deletionTimestamp"] = format_timestamp(self.deletion_timestamp)
        if self.resource_version is not None:
            result["resourceVersion"] = str(self.resource_version)
        return result


@dataclass
class Condition:
    type: str
    status: ConditionStatus
    last_transition_time: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.type, Enum):
            self.type = self.type.value
        self.status = ConditionStatus(self.status)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        return cls(
            type=data["type"],
            status=ConditionStatus(data.get("status", ConditionStatus.UNKNOWN.value)),
            last_transition_time=parse_timestamp(data.get("lastTransitionTime")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "status": self.status.value,
            "lastTransitionTime": format_timestamp(self.last_transition_time),
        }


def _conditions_from(status: Dict[str, Any]) -> List[Condition]:
    return [Condition.from_dict(c) for c in (status or {}).get("conditions") or []]


@dataclass(frozen=True)
class WeightedTarget:
    """A backend virtual node and its integer traffic share."""

    target: str
    weight: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WeightedTarget":
        target = (
            data.get("virtualNodeName")
            or data.get("virtualNode")
            or data.get("target", "")
        )
        return cls(target=target, weight=int(data.get("weight", 0)))

    def to_dict(self) -> Dict[str, Any]:
        return {"virtualNodeName": self.target, "weight": self.weight}


@dataclass(frozen=True)
class Route:
    """
    A path-prefix match with a weighted target set.

    The same type is used for desired routes (``status`` is None) and for
    routes observed on the control plane.
    """

    name: str
    prefix: str = "/"
    weighted_targets: Tuple[WeightedTarget, ...] = ()
    status: Optional[RemoteStatus] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Route":
        body = data.get("http") or data
        match = body.get("match") or {}
        action = body.get("action") or {}
        targets = tuple(
            WeightedTarget.from_dict(t) for t in action.get("weightedTargets") or []
        )
        return cls(
            name=data["name"],
            prefix=match.get("prefix", ""),
            weighted_targets=targets,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "http": {
                "match": {"prefix": self.prefix},
                "action": {
                    "weightedTargets": [t.to_dict() for t in self.weighted_targets]
                },
            },
        }

    def target_set(self) -> FrozenSet[WeightedTarget]:
        return frozenset(self.weighted_targets)

    def matches(self, other: "Route") -> bool:
        """Structural equality on (prefix, weighted target set)."""
        return self.prefix == other.prefix and self.target_set() == other.target_set()


@dataclass(frozen=True)
class ObjectReference:
    name: str
    namespace: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectReference":
        return cls(name=data["name"], namespace=data.get("namespace"))

    def to_dict(self) -> Dict[str, Any]:
        result = {"name": self.name}
        if self.namespace:
            result["namespace"] = self.namespace
        return result


@dataclass
class VirtualServiceProvider:
    """The VirtualNode or VirtualRouter a VirtualService delegates to."""

    virtual_node: Optional[ObjectReference] = None
    virtual_router: Optional[ObjectReference] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VirtualServiceProvider":
        node = (data.get("virtualNode") or {}).get("virtualNodeRef")
        router = (data.get("virtualRouter") or {}).get("virtualRouterRef")
        return cls(
            virtual_node=ObjectReference.from_dict(node) if node else None,
            virtual_router=ObjectReference.from_dict(router) if router else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.virtual_node:
            result["virtualNode"] = {"virtualNodeRef": self.virtual_node.to_dict()}
        if self.virtual_router:
            result["virtualRouter"] = {
                "virtualRouterRef": self.virtual_router.to_dict()
            }
        return result


@dataclass
class VirtualServiceSpec:
    mesh_name: str = ""
    virtual_router_name: Optional[str] = None
    routes: List[Route] = field(default_factory=list)
    provider: Optional[VirtualServiceProvider] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VirtualServiceSpec":
        router = data.get("virtualRouter") or {}
        provider = data.get("provider")
        return cls(
            mesh_name=data.get("meshName") or "",
            virtual_router_name=router.get("name") or None,
            routes=[Route.from_dict(r) for r in data.get("routes") or []],
            provider=VirtualServiceProvider.from_dict(provider) if provider else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "meshName": self.mesh_name,
            "routes": [r.to_dict() for r in self.routes],
        }
        if self.virtual_router_name:
            result["virtualRouter"] = {"name": self.virtual_router_name}
        if self.provider:
            result["provider"] = self.provider.to_dict()
        return result


@dataclass
class VirtualService:
    metadata: ObjectMeta
    spec: VirtualServiceSpec = field(default_factory=VirtualServiceSpec)
    conditions: List[Condition] = field(default_factory=list)

    kind = KIND_VIRTUAL_SERVICE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VirtualService":
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata") or {}),
            spec=VirtualServiceSpec.from_dict(data.get("spec") or {}),
            conditions=_conditions_from(data.get("status") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "apiVersion": API_VERSION,
            "kind": self.kind,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
            "status": {"conditions": [c.to_dict() for c in self.conditions]},
        }

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.metadata.namespace, self.metadata.name)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    @property
    def virtual_router_name(self) -> str:
        """Router name from the spec, defaulting to the service's own name."""
        return self.spec.virtual_router_name or self.metadata.name

    def get_condition(self, condition_type: str) -> Optional[Condition]:
        condition_type = getattr(condition_type, "value", condition_type)
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def deepcopy(self) -> "VirtualService":
        return copy.deepcopy(self)


@dataclass
class Mesh:
    metadata: ObjectMeta
    conditions: List[Condition] = field(default_factory=list)

    kind = KIND_MESH

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Mesh":
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata") or {}),
            conditions=_conditions_from(data.get("status") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "apiVersion": API_VERSION,
            "kind": self.kind,
            "metadata": self.metadata.to_dict(),
            "spec": {},
            "status": {"conditions": [c.to_dict() for c in self.conditions]},
        }

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def is_active(self) -> bool:
        for condition in self.conditions:
            if condition.type == MESH_ACTIVE:
                return condition.status == ConditionStatus.TRUE
        return False

    def deepcopy(self) -> "Mesh":
        return copy.deepcopy(self)


@dataclass
class RemoteVirtualRouter:
    name: str
    mesh_name: str
    status: RemoteStatus = RemoteStatus.ACTIVE


@dataclass
class RemoteVirtualService:
    name: str
    mesh_name: str
    virtual_router_name: str = ""
    status: RemoteStatus = RemoteStatus.ACTIVE


MODEL_KINDS = {
    KIND_MESH: Mesh,
    KIND_VIRTUAL_SERVICE: VirtualService,
}


def object_from_manifest(data: Dict[str, Any]):
    """Build a Mesh or VirtualService from a manifest dict."""
    kind = data.get("kind")
    if kind not in MODEL_KINDS:
        raise ValueError(f"Unsupported kind: {kind!r}")
    return MODEL_KINDS[kind].from_dict(data)
