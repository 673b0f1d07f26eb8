"""Pytest configuration and fixtures."""

import copy
import dataclasses
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from cloud.base import ControlPlaneClient
from errors import ConflictError, NotFoundError
from models import (
    Condition,
    ConditionStatus,
    MESH_ACTIVE,
    Mesh,
    ObjectMeta,
    RemoteStatus,
    RemoteVirtualRouter,
    RemoteVirtualService,
    Route,
    VirtualService,
    VirtualServiceSpec,
    WeightedTarget,
)

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class InMemoryObjectStore:
    """
    Object store double with resource versions and conflict detection.

    Every read returns a deep copy; writes are rejected when the caller's
    resource version is stale.
    """

    def __init__(self, model_cls):
        self.model_cls = model_cls
        self.kind = model_cls.kind
        self.objects: Dict[Tuple[str, str], object] = {}
        self.update_calls = 0
        self.status_calls = 0

    def seed(self, obj):
        obj = copy.deepcopy(obj)
        obj.metadata.resource_version = 1
        self.objects[(obj.metadata.namespace, obj.metadata.name)] = obj
        return copy.deepcopy(obj)

    def peek(self, namespace: str, name: str):
        obj = self.objects.get((namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    async def get(self, namespace: str, name: str):
        obj = self.objects.get((namespace, name))
        if obj is None:
            raise NotFoundError(self.kind, name, namespace)
        return copy.deepcopy(obj)

    async def list(self, namespace: Optional[str] = None) -> List[object]:
        return [
            copy.deepcopy(obj)
            for (ns, _), obj in sorted(self.objects.items())
            if namespace is None or ns == namespace
        ]

    async def create(self, obj):
        key = (obj.metadata.namespace, obj.metadata.name)
        if key in self.objects:
            raise ConflictError(f"{self.kind} {key} already exists")
        return self.seed(obj)

    def _current(self, obj):
        key = (obj.metadata.namespace, obj.metadata.name)
        current = self.objects.get(key)
        if current is None:
            raise NotFoundError(self.kind, obj.metadata.name, obj.metadata.namespace)
        version = obj.metadata.resource_version
        if version is not None and version != current.metadata.resource_version:
            raise ConflictError(f"{self.kind} {key} has been modified")
        return current

    def _commit(self, current):
        current.metadata.resource_version += 1
        if current.metadata.deletion_timestamp and not current.metadata.finalizers:
            del self.objects[(current.metadata.namespace, current.metadata.name)]
            return None
        return copy.deepcopy(current)

    async def update(self, obj):
        self.update_calls += 1
        current = self._current(obj)
        if hasattr(obj, "spec"):
            current.spec = copy.deepcopy(obj.spec)
        current.metadata.finalizers = list(obj.metadata.finalizers)
        return self._commit(current)

    async def update_status(self, obj):
        self.status_calls += 1
        current = self._current(obj)
        current.conditions = copy.deepcopy(obj.conditions)
        return self._commit(current)

    async def mark_deleted(self, namespace: str, name: str, when=None):
        current = self.objects.get((namespace, name))
        if current is None:
            raise NotFoundError(self.kind, name, namespace)
        if current.metadata.deletion_timestamp is None:
            current.metadata.deletion_timestamp = when or FIXED_NOW
        return self._commit(current)


class FakeControlPlaneClient(ControlPlaneClient):
    """
    In-memory control plane.

    ``failures`` maps (operation, name) to an exception raised instead of
    performing the operation. ``mutations`` records every write.
    """

    def __init__(self, status: RemoteStatus = RemoteStatus.ACTIVE):
        self.status = status
        self.routers: Dict[Tuple[str, str], RemoteVirtualRouter] = {}
        self.routes: Dict[Tuple[str, str], Dict[str, Route]] = {}
        self.services: Dict[Tuple[str, str], RemoteVirtualService] = {}
        self.failures: Dict[Tuple[str, str], Exception] = {}
        self.mutations: List[Tuple[str, str]] = []

    def _maybe_fail(self, operation: str, name: str) -> None:
        error = self.failures.get((operation, name))
        if error is not None:
            raise error

    def add_router(self, name, mesh_name, status=RemoteStatus.ACTIVE):
        self.routers[(mesh_name, name)] = RemoteVirtualRouter(name, mesh_name, status)
        self.routes.setdefault((mesh_name, name), {})

    def add_route(self, route: Route, router_name, mesh_name):
        if route.status is None:
            route = dataclasses.replace(route, status=RemoteStatus.ACTIVE)
        self.routes.setdefault((mesh_name, router_name), {})[route.name] = route

    def add_service(self, name, mesh_name, router_name, status=RemoteStatus.ACTIVE):
        self.services[(mesh_name, name)] = RemoteVirtualService(
            name, mesh_name, router_name, status
        )

    async def get_virtual_router(self, name, mesh_name):
        self._maybe_fail("get_virtual_router", name)
        router = self.routers.get((mesh_name, name))
        if router is None:
            raise NotFoundError("VirtualRouter", name)
        return dataclasses.replace(router)

    async def create_virtual_router(self, name, mesh_name):
        self._maybe_fail("create_virtual_router", name)
        self.mutations.append(("create_virtual_router", name))
        self.add_router(name, mesh_name, self.status)
        return dataclasses.replace(self.routers[(mesh_name, name)])

    async def delete_virtual_router(self, name, mesh_name):
        self._maybe_fail("delete_virtual_router", name)
        router = self.routers.pop((mesh_name, name), None)
        if router is None:
            raise NotFoundError("VirtualRouter", name)
        self.mutations.append(("delete_virtual_router", name))
        self.routes.pop((mesh_name, name), None)
        return dataclasses.replace(router, status=RemoteStatus.DELETED)

    async def get_routes_for_virtual_router(self, router_name, mesh_name):
        self._maybe_fail("get_routes_for_virtual_router", router_name)
        if (mesh_name, router_name) not in self.routers:
            raise NotFoundError("VirtualRouter", router_name)
        return list(self.routes.get((mesh_name, router_name), {}).values())

    async def create_route(self, route, router_name, mesh_name):
        self._maybe_fail("create_route", route.name)
        self.mutations.append(("create_route", route.name))
        stored = dataclasses.replace(route, status=self.status)
        self.routes.setdefault((mesh_name, router_name), {})[route.name] = stored
        return stored

    async def update_route(self, route, router_name, mesh_name):
        self._maybe_fail("update_route", route.name)
        self.mutations.append(("update_route", route.name))
        stored = dataclasses.replace(route, status=self.status)
        self.routes[(mesh_name, router_name)][route.name] = stored
        return stored

    async def delete_route(self, route_name, router_name, mesh_name):
        self._maybe_fail("delete_route", route_name)
        route = self.routes.get((mesh_name, router_name), {}).pop(route_name, None)
        if route is None:
            raise NotFoundError("Route", route_name)
        self.mutations.append(("delete_route", route_name))
        return dataclasses.replace(route, status=RemoteStatus.DELETED)

    async def get_virtual_service(self, name, mesh_name):
        self._maybe_fail("get_virtual_service", name)
        service = self.services.get((mesh_name, name))
        if service is None:
            raise NotFoundError("VirtualService", name)
        return dataclasses.replace(service)

    async def create_virtual_service(self, vservice, mesh_name):
        self._maybe_fail("create_virtual_service", vservice.name)
        self.mutations.append(("create_virtual_service", vservice.name))
        self.add_service(
            vservice.name, mesh_name, vservice.virtual_router_name, self.status
        )
        return dataclasses.replace(self.services[(mesh_name, vservice.name)])

    async def update_virtual_service(self, vservice, mesh_name):
        self._maybe_fail("update_virtual_service", vservice.name)
        self.mutations.append(("update_virtual_service", vservice.name))
        service = self.services[(mesh_name, vservice.name)]
        service.virtual_router_name = vservice.virtual_router_name
        return dataclasses.replace(service)

    async def delete_virtual_service(self, name, mesh_name):
        self._maybe_fail("delete_virtual_service", name)
        service = self.services.pop((mesh_name, name), None)
        if service is None:
            raise NotFoundError("VirtualService", name)
        self.mutations.append(("delete_virtual_service", name))
        return dataclasses.replace(service, status=RemoteStatus.DELETED)


def make_route(name, prefix="/", targets=None) -> Route:
    targets = targets if targets is not None else {"colorteller-white": 100}
    return Route(
        name=name,
        prefix=prefix,
        weighted_targets=tuple(WeightedTarget(t, w) for t, w in targets.items()),
    )


def make_vservice(
    name="colorteller.default.svc.cluster.local",
    namespace="default",
    mesh_name="global",
    router_name=None,
    routes=None,
    finalizers=None,
    deleting=False,
) -> VirtualService:
    return VirtualService(
        metadata=ObjectMeta(
            name=name,
            namespace=namespace,
            finalizers=list(finalizers or []),
            deletion_timestamp=FIXED_NOW - timedelta(minutes=1) if deleting else None,
        ),
        spec=VirtualServiceSpec(
            mesh_name=mesh_name,
            virtual_router_name=router_name,
            routes=list(routes if routes is not None else [make_route("r1")]),
        ),
    )


def make_mesh(name="global", namespace="default", active=True, deleting=False) -> Mesh:
    status = ConditionStatus.TRUE if active else ConditionStatus.FALSE
    return Mesh(
        metadata=ObjectMeta(
            name=name,
            namespace=namespace,
            deletion_timestamp=FIXED_NOW if deleting else None,
        ),
        conditions=[Condition(MESH_ACTIVE, status, FIXED_NOW)],
    )


@pytest.fixture
def vservice_store():
    return InMemoryObjectStore(VirtualService)


@pytest.fixture
def mesh_store():
    return InMemoryObjectStore(Mesh)


@pytest.fixture
def client():
    return FakeControlPlaneClient()


@pytest.fixture
def clock():
    """A controllable clock; advance it by assigning clock.now."""

    class Clock:
        def __init__(self):
            self.now = FIXED_NOW

        def __call__(self):
            return self.now

    return Clock()
