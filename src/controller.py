"""
VirtualService Controller - reconciles one VirtualService per call.

Similar to a Kubernetes controller's sync handler: it re-reads the object
and the remote state on every call, so an interrupted pass is simply
resumed by the next one. Scheduling, retries and backoff belong to the
caller.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Union

from cleanup import delete_remote_resources
from conditions import ConditionTracker
from errors import NotFoundError, ReconcileError, RouteSyncError, ValidationError
from finalizers import (
    VIRTUAL_SERVICE_DELETION_FINALIZER,
    add_finalizer,
    has_finalizer,
    remove_finalizer,
)
from mesh_gate import GateDecision, MeshLifecycleGate
from models import (
    ConditionStatus,
    ConditionType,
    ObjectKey,
    RemoteVirtualService,
    VirtualService,
    condition_status_for,
    parse_mesh_name,
)
from routes import RouteChange, all_routes_active, sync_routes

logger = logging.getLogger(__name__)


class ReconcileAction(Enum):
    """What a successful reconcile pass did."""

    ABSENT = "absent"
    DELETED = "deleted"
    SKIPPED = "skipped"
    CASCADED = "cascaded"
    RECONCILED = "reconciled"


@dataclass
class ReconcileResult:
    """Outcome of a successful reconcile pass."""

    key: ObjectKey
    action: ReconcileAction
    message: str = ""
    route_changes: List[RouteChange] = field(default_factory=list)


def virtual_service_needs_update(
    desired: VirtualService, target: RemoteVirtualService
) -> bool:
    """
    Report drift between a VirtualService and its remote counterpart.

    Only the virtual router binding is compared.
    """
    return (desired.virtual_router_name or "") != (target.virtual_router_name or "")


class VirtualServiceReconciler:
    """
    Drives a VirtualService from its declared spec to converged remote state.

    Safe to run concurrently for different keys; the caller must not run
    two passes for the same key at once.
    """

    def __init__(
        self,
        vservice_store,
        mesh_store,
        client,
        finalizer_name: str = VIRTUAL_SERVICE_DELETION_FINALIZER,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.vservice_store = vservice_store
        self.client = client
        self.finalizer_name = finalizer_name
        self.conditions = ConditionTracker(vservice_store, clock=clock)
        self.mesh_gate = MeshLifecycleGate(mesh_store, client)

    async def reconcile(self, key: Union[str, ObjectKey]) -> ReconcileResult:
        """
        Run one reconcile pass for the VirtualService with the given key.

        Returns:
            A ReconcileResult describing what the pass did.

        Raises:
            ValidationError: The spec is invalid or the Mesh is not active.
            ConflictError: A write raced with a concurrent edit.
            RouteSyncError: Some route operations failed; everything else
                in the pass was still applied.
            ReconcileError: Any other remote failure.
        """
        if isinstance(key, str):
            key = ObjectKey.parse(key)

        try:
            shared = await self.vservice_store.get(key.namespace, key.name)
        except NotFoundError:
            logger.info(f"Virtual service {key} has been deleted")
            return ReconcileResult(key, ReconcileAction.ABSENT)

        # Work on a copy so the caller's (possibly cached) object is untouched
        vservice = shared.deepcopy()

        if vservice.is_deleting:
            return await self._handle_delete(vservice)

        if add_finalizer(vservice, self.finalizer_name):
            vservice = await self.vservice_store.update(vservice)
            logger.info(f"Added finalizer {self.finalizer_name} to {key}")

        decision = await self.mesh_gate.check(vservice)
        if decision == GateDecision.SKIP:
            logger.info(f"Skipping processing virtual service {key}")
            return ReconcileResult(key, ReconcileAction.SKIPPED, "mesh not found")
        if decision == GateDecision.CASCADE:
            return ReconcileResult(key, ReconcileAction.CASCADED, "mesh is deleting")

        self._validate(vservice)

        mesh_name, _ = parse_mesh_name(
            vservice.spec.mesh_name, vservice.metadata.namespace
        )
        router_name = vservice.virtual_router_name

        vservice, router = await self._ensure_virtual_router(
            vservice, router_name, mesh_name
        )

        existing_routes = await self.client.get_routes_for_virtual_router(
            router_name, mesh_name
        )
        route_error: Optional[RouteSyncError] = None
        route_changes: List[RouteChange] = []
        try:
            route_changes = await sync_routes(
                self.client,
                mesh_name,
                router_name,
                vservice.spec.routes,
                existing_routes,
            )
        except RouteSyncError as e:
            route_error = e

        vservice = await self._update_routes_active(vservice, router_name, mesh_name)

        target = await self._ensure_virtual_service(vservice, mesh_name)

        vservice = await self._set_condition(
            vservice,
            ConditionType.VIRTUAL_SERVICE_ACTIVE,
            condition_status_for(target.status),
        )
        vservice = await self._set_condition(
            vservice,
            ConditionType.VIRTUAL_ROUTER_ACTIVE,
            condition_status_for(router.status),
        )

        if route_error is not None:
            raise route_error

        # TODO: clean up the previously bound router when spec.virtualRouter
        # is renamed; today the old router is left orphaned.
        return ReconcileResult(
            key, ReconcileAction.RECONCILED, route_changes=route_changes
        )

    def _validate(self, vservice: VirtualService) -> None:
        if not vservice.spec.mesh_name:
            raise ValidationError("'meshName' is a required field")

        seen = set()
        for route in vservice.spec.routes:
            if route.name in seen:
                raise ValidationError(
                    f"route {route.name} is declared more than once in "
                    f"virtual service {vservice.key}"
                )
            seen.add(route.name)

    async def _set_condition(
        self,
        vservice: VirtualService,
        condition_type: ConditionType,
        status: ConditionStatus,
    ) -> VirtualService:
        updated = await self.conditions.upsert(vservice, condition_type, status)
        return updated if updated is not None else vservice

    async def _ensure_virtual_router(
        self, vservice: VirtualService, router_name: str, mesh_name: str
    ):
        try:
            router = await self.client.get_virtual_router(router_name, mesh_name)
            return vservice, router
        except NotFoundError:
            pass

        router = await self.client.create_virtual_router(
            router_name, mesh_name
        )
        logger.info(f"Created virtual router {router.name} in mesh {mesh_name}")
        vservice = await self._set_condition(
            vservice,
            ConditionType.VIRTUAL_ROUTER_ACTIVE,
            condition_status_for(router.status),
        )
        return vservice, router

    async def _update_routes_active(
        self, vservice: VirtualService, router_name: str, mesh_name: str
    ) -> VirtualService:
        try:
            routes = await self.client.get_routes_for_virtual_router(
                router_name, mesh_name
            )
            status = (
                ConditionStatus.TRUE
                if all_routes_active(routes)
                else ConditionStatus.FALSE
            )
        except ReconcileError as e:
            logger.error(
                f"Unable to check status of routes for virtual router "
                f"{router_name}: {e}"
            )
            status = ConditionStatus.FALSE
        return await self._set_condition(vservice, ConditionType.ROUTES_ACTIVE, status)

    async def _ensure_virtual_service(
        self, vservice: VirtualService, mesh_name: str
    ) -> RemoteVirtualService:
        try:
            target = await self.client.get_virtual_service(vservice.name, mesh_name)
        except NotFoundError:
            target = await self.client.create_virtual_service(vservice, mesh_name)
            logger.info(f"Created virtual service {vservice.name} in mesh {mesh_name}")
            return target

        if virtual_service_needs_update(vservice, target):
            target = await self.client.update_virtual_service(vservice, mesh_name)
            logger.info(f"Updated virtual service {vservice.name}")
        return target

    async def _handle_delete(self, vservice: VirtualService) -> ReconcileResult:
        """
        Clean up remote resources, then release the finalizer.

        The finalizer stays in place unless every deletion succeeded or
        found the object already gone.
        """
        if not has_finalizer(vservice, self.finalizer_name):
            return ReconcileResult(vservice.key, ReconcileAction.DELETED)

        await delete_remote_resources(self.client, vservice)

        remove_finalizer(vservice, self.finalizer_name)
        await self.vservice_store.update(vservice)
        logger.info(
            f"Removed finalizer {self.finalizer_name} from virtual service "
            f"{vservice.key}"
        )
        return ReconcileResult(
            vservice.key, ReconcileAction.DELETED, "remote resources deleted"
        )
