"""
Mesh lifecycle gate.

The parent Mesh is read on every pass. A missing Mesh pauses the
VirtualService, a deleting Mesh cascades remote cleanup, and an inactive
Mesh is an error.
"""

import logging
from enum import Enum

from cleanup import delete_remote_resources
from errors import MeshNotActiveError, NotFoundError
from models import VirtualService, parse_mesh_name

logger = logging.getLogger(__name__)


class GateDecision(Enum):
    CONTINUE = "continue"
    SKIP = "skip"
    CASCADE = "cascade"


class MeshLifecycleGate:
    """Decides whether a VirtualService pass may proceed given its Mesh."""

    def __init__(self, mesh_store, client):
        self.mesh_store = mesh_store
        self.client = client

    async def check(self, vservice: VirtualService) -> GateDecision:
        """
        Inspect the parent Mesh of the VirtualService.

        Returns:
            CONTINUE to proceed, SKIP if the Mesh does not exist yet,
            CASCADE if the Mesh is being deleted (remote cleanup already
            attempted).

        Raises:
            MeshNotActiveError: If the Mesh exists but is not active.
        """
        if not vservice.spec.mesh_name:
            # Reported as a validation error by the reconciler.
            return GateDecision.CONTINUE

        mesh_name, mesh_namespace = parse_mesh_name(
            vservice.spec.mesh_name, vservice.metadata.namespace
        )
        try:
            mesh = await self.mesh_store.get(mesh_namespace, mesh_name)
        except NotFoundError:
            logger.info(
                f"Mesh {mesh_namespace}/{mesh_name} doesn't exist, "
                f"skipping processing virtual service {vservice.key}"
            )
            return GateDecision.SKIP

        if mesh.is_deleting:
            try:
                await delete_remote_resources(self.client, vservice)
            except Exception as e:
                logger.error(
                    f"Error cleaning up virtual service {vservice.key} "
                    f"for deleting mesh {mesh_name}: {e}"
                )
            else:
                logger.info(
                    f"Deleted resources for virtual service {vservice.key} "
                    f"because mesh {mesh_name} is being deleted"
                )
            return GateDecision.CASCADE

        if not mesh.is_active():
            raise MeshNotActiveError(mesh_name, vservice.name)

        return GateDecision.CONTINUE
