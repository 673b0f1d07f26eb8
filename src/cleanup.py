"""
Remote cleanup for a VirtualService.

Deletes the declared routes, then the virtual service, then the virtual
router. Objects that are already gone count as deleted.
"""

import logging

from errors import NotFoundError, ReconcileError
from models import VirtualService, parse_mesh_name

logger = logging.getLogger(__name__)


async def delete_remote_resources(client, vservice: VirtualService) -> None:
    """
    Delete everything this VirtualService created on the control plane.

    Raises:
        ReconcileError: On the first failure that is not a not-found; the
            remaining deletions are not attempted.
    """
    if not vservice.spec.mesh_name:
        logger.info(
            f"Virtual service {vservice.name} has no mesh name, nothing to clean up"
        )
        return

    mesh_name, _ = parse_mesh_name(vservice.spec.mesh_name, vservice.metadata.namespace)
    router_name = vservice.virtual_router_name

    for route in vservice.spec.routes:
        try:
            await client.delete_route(route.name, router_name, mesh_name)
        except NotFoundError:
            logger.debug(f"Route {route.name} already deleted")
        except Exception as e:
            raise ReconcileError(
                f"failed to clean up route {route.name} for virtual service "
                f"{vservice.name} during deletion: {e}"
            ) from e

    try:
        await client.delete_virtual_service(vservice.name, mesh_name)
    except NotFoundError:
        logger.debug(f"Virtual service {vservice.name} already deleted")
    except Exception as e:
        raise ReconcileError(
            f"failed to clean up virtual service {vservice.name} during deletion: {e}"
        ) from e

    try:
        await client.delete_virtual_router(router_name, mesh_name)
    except NotFoundError:
        logger.debug(f"Virtual router {router_name} already deleted")
    except Exception as e:
        raise ReconcileError(
            f"failed to clean up virtual router {router_name} for virtual service "
            f"{vservice.name} during deletion: {e}"
        ) from e
