"""
Route diffing between the declared routes and those on a remote router.

Routes are matched by name. Every name in the union of both sides gets
exactly one change: create, update, delete or none. Changes are applied
in name order; a failure on one route does not stop the others.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional

from errors import RouteSyncError
from models import RemoteStatus, Route

logger = logging.getLogger(__name__)


class RouteAction(Enum):
    """Kind of change needed for one route name."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NONE = "none"


@dataclass
class RouteChange:
    name: str
    action: RouteAction
    route: Optional[Route] = None


def _by_name(routes: Iterable[Route]) -> Dict[str, Route]:
    return {route.name: route for route in routes}


def plan_route_changes(
    desired: Iterable[Route], existing: Iterable[Route]
) -> List[RouteChange]:
    """
    Compute one change per route name in ``desired`` and ``existing``.

    Args:
        desired: Authoritative routes from the VirtualService spec.
        existing: Routes currently on the remote router.

    Returns:
        Changes sorted by route name.
    """
    desired_by_name = _by_name(desired)
    existing_by_name = _by_name(existing)

    changes = []
    for name in sorted(set(desired_by_name) | set(existing_by_name)):
        want = desired_by_name.get(name)
        have = existing_by_name.get(name)
        if want is None:
            changes.append(RouteChange(name, RouteAction.DELETE, have))
        elif have is None:
            changes.append(RouteChange(name, RouteAction.CREATE, want))
        elif not want.matches(have):
            changes.append(RouteChange(name, RouteAction.UPDATE, want))
        else:
            changes.append(RouteChange(name, RouteAction.NONE, want))
    return changes


async def sync_routes(
    client,
    mesh_name: str,
    router_name: str,
    desired: Iterable[Route],
    existing: Iterable[Route],
) -> List[RouteChange]:
    """
    Apply the planned route changes to the control plane.

    Returns:
        The changes that were applied (or found to be no-ops).

    Raises:
        RouteSyncError: If any route operation failed. All other
            operations have still been attempted.
    """
    changes = plan_route_changes(desired, existing)
    failures: Dict[str, Exception] = {}

    for change in changes:
        try:
            if change.action == RouteAction.CREATE:
                await client.create_route(change.route, router_name, mesh_name)
                logger.info(f"Created route {change.name} on router {router_name}")
            elif change.action == RouteAction.UPDATE:
                await client.update_route(change.route, router_name, mesh_name)
                logger.info(f"Updated route {change.name} on router {router_name}")
            elif change.action == RouteAction.DELETE:
                await client.delete_route(change.name, router_name, mesh_name)
                logger.info(f"Deleted route {change.name} from router {router_name}")
        except Exception as e:
            failures[change.name] = e
            logger.error(
                f"Error trying to {change.action.value} route {change.name}: {e}"
            )

    if failures:
        raise RouteSyncError(failures)
    return changes


def all_routes_active(routes: Iterable[Route]) -> bool:
    """True when every observed route reports an active status."""
    return all(route.status == RemoteStatus.ACTIVE for route in routes)
