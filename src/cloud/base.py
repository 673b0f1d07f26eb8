"""
Control Plane Client Base - Abstract interface for the service-mesh API.

Every read and delete raises ``errors.NotFoundError`` when the object does
not exist, so callers can tell "create it" apart from real failures.
"""

from abc import ABC, abstractmethod
from typing import List

from models import (
    RemoteVirtualRouter,
    RemoteVirtualService,
    Route,
    VirtualService,
)


class ControlPlaneClient(ABC):
    """Abstract base class for remote control-plane clients."""

    @abstractmethod
    async def get_virtual_router(
        self, name: str, mesh_name: str
    ) -> RemoteVirtualRouter:
        pass

    @abstractmethod
    async def create_virtual_router(
        self, name: str, mesh_name: str
    ) -> RemoteVirtualRouter:
        pass

    @abstractmethod
    async def delete_virtual_router(
        self, name: str, mesh_name: str
    ) -> RemoteVirtualRouter:
        pass

    @abstractmethod
    async def get_routes_for_virtual_router(
        self, router_name: str, mesh_name: str
    ) -> List[Route]:
        """
        List routes on a router with their structural fields and status.

        Raises:
            NotFoundError: If the router does not exist.
        """
        pass

    @abstractmethod
    async def create_route(
        self, route: Route, router_name: str, mesh_name: str
    ) -> Route:
        pass

    @abstractmethod
    async def update_route(
        self, route: Route, router_name: str, mesh_name: str
    ) -> Route:
        pass

    @abstractmethod
    async def delete_route(
        self, route_name: str, router_name: str, mesh_name: str
    ) -> Route:
        pass

    @abstractmethod
    async def get_virtual_service(
        self, name: str, mesh_name: str
    ) -> RemoteVirtualService:
        pass

    @abstractmethod
    async def create_virtual_service(
        self, vservice: VirtualService, mesh_name: str
    ) -> RemoteVirtualService:
        """Create the remote virtual service bound to its virtual router."""
        pass

    @abstractmethod
    async def update_virtual_service(
        self, vservice: VirtualService, mesh_name: str
    ) -> RemoteVirtualService:
        pass

    @abstractmethod
    async def delete_virtual_service(
        self, name: str, mesh_name: str
    ) -> RemoteVirtualService:
        pass

    async def close(self) -> None:
        """Release any connections held by the client."""
