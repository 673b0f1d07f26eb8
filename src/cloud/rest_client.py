"""
REST Control Plane Client - ControlPlaneClient over the App Mesh REST layout.

Talks JSON over HTTP using aiohttp. Request signing is expected to be done
by a proxy in front of the endpoint; an optional bearer token is sent when
configured. No retries are made here.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp

from cloud.base import ControlPlaneClient
from errors import ConflictError, NotFoundError, RemoteAPIError
from models import (
    RemoteStatus,
    RemoteVirtualRouter,
    RemoteVirtualService,
    Route,
    VirtualService,
    WeightedTarget,
)

logger = logging.getLogger(__name__)

API_PREFIX = "/v20190125"


def _q(value: str) -> str:
    return quote(value, safe="")


def _status_of(data: Dict[str, Any]) -> RemoteStatus:
    return RemoteStatus.parse((data.get("status") or {}).get("status"))


def route_from_api(data: Dict[str, Any]) -> Route:
    http_route = (data.get("spec") or {}).get("httpRoute") or {}
    targets = tuple(
        WeightedTarget(target=t.get("virtualNode", ""), weight=int(t.get("weight", 0)))
        for t in (http_route.get("action") or {}).get("weightedTargets") or []
    )
    return Route(
        name=data["routeName"],
        prefix=(http_route.get("match") or {}).get("prefix", ""),
        weighted_targets=targets,
        status=_status_of(data),
    )


def route_spec_to_api(route: Route) -> Dict[str, Any]:
    return {
        "httpRoute": {
            "match": {"prefix": route.prefix},
            "action": {
                "weightedTargets": [
                    {"virtualNode": t.target, "weight": t.weight}
                    for t in route.weighted_targets
                ]
            },
        }
    }


def virtual_router_from_api(data: Dict[str, Any]) -> RemoteVirtualRouter:
    return RemoteVirtualRouter(
        name=data["virtualRouterName"],
        mesh_name=data.get("meshName", ""),
        status=_status_of(data),
    )


def virtual_service_from_api(data: Dict[str, Any]) -> RemoteVirtualService:
    provider = (data.get("spec") or {}).get("provider") or {}
    return RemoteVirtualService(
        name=data["virtualServiceName"],
        mesh_name=data.get("meshName", ""),
        virtual_router_name=(provider.get("virtualRouter") or {}).get(
            "virtualRouterName", ""
        ),
        status=_status_of(data),
    )


def virtual_service_spec_to_api(vservice: VirtualService) -> Dict[str, Any]:
    return {
        "provider": {
            "virtualRouter": {"virtualRouterName": vservice.virtual_router_name}
        }
    }


class RestControlPlaneClient(ControlPlaneClient):
    """Control-plane client for an App Mesh compatible REST endpoint."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: int = 30,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._session = session

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Accept": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _request(
        self,
        method: str,
        path: str,
        kind: str,
        name: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Make a request and decode the JSON body.

        Raises:
            NotFoundError: On HTTP 404.
            ConflictError: On HTTP 409.
            RemoteAPIError: On any other non-2xx response, a transport error or
                timeout, or a body that is not valid JSON.
        """
        url = f"{self.base_url}{API_PREFIX}{path}"
        session = self._get_session()
        try:
            async with session.request(
                method, url, json=json, params=params
            ) as response:
                if response.status == 404:
                    raise NotFoundError(kind, name)
                if response.status == 409:
                    text = await response.text()
                    raise ConflictError(f"{kind} {name}: {text}")
                if response.status >= 400:
                    text = await response.text()
                    raise RemoteAPIError(
                        f"{method} {path} failed: {response.status} - {text}",
                        status=response.status,
                    )
                if response.status == 204:
                    return {}
                return await response.json(content_type=None) or {}
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise RemoteAPIError(f"{method} {path} failed: {e}") from e

    # ==================== Virtual Routers ====================

    async def get_virtual_router(
        self, name: str, mesh_name: str
    ) -> RemoteVirtualRouter:
        data = await self._request(
            "GET",
            f"/meshes/{_q(mesh_name)}/virtualRouters/{_q(name)}",
            "VirtualRouter",
            name,
        )
        return virtual_router_from_api(data.get("virtualRouter", data))

    async def create_virtual_router(
        self, name: str, mesh_name: str
    ) -> RemoteVirtualRouter:
        data = await self._request(
            "PUT",
            f"/meshes/{_q(mesh_name)}/virtualRouters",
            "VirtualRouter",
            name,
            json={"virtualRouterName": name, "spec": {}},
        )
        return virtual_router_from_api(data.get("virtualRouter", data))

    async def delete_virtual_router(
        self, name: str, mesh_name: str
    ) -> RemoteVirtualRouter:
        data = await self._request(
            "DELETE",
            f"/meshes/{_q(mesh_name)}/virtualRouters/{_q(name)}",
            "VirtualRouter",
            name,
        )
        data = data.get("virtualRouter", data)
        if not data:
            return RemoteVirtualRouter(name, mesh_name, RemoteStatus.DELETED)
        return virtual_router_from_api(data)

    # ==================== Routes ====================

    def _routes_path(self, router_name: str, mesh_name: str) -> str:
        return f"/meshes/{_q(mesh_name)}/virtualRouter/{_q(router_name)}/routes"

    async def get_routes_for_virtual_router(
        self, router_name: str, mesh_name: str
    ) -> List[Route]:
        path = self._routes_path(router_name, mesh_name)
        names: List[str] = []
        next_token: Optional[str] = None
        while True:
            params = {"nextToken": next_token} if next_token else None
            data = await self._request(
                "GET", path, "VirtualRouter", router_name, params=params
            )
            names.extend(r["routeName"] for r in data.get("routes") or [])
            next_token = data.get("nextToken")
            if not next_token:
                break

        routes = []
        for route_name in names:
            data = await self._request(
                "GET", f"{path}/{_q(route_name)}", "Route", route_name
            )
            routes.append(route_from_api(data.get("route", data)))
        return routes

    async def create_route(
        self, route: Route, router_name: str, mesh_name: str
    ) -> Route:
        data = await self._request(
            "PUT",
            self._routes_path(router_name, mesh_name),
            "Route",
            route.name,
            json={"routeName": route.name, "spec": route_spec_to_api(route)},
        )
        return route_from_api(data.get("route", data))

    async def update_route(
        self, route: Route, router_name: str, mesh_name: str
    ) -> Route:
        data = await self._request(
            "PUT",
            f"{self._routes_path(router_name, mesh_name)}/{_q(route.name)}",
            "Route",
            route.name,
            json={"spec": route_spec_to_api(route)},
        )
        return route_from_api(data.get("route", data))

    async def delete_route(
        self, route_name: str, router_name: str, mesh_name: str
    ) -> Route:
        data = await self._request(
            "DELETE",
            f"{self._routes_path(router_name, mesh_name)}/{_q(route_name)}",
            "Route",
            route_name,
        )
        data = data.get("route", data)
        if not data:
            return Route(name=route_name, status=RemoteStatus.DELETED)
        return route_from_api(data)

    # ==================== Virtual Services ====================

    async def get_virtual_service(
        self, name: str, mesh_name: str
    ) -> RemoteVirtualService:
        data = await self._request(
            "GET",
            f"/meshes/{_q(mesh_name)}/virtualServices/{_q(name)}",
            "VirtualService",
            name,
        )
        return virtual_service_from_api(data.get("virtualService", data))

    async def create_virtual_service(
        self, vservice: VirtualService, mesh_name: str
    ) -> RemoteVirtualService:
        data = await self._request(
            "PUT",
            f"/meshes/{_q(mesh_name)}/virtualServices",
            "VirtualService",
            vservice.name,
            json={
                "virtualServiceName": vservice.name,
                "spec": virtual_service_spec_to_api(vservice),
            },
        )
        return virtual_service_from_api(data.get("virtualService", data))

    async def update_virtual_service(
        self, vservice: VirtualService, mesh_name: str
    ) -> RemoteVirtualService:
        data = await self._request(
            "PUT",
            f"/meshes/{_q(mesh_name)}/virtualServices/{_q(vservice.name)}",
            "VirtualService",
            vservice.name,
            json={"spec": virtual_service_spec_to_api(vservice)},
        )
        return virtual_service_from_api(data.get("virtualService", data))

    async def delete_virtual_service(
        self, name: str, mesh_name: str
    ) -> RemoteVirtualService:
        data = await self._request(
            "DELETE",
            f"/meshes/{_q(mesh_name)}/virtualServices/{_q(name)}",
            "VirtualService",
            name,
        )
        data = data.get("virtualService", data)
        if not data:
            return RemoteVirtualService(name, mesh_name, status=RemoteStatus.DELETED)
        return virtual_service_from_api(data)
