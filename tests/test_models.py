"""Unit tests for models.py - resource models and manifest codec."""

import pytest
from datetime import datetime, timezone

from models import (
    Condition,
    ConditionStatus,
    ConditionType,
    Mesh,
    ObjectKey,
    RemoteStatus,
    Route,
    VirtualService,
    WeightedTarget,
    condition_status_for,
    format_timestamp,
    object_from_manifest,
    parse_mesh_name,
    parse_timestamp,
)

VSERVICE_MANIFEST = {
    "apiVersion": "appmesh.k8s.aws/v1alpha1",
    "kind": "VirtualService",
    "metadata": {"name": "colorteller.default.svc.cluster.local"},
    "spec": {
        "meshName": "color-mesh",
        "virtualRouter": {"name": "colorteller-router"},
        "routes": [
            {
                "name": "colorteller-route",
                "http": {
                    "match": {"prefix": "/"},
                    "action": {
                        "weightedTargets": [
                            {"virtualNodeName": "colorteller-white", "weight": 1},
                            {"virtualNodeName": "colorteller-blue", "weight": 1},
                        ]
                    },
                },
            }
        ],
        "provider": {
            "virtualRouter": {
                "virtualRouterRef": {"name": "colorteller-router", "namespace": "x"}
            }
        },
    },
}


class TestConditionStatusFor:
    """Tests for mapping remote status to condition status."""

    def test_mapping(self):
        """Test remote status maps to condition status."""
        assert condition_status_for(RemoteStatus.ACTIVE) == ConditionStatus.TRUE
        assert condition_status_for(RemoteStatus.INACTIVE) == ConditionStatus.FALSE
        assert condition_status_for(RemoteStatus.DELETED) == ConditionStatus.FALSE

    def test_every_remote_status_is_mapped(self):
        """Test every remote status has a condition status."""
        for status in RemoteStatus:
            condition_status_for(status)

    def test_parse_remote_status(self):
        """Test parsing remote status strings."""
        assert RemoteStatus.parse("ACTIVE") == RemoteStatus.ACTIVE
        assert RemoteStatus.parse("deleted") == RemoteStatus.DELETED
        assert RemoteStatus.parse("UPDATING") == RemoteStatus.INACTIVE
        assert RemoteStatus.parse(None) == RemoteStatus.INACTIVE


class TestParseMeshName:
    """Tests for mesh name qualification."""

    def test_plain_name_uses_object_namespace(self):
        """Test a plain mesh name uses the object's namespace."""
        assert parse_mesh_name("global", "default") == ("global", "default")

    def test_qualified_name(self):
        """Test a qualified mesh name carries its namespace."""
        assert parse_mesh_name("global.appmesh-system", "default") == (
            "global",
            "appmesh-system",
        )

    def test_trailing_dot(self):
        """Test a trailing dot falls back to the object's namespace."""
        assert parse_mesh_name("global.", "default") == ("global", "default")


class TestObjectKey:
    """Tests for ObjectKey parsing."""

    def test_parse(self):
        """Test parsing a namespace/name key."""
        assert ObjectKey.parse("prod/svc") == ObjectKey("prod", "svc")
        assert str(ObjectKey("prod", "svc")) == "prod/svc"

    def test_bare_name_defaults_namespace(self):
        """Test a bare name uses the default namespace."""
        assert ObjectKey.parse("svc") == ObjectKey("default", "svc")

    @pytest.mark.parametrize("key", ["/svc", "prod/", ""])
    def test_invalid(self, key):
        """Test malformed keys are rejected."""
        with pytest.raises(ValueError):
            ObjectKey.parse(key)


class TestTimestamps:
    """Tests for timestamp helpers."""

    def test_format(self):
        """Test formatting timestamps."""
        when = datetime(2024, 5, 1, 12, 30, 5, tzinfo=timezone.utc)
        assert format_timestamp(when) == "2024-05-01T12:30:05Z"
        assert format_timestamp(None) is None

    def test_parse(self):
        """Test parsing timestamps."""
        assert parse_timestamp("2024-05-01T12:30:05Z") == datetime(
            2024, 5, 1, 12, 30, 5, tzinfo=timezone.utc
        )
        assert parse_timestamp("") is None

    def test_parse_naive_datetime_is_utc(self):
        """Test naive datetimes are treated as UTC."""
        assert parse_timestamp(datetime(2024, 5, 1)).tzinfo == timezone.utc


class TestRoute:
    """Tests for Route comparison and codec."""

    def test_matches_ignores_target_order_and_status(self):
        """Test route comparison ignores target order and status."""
        a = Route(
            "r1",
            "/",
            (WeightedTarget("blue", 1), WeightedTarget("white", 1)),
        )
        b = Route(
            "r1",
            "/",
            (WeightedTarget("white", 1), WeightedTarget("blue", 1)),
            status=RemoteStatus.ACTIVE,
        )
        assert a.matches(b)

    def test_prefix_or_weight_change_does_not_match(self):
        """Test prefix or weight changes are detected."""
        base = Route("r1", "/", (WeightedTarget("blue", 1),))
        assert not base.matches(Route("r1", "/v2", (WeightedTarget("blue", 1),)))
        assert not base.matches(Route("r1", "/", (WeightedTarget("blue", 2),)))

    def test_from_dict_without_http_wrapper(self):
        """Test parsing a route without the http wrapper."""
        route = Route.from_dict(
            {
                "name": "r1",
                "match": {"prefix": "/x"},
                "action": {"weightedTargets": [{"virtualNode": "a", "weight": 2}]},
            }
        )
        assert route.prefix == "/x"
        assert route.weighted_targets == (WeightedTarget("a", 2),)

    def test_to_dict(self):
        """Test a route survives to_dict and from_dict."""
        route = Route("r1", "/", (WeightedTarget("a", 2),))
        assert Route.from_dict(route.to_dict()) == route


class TestVirtualService:
    """Tests for the VirtualService model."""

    def test_from_manifest(self):
        """Test building a VirtualService from a manifest."""
        vservice = object_from_manifest(VSERVICE_MANIFEST)

        assert isinstance(vservice, VirtualService)
        assert vservice.metadata.namespace == "default"
        assert vservice.spec.mesh_name == "color-mesh"
        assert vservice.virtual_router_name == "colorteller-router"
        route = vservice.spec.routes[0]
        assert route.target_set() == {
            WeightedTarget("colorteller-white", 1),
            WeightedTarget("colorteller-blue", 1),
        }
        assert vservice.spec.provider.virtual_router.namespace == "x"

    def test_router_name_defaults_to_service_name(self):
        """Test the router name defaults to the service name."""
        manifest = dict(VSERVICE_MANIFEST)
        manifest["spec"] = {"meshName": "color-mesh"}
        vservice = VirtualService.from_dict(manifest)

        assert vservice.virtual_router_name == "colorteller.default.svc.cluster.local"

    def test_to_dict_keeps_manifest_shape(self):
        """Test to_dict produces the manifest layout."""
        vservice = VirtualService.from_dict(VSERVICE_MANIFEST)
        data = vservice.to_dict()

        assert data["kind"] == "VirtualService"
        assert data["spec"]["virtualRouter"] == {"name": "colorteller-router"}
        assert data["spec"]["routes"] == VSERVICE_MANIFEST["spec"]["routes"]
        assert data["status"] == {"conditions": []}

    def test_get_condition_accepts_enum(self):
        """Test get_condition accepts enum or string types."""
        vservice = VirtualService.from_dict(VSERVICE_MANIFEST)
        vservice.conditions.append(
            Condition(ConditionType.ROUTES_ACTIVE, ConditionStatus.TRUE)
        )

        condition = vservice.get_condition(ConditionType.ROUTES_ACTIVE)
        assert condition.type == "RoutesActive"
        assert vservice.get_condition("VirtualServiceActive") is None

    def test_deepcopy_is_independent(self):
        """Test deepcopy does not share mutable state."""
        vservice = VirtualService.from_dict(VSERVICE_MANIFEST)
        clone = vservice.deepcopy()
        clone.metadata.finalizers.append("x")

        assert vservice.metadata.finalizers == []


class TestMesh:
    """Tests for the Mesh model."""

    def test_is_active(self):
        """Test a mesh with MeshActive true is active."""
        mesh = object_from_manifest(
            {
                "kind": "Mesh",
                "metadata": {"name": "global"},
                "status": {"conditions": [{"type": "MeshActive", "status": "True"}]},
            }
        )
        assert isinstance(mesh, Mesh)
        assert mesh.is_active() is True
        assert mesh.is_deleting is False

    def test_missing_condition_is_inactive(self):
        """Test a mesh without conditions is inactive."""
        mesh = Mesh.from_dict({"metadata": {"name": "global"}})
        assert mesh.is_active() is False

    def test_deleting(self):
        """Test a mesh with a deletion timestamp is deleting."""
        mesh = Mesh.from_dict(
            {
                "metadata": {
                    "name": "global",
                    "deletionTimestamp": "2024-05-01T12:00:00Z",
                }
            }
        )
        assert mesh.is_deleting is True


def test_object_from_manifest_unknown_kind():
    """Test unknown kinds are rejected."""
    with pytest.raises(ValueError):
        object_from_manifest({"kind": "VirtualNode", "metadata": {"name": "n"}})
