"""
Error taxonomy for VirtualService reconciliation.

Not-found and conflict errors are shared by the object store and the
remote control-plane client so that callers can branch on the kind of
failure without caring where it came from.
"""

from typing import Dict, List, Optional


class ReconcileError(Exception):
    """Base class for all reconciliation errors."""


class NotFoundError(ReconcileError):
    """The requested object does not exist (locally or remotely)."""

    def __init__(self, kind: str, name: str, namespace: Optional[str] = None):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        where = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {where} not found")


class ConflictError(ReconcileError):
    """An optimistic-concurrency write lost against a concurrent edit."""


class ValidationError(ReconcileError):
    """The declared spec or the parent state does not allow progress."""


class MeshNotActiveError(ValidationError):
    """The parent Mesh exists but is not active."""

    def __init__(self, mesh_name: str, virtual_service: str):
        self.mesh_name = mesh_name
        self.virtual_service = virtual_service
        super().__init__(
            f"mesh {mesh_name} must be active for virtual service {virtual_service}"
        )


class RemoteAPIError(ReconcileError):
    """Unexpected failure from the remote control plane."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class RouteSyncError(ReconcileError):
    """
    One or more route operations failed.

    Successful operations are not rolled back; ``failures`` maps each
    failed route name to the error raised for it.
    """

    def __init__(self, failures: Dict[str, Exception]):
        self.failures = dict(failures)
        super().__init__(f"error updating routes: {' '.join(self.failed_names)}")

    @property
    def failed_names(self) -> List[str]:
        return sorted(self.failures)
