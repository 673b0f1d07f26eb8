"""
Remote control-plane clients.

``ControlPlaneClient`` defines the operations the reconciler needs;
``RestControlPlaneClient`` implements them over HTTP.
"""

from cloud.base import ControlPlaneClient
from cloud.rest_client import RestControlPlaneClient

__all__ = ["ControlPlaneClient", "RestControlPlaneClient"]
