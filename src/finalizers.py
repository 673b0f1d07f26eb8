"""
Finalizer helpers.

A finalizer is a token on ``metadata.finalizers`` that keeps a deleted
object around until the controller that owns the token has cleaned up.
These helpers only touch the in-memory object; callers persist it.
"""

VIRTUAL_SERVICE_DELETION_FINALIZER = "virtualServiceDeletion.appmesh.k8s.aws"


def has_finalizer(obj, finalizer: str) -> bool:
    """Return True if the finalizer is present on the object."""
    return finalizer in obj.metadata.finalizers


def add_finalizer(obj, finalizer: str) -> bool:
    """
    Add a finalizer to the object.

    Returns:
        True if the object changed, False if the finalizer was already there.
    """
    if has_finalizer(obj, finalizer):
        return False
    obj.metadata.finalizers.append(finalizer)
    return True


def remove_finalizer(obj, finalizer: str) -> bool:
    """
    Remove a finalizer from the object.

    Returns:
        True if the object changed, False if the finalizer was absent.
    """
    if not has_finalizer(obj, finalizer):
        return False
    obj.metadata.finalizers = [f for f in obj.metadata.finalizers if f != finalizer]
    return True
