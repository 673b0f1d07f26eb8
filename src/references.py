"""
Reference extraction for VirtualServices.

Pure functions that report which VirtualNode and VirtualRouter objects a
VirtualService delegates to through ``spec.provider``. The watch layer
uses them to requeue VirtualServices when a referenced object changes.
"""

from typing import Callable, Dict, List, Set, Tuple

from models import (
    KIND_VIRTUAL_NODE,
    KIND_VIRTUAL_ROUTER,
    ObjectKey,
    ObjectReference,
    VirtualService,
)


def extract_virtual_node_references(vservice: VirtualService) -> List[ObjectReference]:
    provider = vservice.spec.provider
    if provider is None or provider.virtual_node is None:
        return []
    return [provider.virtual_node]


def extract_virtual_router_references(
    vservice: VirtualService,
) -> List[ObjectReference]:
    provider = vservice.spec.provider
    if provider is None or provider.virtual_router is None:
        return []
    return [provider.virtual_router]


def object_key_for_reference(
    vservice: VirtualService, ref: ObjectReference
) -> ObjectKey:
    """Resolve a reference; a missing namespace means the service's own."""
    return ObjectKey(ref.namespace or vservice.metadata.namespace, ref.name)


def virtual_node_reference_index(vservice: VirtualService) -> List[ObjectKey]:
    return [
        object_key_for_reference(vservice, ref)
        for ref in extract_virtual_node_references(vservice)
    ]


def virtual_router_reference_index(vservice: VirtualService) -> List[ObjectKey]:
    return [
        object_key_for_reference(vservice, ref)
        for ref in extract_virtual_router_references(vservice)
    ]


INDEX_FUNCS: Dict[str, Callable[[VirtualService], List[ObjectKey]]] = {
    KIND_VIRTUAL_NODE: virtual_node_reference_index,
    KIND_VIRTUAL_ROUTER: virtual_router_reference_index,
}


class ReferenceIndex:
    """
    Reverse index from referenced object to dependent VirtualServices.

    Not thread-safe; the watch layer owns one instance and feeds it
    add/update/delete events.
    """

    def __init__(self):
        self._dependents: Dict[Tuple[str, ObjectKey], Set[ObjectKey]] = {}
        self._references: Dict[ObjectKey, Set[Tuple[str, ObjectKey]]] = {}

    def upsert(self, vservice: VirtualService) -> None:
        """Record (or refresh) the references of a VirtualService."""
        self.remove(vservice.key)
        entries = {
            (kind, key)
            for kind, index_func in INDEX_FUNCS.items()
            for key in index_func(vservice)
        }
        self._references[vservice.key] = entries
        for entry in entries:
            self._dependents.setdefault(entry, set()).add(vservice.key)

    def remove(self, vservice_key: ObjectKey) -> None:
        for entry in self._references.pop(vservice_key, set()):
            dependents = self._dependents.get(entry)
            if dependents is None:
                continue
            dependents.discard(vservice_key)
            if not dependents:
                del self._dependents[entry]

    def dependents(self, kind: str, key: ObjectKey) -> List[ObjectKey]:
        """VirtualService keys that reference the given object, sorted."""
        return sorted(
            self._dependents.get((kind, key), set()),
            key=lambda k: (k.namespace, k.name),
        )

    def items(self) -> List[Tuple[str, ObjectKey, List[ObjectKey]]]:
        return [
            (kind, key, self.dependents(kind, key))
            for kind, key in sorted(
                self._dependents, key=lambda e: (e[0], e[1].namespace, e[1].name)
            )
        ]
