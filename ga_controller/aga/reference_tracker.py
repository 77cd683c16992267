"""
Tracks which GlobalAccelerators reference which Services, Ingresses, Gateways and load balancers.
"""

from typing import Dict, Iterable, Set
import logging
import threading
from .types import EndpointReference, ResourceKey

logger = logging.getLogger(__name__)


class ReferenceTracker:
    """
    Many-to-many map between GlobalAccelerators (owner keys "namespace/name") and resources.

    The two maps are kept as exact inverses and a resource only appears while
    at least one owner references it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._resource_map: Dict[ResourceKey, Set[str]] = {}
        self._owner_map: Dict[str, Set[ResourceKey]] = {}

    def update_references_for_ga(self, owner: str, refs: Iterable[EndpointReference]):
        """Replace the full set of resources referenced by owner."""
        desired = {ResourceKey.from_reference(ref) for ref in refs}
        with self._lock:
            current = self._owner_map.get(owner, set())
            for key in desired - current:
                self._resource_map.setdefault(key, set()).add(owner)
            for key in current - desired:
                self._release(key, owner)
            if desired:
                self._owner_map[owner] = desired
            else:
                self._owner_map.pop(owner, None)
        logger.debug(f"GlobalAccelerator {owner} references {len(desired)} resource(s)")

    def remove_ga(self, owner: str):
        with self._lock:
            for key in self._owner_map.pop(owner, set()):
                self._release(key, owner)
        logger.debug(f"Removed references of GlobalAccelerator {owner}")

    def _release(self, key: ResourceKey, owner: str):
        owners = self._resource_map.get(key)
        if owners is None:
            return
        owners.discard(owner)
        if not owners:
            del self._resource_map[key]

    def is_resource_referenced(self, key: ResourceKey) -> bool:
        with self._lock:
            return key in self._resource_map

    def get_owners_for_resource(self, key: ResourceKey) -> Set[str]:
        with self._lock:
            return set(self._resource_map.get(key, ()))

    def get_resources_for_ga(self, owner: str) -> Set[ResourceKey]:
        with self._lock:
            return set(self._owner_map.get(owner, ()))
