"""
Keeps exactly one watch per Service, Ingress or Gateway referenced by any GlobalAccelerator.
"""

from typing import Callable, Dict, Mapping, Optional, Sequence, Set, Tuple
import logging
import queue
import threading
from ..config import DEFAULT_WATCH_TIMEOUT
from ..k8s.client import ClusterClient
from ..k8s.watcher import ResourceEvent, ResourceWatcher
from .types import EndpointType, GlobalAccelerator, LoadedEndpoint

logger = logging.getLogger(__name__)

WATCHED_KINDS = (EndpointType.SERVICE, EndpointType.INGRESS, EndpointType.GATEWAY)

WatcherFactory = Callable[[EndpointType, str, str], ResourceWatcher]


class EndpointResourcesManager:
    """
    Starts, shares and stops resource watches on behalf of GlobalAccelerators.

    A watch is reference counted by its consumers and stopped when the last one
    leaves. Watch start and stop happen under the manager lock.

    Args:
        cluster: Kubernetes access used to build watch list functions
        event_queues: One queue per watched kind receiving ResourceEvents
        watch_timeout: Server-side timeout of a single watch stream
        watcher_factory: Builds a started watcher for (kind, namespace, name)
    """

    def __init__(self, cluster: ClusterClient, event_queues: Mapping[EndpointType, 'queue.Queue[ResourceEvent]'],
                 watch_timeout: int = DEFAULT_WATCH_TIMEOUT, watcher_factory: Optional[WatcherFactory] = None):
        self.cluster = cluster
        self.event_queues = dict(event_queues)
        self.watch_timeout = watch_timeout
        self.watcher_factory = watcher_factory or self._new_resource_watcher
        self._lock = threading.Lock()
        self._watches: Dict[EndpointType, Dict[Tuple[str, str], ResourceWatcher]] = {
            kind: {} for kind in WATCHED_KINDS
        }

    def _new_resource_watcher(self, kind: EndpointType, namespace: str, name: str) -> ResourceWatcher:
        return ResourceWatcher(kind, namespace, name, self.cluster.watch_list_fn(kind),
                               self.event_queues[kind], timeout_seconds=self.watch_timeout)

    def monitor_endpoint_resources(self, ga: GlobalAccelerator, endpoints: Sequence[LoadedEndpoint]):
        """Align the watches consumed by ga with its current endpoints."""
        owner = ga.key
        with self._lock:
            desired: Dict[EndpointType, Set[Tuple[str, str]]] = {kind: set() for kind in WATCHED_KINDS}
            gateway_supported = None
            for endpoint in endpoints:
                if endpoint.type not in self._watches:
                    continue
                if endpoint.type == EndpointType.GATEWAY:
                    if gateway_supported is None:
                        gateway_supported = self.has_gateway_support()
                    if not gateway_supported:
                        continue
                if endpoint.namespace and endpoint.namespace != ga.namespace and not endpoint.cross_namespace_allowed:
                    logger.info(f"Skipping watch of {endpoint.type.value} {endpoint.namespace}/{endpoint.name} "
                                f"for GlobalAccelerator {owner}: cross-namespace reference not allowed")
                    continue
                ref = (endpoint.namespace, endpoint.name)
                desired[endpoint.type].add(ref)
                watches = self._watches[endpoint.type]
                if ref not in watches:
                    logger.debug(f"Starting watch for {endpoint.type.value} {ref[0]}/{ref[1]}")
                    watches[ref] = self.watcher_factory(endpoint.type, ref[0], ref[1])
                watches[ref].add_consumer(owner)

            for kind in WATCHED_KINDS:
                self._cleanup(kind, owner, desired[kind])

    def remove_ga(self, owner: str):
        """Drop owner from every watch it consumes."""
        with self._lock:
            for kind in WATCHED_KINDS:
                self._cleanup(kind, owner, set())

    def _cleanup(self, kind: EndpointType, owner: str, keep: Set[Tuple[str, str]]):
        watches = self._watches[kind]
        for ref in list(watches):
            watcher = watches[ref]
            if ref in keep or not watcher.has_consumer(owner):
                continue
            watcher.remove_consumer(owner)
            if not watcher.has_consumers():
                logger.debug(f"Stopping watch for {kind.value} {ref[0]}/{ref[1]}")
                watcher.stop()
                del watches[ref]

    def watched_resources(self, kind: EndpointType) -> Dict[Tuple[str, str], Set[str]]:
        """Snapshot of watched (namespace, name) pairs of a kind and their consumers."""
        with self._lock:
            return {ref: set(w.consumers) for ref, w in self._watches[kind].items()}

    def has_gateway_support(self) -> bool:
        supported = self.cluster.has_gateway_support()
        if not supported:
            logger.info("Gateway API CRDs are not available")
        return supported
