"""
A single-object watch that turns API server events into ResourceEvents on a queue.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional, Set
import functools
import logging
import queue
import threading
from kubernetes import watch
from kubernetes.client.rest import ApiException
from ..aga.types import EndpointType
from ..config import DEFAULT_WATCH_TIMEOUT

logger = logging.getLogger(__name__)

RETRY_DELAY = 5  # seconds between failed watch attempts
JOIN_TIMEOUT = 2  # seconds stop() waits for the watch thread to exit


@dataclass(frozen=True)
class ResourceEvent:
    """Notification that a watched resource changed."""
    kind: EndpointType
    namespace: str
    name: str
    event_type: str


class ResourceWatcher:
    """
    Watches exactly one named object and records which GlobalAccelerators consume it.

    The consumer set is owned by the resources manager and only mutated under its lock.

    Args:
        kind: Endpoint kind of the watched object
        namespace: Namespace of the watched object
        name: Name of the watched object
        list_fn: Namespaced list function accepting namespace and field_selector
        event_queue: Queue receiving ResourceEvents
        timeout_seconds: Server-side timeout of one watch stream
        start: Start the background thread immediately
    """

    def __init__(self, kind: EndpointType, namespace: str, name: str, list_fn: Callable[..., Any],
                 event_queue: 'queue.Queue[ResourceEvent]', timeout_seconds: int = DEFAULT_WATCH_TIMEOUT,
                 start: bool = True):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.list_fn = list_fn
        self.event_queue = event_queue
        self.timeout_seconds = timeout_seconds
        self.consumers: Set[str] = set()
        self.resource_version: Optional[str] = None
        self._stopped = threading.Event()
        self._watch: Optional[watch.Watch] = None
        self._response: Any = None
        self._thread: Optional[threading.Thread] = None
        if start:
            self.start()

    def __repr__(self):
        return f"ResourceWatcher({self.kind.value} {self.namespace}/{self.name})"

    def start(self):
        self._thread = threading.Thread(target=self._run, daemon=True,
                                        name=f"watch-{self.kind.value}-{self.namespace}-{self.name}")
        self._thread.start()
        logger.info(f"Started watch for {self.kind.value} {self.namespace}/{self.name}")

    def stop(self):
        """Stop the watch, unblocking an in-flight stream read, and wait briefly for the thread."""
        self._stopped.set()
        if self._watch is not None:
            self._watch.stop()
        response = self._response
        if response is not None:
            response.shutdown()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(JOIN_TIMEOUT)
            if self._thread.is_alive():
                logger.warning(f"Watch thread for {self.kind.value} {self.namespace}/{self.name} still running")
        logger.info(f"Stopped watch for {self.kind.value} {self.namespace}/{self.name}")

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def add_consumer(self, owner: str):
        self.consumers.add(owner)

    def remove_consumer(self, owner: str):
        self.consumers.discard(owner)

    def has_consumer(self, owner: str) -> bool:
        return owner in self.consumers

    def has_consumers(self) -> bool:
        return bool(self.consumers)

    def _run(self):
        while not self._stopped.is_set():
            try:
                self.run_once()
            except ApiException as e:
                if self._stopped.is_set():
                    break
                if e.status == 410:
                    logger.debug(f"Watch for {self.kind.value} {self.namespace}/{self.name} expired, relisting")
                    self.resource_version = None
                    continue
                logger.error(f"Watch for {self.kind.value} {self.namespace}/{self.name} failed: {str(e)}")
                self._stopped.wait(RETRY_DELAY)
            except Exception as e:
                # stop() shuts the stream down underneath a blocked read
                if self._stopped.is_set():
                    break
                logger.error(f"Watch for {self.kind.value} {self.namespace}/{self.name} failed: {str(e)}",
                             exc_info=True)
                self._stopped.wait(RETRY_DELAY)

    def _recording_list_fn(self) -> Callable[..., Any]:
        """Wrap list_fn so the streaming HTTP response can be shut down by stop()."""
        @functools.wraps(self.list_fn)
        def list_fn(*args, **kwargs):
            response = self.list_fn(*args, **kwargs)
            self._response = response
            if self._stopped.is_set():
                response.shutdown()
            return response
        return list_fn

    def run_once(self) -> int:
        """
        Consume one watch stream until it times out or the watcher is stopped.

        Returns:
            int: Number of events put on the queue
        """
        w = watch.Watch()
        self._watch = w
        kwargs = {
            'namespace': self.namespace,
            'field_selector': f"metadata.name={self.name}",
            'timeout_seconds': self.timeout_seconds,
        }
        if self.resource_version:
            kwargs['resource_version'] = self.resource_version

        count = 0
        try:
            for event in w.stream(self._recording_list_fn(), **kwargs):
                if self._stopped.is_set():
                    w.stop()
                    break
                event_type = event.get('type', '')
                self.resource_version = _resource_version(event.get('object')) or self.resource_version
                logger.debug(f"{event_type} event for {self.kind.value} {self.namespace}/{self.name}")
                self.event_queue.put(ResourceEvent(self.kind, self.namespace, self.name, event_type))
                count += 1
        finally:
            self._response = None
        return count


def _resource_version(obj: Any) -> Optional[str]:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return (obj.get('metadata') or {}).get('resourceVersion')
    metadata = getattr(obj, 'metadata', None)
    return getattr(metadata, 'resource_version', None)
