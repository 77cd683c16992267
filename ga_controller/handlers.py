import kopf
import logging
import os
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set, Tuple
from kubernetes.client.rest import ApiException
from .aga.endpoint_discovery import EndpointDiscovery
from .aga.endpoint_loader import EndpointLoader
from .aga.endpoint_resources_manager import WATCHED_KINDS, EndpointResourcesManager
from .aga.model_builder import ModelBuilder
from .aga.reference_tracker import ReferenceTracker
from .aga.status import (
    REASON_ENDPOINT_LOAD_FAILED,
    REASON_MODEL_BUILT,
    REASON_VALIDATION_FAILED,
    build_status,
    status_changed,
)
from .aga.types import EndpointType, GlobalAccelerator, ResourceKey, get_all_endpoints, owner_key
from .aws.client import get_elbv2_client
from .aws.dns_resolver import DNSToLoadBalancerResolver
from .config import DEFAULT_RECONCILE_INTERVAL, ControllerConfig, load_config
from .errors import ConfigError, FatalEndpointsError, ValidationError
from .k8s.client import (
    GA_GROUP,
    GA_KIND,
    GA_PLURAL,
    GA_VERSION,
    GATEWAY_GROUP,
    REFERENCE_GRANT_PLURAL,
    REFERENCE_GRANT_VERSION,
    ClusterClient,
    is_not_found,
    load_kube_config,
)
from .k8s.cross_namespace import ReferenceGrantValidator
from .k8s.watcher import ResourceEvent

logger = logging.getLogger(__name__)

# Constants
FATAL_RETRY_DELAY = 30  # seconds before kopf retries a reconcile blocked by fatal endpoint errors
EVENT_POLL_TIMEOUT = 1  # seconds a consumer thread blocks on its queue before checking for shutdown

RECONCILE_INTERVAL = int(os.getenv('RECONCILE_INTERVAL', DEFAULT_RECONCILE_INTERVAL))


@dataclass
class Services:
    """Long-lived collaborators shared by every reconciliation."""
    config: ControllerConfig
    cluster: ClusterClient
    loader: EndpointLoader
    model_builder: ModelBuilder
    tracker: ReferenceTracker
    resources_manager: EndpointResourcesManager
    event_queues: Dict[EndpointType, 'queue.Queue[ResourceEvent]']
    stop_event: threading.Event = field(default_factory=threading.Event)
    grant_sources: Dict[Tuple[str, str], Set[str]] = field(default_factory=dict)


def create_services(config: ControllerConfig, cluster: Optional[ClusterClient] = None,
                    elbv2: Any = None) -> Services:
    """
    Construct the services used by the handlers.

    Args:
        config: Controller configuration
        cluster: Kubernetes access, created from the loaded kube config when omitted
        elbv2: boto3 ELBv2 client, created for the cluster region when omitted

    Returns:
        Services
    """
    cluster = cluster or ClusterClient(request_timeout=config.request_timeout)
    elbv2 = elbv2 or get_elbv2_client(config.cluster_region)
    event_queues = {kind: queue.Queue() for kind in WATCHED_KINDS}

    dns_resolver = DNSToLoadBalancerResolver(elbv2, ttl=config.dns_cache_ttl)
    loader = EndpointLoader(cluster, dns_resolver, ReferenceGrantValidator(cluster))
    discovery = EndpointDiscovery(cluster, elbv2)
    return Services(
        config=config,
        cluster=cluster,
        loader=loader,
        model_builder=ModelBuilder(config, discovery),
        tracker=ReferenceTracker(),
        resources_manager=EndpointResourcesManager(cluster, event_queues, watch_timeout=config.watch_timeout),
        event_queues=event_queues,
    )


def update_status(services: Services, body: Dict[str, Any], ga: GlobalAccelerator, ready: bool, reason: str,
                  message: str, loaded=None):
    current = body.get('status') or {}
    new_status = build_status(current, ga, ready, reason, message, loaded)
    if not status_changed(current, new_status):
        return
    try:
        services.cluster.patch_global_accelerator_status(ga.namespace, ga.name, new_status)
    except ApiException as e:
        logger.error(f"Failed to update status of GlobalAccelerator {ga.key}: {str(e)}")


def reconcile(services: Services, body: Dict[str, Any], log: Any = logger):
    """
    Load endpoints, build the model and record references for one GlobalAccelerator.

    References and watches are only updated after a successful build.

    Returns:
        model.Stack: The built stack

    Raises:
        kopf.PermanentError: The GlobalAccelerator cannot be built as written
        kopf.TemporaryError: An endpoint failed to load fatally
    """
    ga = GlobalAccelerator.from_dict(body)
    refs = get_all_endpoints(ga)
    loaded, fatal_errors = services.loader.load_endpoints(ga, refs)

    try:
        stack = services.model_builder.build(ga, loaded, fatal_errors)
    except ValidationError as e:
        log.error(f"Invalid GlobalAccelerator {ga.key}: {str(e)}")
        update_status(services, body, ga, False, REASON_VALIDATION_FAILED, str(e), loaded)
        raise kopf.PermanentError(f"Failed to build model: {str(e)}")
    except FatalEndpointsError as e:
        log.error(str(e))
        update_status(services, body, ga, False, REASON_ENDPOINT_LOAD_FAILED, str(e), loaded)
        raise kopf.TemporaryError(str(e), delay=FATAL_RETRY_DELAY)

    services.tracker.update_references_for_ga(ga.key, refs)
    services.resources_manager.monitor_endpoint_resources(ga, loaded)

    log.info(f"Built model for GlobalAccelerator {ga.key}")
    log.debug(f"Model for GlobalAccelerator {ga.key}: {stack.to_json()}")
    update_status(services, body, ga, True, REASON_MODEL_BUILT,
                  f"Built {len(stack.listeners)} listener(s) and {len(stack.endpoint_groups)} endpoint group(s)",
                  loaded)
    return stack


def forget(services: Services, owner: str):
    services.tracker.remove_ga(owner)
    services.resources_manager.remove_ga(owner)


def reconcile_owner(services: Services, owner: str):
    """Re-run the reconciliation of a GlobalAccelerator fetched fresh from the API server."""
    namespace, name = owner.split('/', 1)
    try:
        body = services.cluster.get_global_accelerator(namespace, name)
    except ApiException as e:
        if is_not_found(e):
            logger.info(f"GlobalAccelerator {owner} no longer exists, dropping its references")
            forget(services, owner)
            return
        logger.error(f"Failed to get GlobalAccelerator {owner}: {str(e)}")
        return

    if (body.get('metadata') or {}).get('deletionTimestamp'):
        return
    try:
        reconcile(services, body)
    except (kopf.PermanentError, kopf.TemporaryError) as e:
        logger.warning(f"Requeued reconcile of GlobalAccelerator {owner} failed: {str(e)}")


def handle_resource_event(services: Services, event: ResourceEvent):
    key = ResourceKey(event.kind, event.namespace, event.name)
    owners = services.tracker.get_owners_for_resource(key)
    logger.debug(f"{event.event_type} {key} affects {len(owners)} GlobalAccelerator(s)")
    for owner in sorted(owners):
        reconcile_owner(services, owner)


def consume_events(services: Services, event_queue: 'queue.Queue[ResourceEvent]'):
    """Requeue the owners of every changed resource until shutdown."""
    while not services.stop_event.is_set():
        try:
            event = event_queue.get(timeout=EVENT_POLL_TIMEOUT)
        except queue.Empty:
            continue
        try:
            handle_resource_event(services, event)
        except Exception as e:
            logger.error(f"Error handling {event.event_type} event for {event.kind.value} "
                         f"{event.namespace}/{event.name}: {str(e)}", exc_info=True)
        finally:
            event_queue.task_done()


def start_consumers(services: Services):
    for kind, event_queue in services.event_queues.items():
        thread = threading.Thread(target=consume_events, args=(services, event_queue), daemon=True,
                                  name=f"consume-{kind.value}")
        thread.start()
        logger.info(f"Started event consumer for {kind.value} watches")


def grant_from_namespaces(grant: Dict[str, Any]) -> Set[str]:
    namespaces = set()
    for entry in (grant.get('spec') or {}).get('from') or []:
        if entry.get('group') == GA_GROUP and entry.get('kind') == GA_KIND and entry.get('namespace'):
            namespaces.add(entry['namespace'])
    return namespaces


def references_namespace(ga: GlobalAccelerator, namespace: str) -> bool:
    for ref in get_all_endpoints(ga):
        if ref.type != EndpointType.ENDPOINT_ID and ref.namespace == namespace and ref.namespace != ga.namespace:
            return True
    return False


def handle_reference_grant(services: Services, event_type: str, grant: Dict[str, Any], log: Any = logger):
    """
    Reconcile GlobalAccelerators whose cross-namespace access a ReferenceGrant change may affect.

    The previously seen `from` namespaces of the grant are included so a grant that stops
    allowing a namespace still requeues its GlobalAccelerators.
    """
    meta = grant.get('metadata') or {}
    grant_key = (meta.get('namespace', ''), meta.get('name', ''))
    previous = services.grant_sources.get(grant_key, set())
    current = grant_from_namespaces(grant)
    if event_type == 'DELETED':
        services.grant_sources.pop(grant_key, None)
    else:
        services.grant_sources[grant_key] = current

    from_namespaces = previous | current
    if not from_namespaces:
        return

    for item in services.cluster.list_global_accelerators():
        ga = GlobalAccelerator.from_dict(item)
        if ga.namespace in from_namespaces and references_namespace(ga, grant_key[0]):
            log.info(f"ReferenceGrant {grant_key[0]}/{grant_key[1]} changed, reconciling GlobalAccelerator {ga.key}")
            reconcile_owner(services, ga.key)


@kopf.on.startup()
def startup_fn(memo: kopf.Memo, logger, **kwargs):
    """Load configuration and construct the controller services."""
    try:
        config = load_config()
    except ConfigError as e:
        logger.error(str(e))
        raise kopf.PermanentError(str(e))

    load_kube_config()
    services = create_services(config)
    memo.services = services
    start_consumers(services)
    if not services.resources_manager.has_gateway_support():
        logger.info("Gateway endpoints will not be watched")
    logger.info(f"GlobalAccelerator controller started for cluster {config.cluster_name}")


@kopf.on.cleanup()
def cleanup_fn(memo: kopf.Memo, logger, **kwargs):
    services = getattr(memo, 'services', None)
    if services is not None:
        services.stop_event.set()
        logger.info("Stopped event consumers")


@kopf.on.create(GA_GROUP, GA_VERSION, GA_PLURAL)
@kopf.on.update(GA_GROUP, GA_VERSION, GA_PLURAL)
@kopf.on.resume(GA_GROUP, GA_VERSION, GA_PLURAL)
def reconcile_fn(body: Dict[str, Any], memo: kopf.Memo, logger, **kwargs):
    reconcile(memo.services, dict(body), logger)


@kopf.on.delete(GA_GROUP, GA_VERSION, GA_PLURAL)
def delete_fn(meta: Dict[str, Any], memo: kopf.Memo, logger, **kwargs):
    owner = owner_key(meta['namespace'], meta['name'])
    forget(memo.services, owner)
    logger.info(f"Released references of GlobalAccelerator {owner}")


@kopf.timer(GA_GROUP, GA_VERSION, GA_PLURAL, interval=RECONCILE_INTERVAL, initial_delay=RECONCILE_INTERVAL)
def resync_fn(body: Dict[str, Any], memo: kopf.Memo, logger, **kwargs):
    """Periodic resync of every GlobalAccelerator."""
    reconcile(memo.services, dict(body), logger)


@kopf.on.event(GATEWAY_GROUP, REFERENCE_GRANT_VERSION, REFERENCE_GRANT_PLURAL)
def reference_grant_fn(event: Dict[str, Any], memo: kopf.Memo, logger, **kwargs):
    services = getattr(memo, 'services', None)
    if services is None:
        return
    handle_reference_grant(services, event.get('type') or '', event.get('object') or {}, logger)
