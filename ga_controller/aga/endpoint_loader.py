"""
Resolves endpoint declarations into load balancer ARNs.

Loading never raises: every failure is classified as Warning (the endpoint is
left out of the model) or Fatal (the reconciliation must be retried) and
recorded on the returned LoadedEndpoint.
"""

from typing import Any, Dict, List, Optional, Tuple
import copy
import logging
import urllib3
from kubernetes.client.rest import ApiException
from ..errors import EndpointLoadError, fatal_error, warning_error
from ..k8s.client import ClusterClient
from ..k8s.cross_namespace import ReferenceGrantValidator
from .types import (
    DEFAULT_ENDPOINT_WEIGHT,
    EndpointReference,
    EndpointSpec,
    EndpointStatus,
    EndpointType,
    GlobalAccelerator,
    LoadedEndpoint,
)

logger = logging.getLogger(__name__)

# Hostnames of ALBs contain this; NLB hostnames use <name>.elb.<region>.amazonaws.com
ALB_HOSTNAME_MARKER = "elb.amazonaws.com"

CROSS_NAMESPACE_NOT_ALLOWED_MSG = "cross-namespace reference not allowed"
ENDPOINT_NOT_FOUND_MSG = "endpoint resource not found"
API_SERVER_ERROR_MSG = "failed to get endpoint resource from API server"
LOAD_BALANCER_NOT_FOUND_MSG = "endpoint resource has no load balancer DNS name"
DNS_RESOLUTION_FAILED_MSG = "failed to resolve load balancer DNS name"
ENDPOINT_ID_EMPTY_MSG = "endpointID is empty"
UNEXPECTED_ERROR_MSG = "unexpected error loading endpoint"


def extract_service_dns(service: Dict[str, Any]) -> str:
    meta = service.get('metadata') or {}
    ident = f"{meta.get('namespace')}/{meta.get('name')}"
    if (service.get('spec') or {}).get('type') != 'LoadBalancer':
        raise ValueError(f"service {ident} is not of type LoadBalancer")
    ingress = ((service.get('status') or {}).get('loadBalancer') or {}).get('ingress') or []
    if not ingress:
        raise ValueError(f"service {ident} does not have a LoadBalancer")
    for entry in ingress:
        if entry.get('hostname'):
            return entry['hostname']
    raise ValueError(f"service {ident} LoadBalancer has no DNS name")


def find_ingress_dns_names(ingress: Dict[str, Any]) -> Tuple[str, str]:
    """
    Split the hostnames in an Ingress status into (ALB, NLB) by hostname pattern.

    Later entries overwrite earlier ones of the same kind.
    """
    alb_dns, nlb_dns = '', ''
    for entry in ((ingress.get('status') or {}).get('loadBalancer') or {}).get('ingress') or []:
        hostname = entry.get('hostname') or ''
        if not hostname:
            continue
        if ALB_HOSTNAME_MARKER in hostname:
            alb_dns = hostname
        else:
            nlb_dns = hostname
    return alb_dns, nlb_dns


def extract_ingress_dns(ingress: Dict[str, Any]) -> str:
    meta = ingress.get('metadata') or {}
    ident = f"{meta.get('namespace')}/{meta.get('name')}"
    if not ((ingress.get('status') or {}).get('loadBalancer') or {}).get('ingress'):
        raise ValueError(f"ingress {ident} does not have a LoadBalancer")
    alb_dns, _ = find_ingress_dns_names(ingress)
    if alb_dns:
        return alb_dns
    raise ValueError(f"ingress {ident} LoadBalancer has no DNS name")


def extract_gateway_dns(gateway: Dict[str, Any]) -> str:
    meta = gateway.get('metadata') or {}
    ident = f"{meta.get('namespace')}/{meta.get('name')}"
    addresses = (gateway.get('status') or {}).get('addresses') or []
    if not addresses:
        raise ValueError(f"gateway {ident} does not have any addresses")
    for addr in addresses:
        if addr.get('type') == 'Hostname' and addr.get('value'):
            return addr['value']
    raise ValueError(f"gateway {ident} has no hostname address")


DNS_EXTRACTORS = {
    EndpointType.SERVICE: extract_service_dns,
    EndpointType.INGRESS: extract_ingress_dns,
    EndpointType.GATEWAY: extract_gateway_dns,
}


class EndpointLoader:
    """
    Loads GlobalAccelerator endpoints.

    Args:
        cluster: Kubernetes access for Services, Ingresses and Gateways
        dns_resolver: Object with resolve_dns_to_load_balancer_arn(dns_name)
        cross_namespace_validator: Authorizes references into other namespaces
    """

    def __init__(self, cluster: ClusterClient, dns_resolver: Any,
                 cross_namespace_validator: ReferenceGrantValidator):
        self.cluster = cluster
        self.dns_resolver = dns_resolver
        self.cross_namespace_validator = cross_namespace_validator

    def load_endpoint(self, endpoint: EndpointSpec, default_namespace: str) -> LoadedEndpoint:
        """Resolve one endpoint. Always returns a result; failures are recorded in its status."""
        namespace = endpoint.resolved_namespace(default_namespace)
        if endpoint.type == EndpointType.ENDPOINT_ID:
            namespace = ''
        name = endpoint.name or ''
        weight = endpoint.weight if endpoint.weight is not None else DEFAULT_ENDPOINT_WEIGHT
        state = {'cross_namespace_allowed': False}

        try:
            if endpoint.type == EndpointType.ENDPOINT_ID:
                resolved = self._load_endpoint_id(endpoint, default_namespace)
            else:
                resolved = self._load_resource_with_dns(endpoint, namespace, name, default_namespace, state)
        except EndpointLoadError as e:
            status = EndpointStatus.FATAL if e.is_fatal() else EndpointStatus.WARNING
            return LoadedEndpoint(type=endpoint.type, name=name, namespace=namespace, weight=weight,
                                  endpoint=endpoint, status=status, message=e.message, error=e,
                                  cross_namespace_allowed=state['cross_namespace_allowed'])
        except Exception as e:
            err = fatal_error(UNEXPECTED_ERROR_MSG, e, endpoint, default_namespace)
            return LoadedEndpoint(type=endpoint.type, name=name, namespace=namespace, weight=weight,
                                  endpoint=endpoint, status=EndpointStatus.FATAL, message=err.message,
                                  error=err)

        return LoadedEndpoint(type=endpoint.type, name=name, namespace=namespace, weight=weight,
                              endpoint=endpoint, status=EndpointStatus.LOADED, **resolved)

    def _load_endpoint_id(self, endpoint: EndpointSpec, parent_namespace: str) -> Dict[str, Any]:
        if not endpoint.endpoint_id:
            raise fatal_error(ENDPOINT_ID_EMPTY_MSG,
                              ValueError("endpointID is required for endpoint type EndpointID"),
                              endpoint, parent_namespace)
        return {'arn': endpoint.endpoint_id, 'message': "Using provided EndpointID directly"}

    def _load_resource_with_dns(self, endpoint: EndpointSpec, namespace: str, name: str,
                                parent_namespace: str, state: Dict[str, Any]) -> Dict[str, Any]:
        if namespace != parent_namespace:
            try:
                allowed = self.cross_namespace_validator.is_allowed(parent_namespace, endpoint.type,
                                                                    namespace, name)
            except Exception as e:
                raise warning_error(CROSS_NAMESPACE_NOT_ALLOWED_MSG, e, endpoint, parent_namespace)
            if not allowed:
                raise warning_error(
                    CROSS_NAMESPACE_NOT_ALLOWED_MSG,
                    PermissionError(f"no ReferenceGrant in namespace {namespace} allows GlobalAccelerators "
                                    f"in namespace {parent_namespace} to reference {endpoint.type.value} {name}"),
                    endpoint, parent_namespace)
            state['cross_namespace_allowed'] = True
            logger.debug(f"Cross-namespace reference from {parent_namespace} to "
                         f"{endpoint.type.value} {namespace}/{name} allowed by ReferenceGrant")

        try:
            resource = self.cluster.get_resource(endpoint.type, namespace, name)
        except ApiException as e:
            if e.status == 404:
                raise warning_error(ENDPOINT_NOT_FOUND_MSG, e, endpoint, parent_namespace)
            raise fatal_error(API_SERVER_ERROR_MSG, e, endpoint, parent_namespace)
        except urllib3.exceptions.HTTPError as e:
            raise fatal_error(API_SERVER_ERROR_MSG, e, endpoint, parent_namespace)

        try:
            dns_name = DNS_EXTRACTORS[endpoint.type](resource)
        except ValueError as e:
            raise warning_error(LOAD_BALANCER_NOT_FOUND_MSG, e, endpoint, parent_namespace)

        try:
            arn = self.dns_resolver.resolve_dns_to_load_balancer_arn(dns_name)
        except Exception as e:
            raise warning_error(DNS_RESOLUTION_FAILED_MSG, e, endpoint, parent_namespace)

        return {
            'arn': arn,
            'dns_name': dns_name,
            'message': f"Successfully resolved {endpoint.type.value} to LoadBalancer ARN",
            'resource': copy.deepcopy(resource),
            'cross_namespace_allowed': state['cross_namespace_allowed'],
        }

    def load_endpoints(self, ga: GlobalAccelerator,
                       refs: List[EndpointReference]) -> Tuple[List[LoadedEndpoint], List[EndpointLoadError]]:
        """
        Load every referenced endpoint of a GlobalAccelerator.

        Returns:
            Tuple of all loaded endpoints (any status) and the errors of the Fatal ones
        """
        loaded: List[LoadedEndpoint] = []
        fatal_errors: List[EndpointLoadError] = []

        for ref in refs:
            result = self.load_endpoint(ref.endpoint, ga.namespace)
            loaded.append(result)
            if result.status == EndpointStatus.FATAL:
                logger.error(f"Fatal error loading endpoint {ref.endpoint.describe(ga.namespace)} "
                             f"of GlobalAccelerator {ga.key}: {result.error}")
                fatal_errors.append(result.error)
            elif result.status == EndpointStatus.WARNING:
                logger.warning(f"Endpoint {ref.endpoint.describe(ga.namespace)} of GlobalAccelerator "
                               f"{ga.key} not loaded: {result.error}")

        counts = {status: 0 for status in EndpointStatus}
        for result in loaded:
            counts[result.status] += 1
        logger.info(f"Loaded endpoints for GlobalAccelerator {ga.key}: total={len(loaded)} "
                    f"loaded={counts[EndpointStatus.LOADED]} warning={counts[EndpointStatus.WARNING]} "
                    f"fatal={counts[EndpointStatus.FATAL]}")
        for result in loaded:
            logger.debug(f"Endpoint {result.key} status={result.status.value} arn={result.arn} "
                         f"message={result.message}")
        return loaded, fatal_errors
