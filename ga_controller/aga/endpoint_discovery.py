"""
Discovers listener protocols and ports from the resource behind an endpoint.

Used when a GlobalAccelerator listener leaves protocol or port ranges unset.
"""

from typing import Any, Dict, Iterable, List
import json
import logging
from botocore.exceptions import BotoCoreError, ClientError
from kubernetes.client.rest import ApiException
from ..aws.load_balancer import list_listeners
from ..errors import DiscoveryError
from ..k8s.client import ClusterClient, INGRESS_CLASS_PARAMS_GROUP, INGRESS_CLASS_PARAMS_KIND
from .types import EndpointType, LoadedEndpoint, Protocol, ProtocolPortInfo

logger = logging.getLogger(__name__)

INGRESS_LISTEN_PORTS_ANNOTATION = "alb.ingress.kubernetes.io/listen-ports"
INGRESS_CERTIFICATE_ARN_ANNOTATION = "alb.ingress.kubernetes.io/certificate-arn"

# ELBv2 listener protocols and the Global Accelerator protocol carrying them
ELB_PROTOCOLS = {
    'HTTP': Protocol.TCP,
    'HTTPS': Protocol.TCP,
    'TCP': Protocol.TCP,
    'TLS': Protocol.TCP,
    'UDP': Protocol.UDP,
}


def create_protocol_ports_info(tcp_ports: Iterable[int], udp_ports: Iterable[int]) -> List[ProtocolPortInfo]:
    """Group ports by protocol, TCP first, omitting protocols without ports."""
    infos = []
    tcp_ports = tuple(tcp_ports)
    udp_ports = tuple(udp_ports)
    if tcp_ports:
        infos.append(ProtocolPortInfo(Protocol.TCP, tcp_ports))
    if udp_ports:
        infos.append(ProtocolPortInfo(Protocol.UDP, udp_ports))
    return infos


def _unique(ports: Iterable[int]) -> List[int]:
    seen = []
    for port in ports:
        if port not in seen:
            seen.append(port)
    return seen


class EndpointDiscovery:
    """
    Extracts protocol and port information from loaded endpoints.

    Args:
        cluster: Kubernetes access for IngressClass and IngressClassParams lookups
        elbv2: AWS ELBv2 client used for EndpointID endpoints
    """

    def __init__(self, cluster: ClusterClient, elbv2: Any):
        self.cluster = cluster
        self.elbv2 = elbv2

    def fetch_protocol_port_info(self, endpoint: LoadedEndpoint) -> List[ProtocolPortInfo]:
        """
        Discover the protocols and ports served by an endpoint.

        Args:
            endpoint: A Loaded endpoint

        Returns:
            At most one ProtocolPortInfo per protocol, TCP first

        Raises:
            DiscoveryError: If the information is unavailable or cannot be represented
        """
        if endpoint.type != EndpointType.ENDPOINT_ID and endpoint.resource is None:
            raise DiscoveryError(f"kubernetes resource not available for endpoint "
                                 f"{endpoint.namespace}/{endpoint.name}")

        if endpoint.type == EndpointType.SERVICE:
            return self.fetch_service_protocol_port_info(endpoint.resource)
        if endpoint.type == EndpointType.INGRESS:
            return self.fetch_ingress_protocol_port_info(endpoint.resource)
        if endpoint.type == EndpointType.GATEWAY:
            return self.fetch_gateway_protocol_port_info(endpoint.resource)
        if endpoint.type == EndpointType.ENDPOINT_ID:
            if not endpoint.arn:
                raise DiscoveryError("endpoint ARN is not available for endpoint with EndpointID type")
            return self.fetch_load_balancer_protocol_port_info(endpoint.arn)
        raise DiscoveryError(f"auto-discovery not supported for endpoint type {endpoint.type}")

    def fetch_service_protocol_port_info(self, service: Dict[str, Any]) -> List[ProtocolPortInfo]:
        """Read the ports the Service's load balancer reports in its status."""
        meta = service.get('metadata') or {}
        protocols_by_port: Dict[int, str] = {}
        tcp_ports, udp_ports = [], []

        for ingress in ((service.get('status') or {}).get('loadBalancer') or {}).get('ingress') or []:
            for port_status in ingress.get('ports') or []:
                port = int(port_status['port'])
                protocol = port_status.get('protocol') or 'TCP'
                seen = protocols_by_port.get(port)
                if seen is None:
                    protocols_by_port[port] = protocol
                    (udp_ports if protocol == 'UDP' else tcp_ports).append(port)
                elif seen != protocol:
                    raise DiscoveryError(
                        f"auto-discovery does not support TCP_UDP services on the same port {port} "
                        f"for endpoint {meta.get('namespace')}/{meta.get('name')}")

        return create_protocol_ports_info(tcp_ports, udp_ports)

    def fetch_ingress_protocol_port_info(self, ingress: Dict[str, Any]) -> List[ProtocolPortInfo]:
        """Ingress listeners are always TCP; ports come from listen-ports or the certificate default."""
        meta = ingress.get('metadata') or {}
        annotations = meta.get('annotations') or {}
        ident = f"{meta.get('namespace')}/{meta.get('name')}"

        raw_listen_ports = annotations.get(INGRESS_LISTEN_PORTS_ANNOTATION)
        if raw_listen_ports is not None:
            tcp_ports = self._parse_listen_ports(raw_listen_ports, ident)
            if not tcp_ports:
                raise DiscoveryError(f"no valid ports found in listen-ports configuration for ingress {ident}")
        elif self._ingress_has_certificate(ingress):
            tcp_ports = [443]
        else:
            tcp_ports = [80]

        return [ProtocolPortInfo(Protocol.TCP, tuple(tcp_ports))]

    def _parse_listen_ports(self, raw: str, ident: str) -> List[int]:
        # e.g. [{"HTTP": 80}, {"HTTPS": 443}]
        try:
            entries = json.loads(raw)
        except ValueError as e:
            logger.debug(f"Invalid listen-ports annotation on ingress {ident}: {raw}")
            raise DiscoveryError(f"failed to parse listen-ports annotation: {str(e)}") from e
        if not isinstance(entries, list) or not entries:
            raise DiscoveryError(f"empty listen-ports configuration for ingress {ident}")

        ports = []
        for entry in entries:
            if not isinstance(entry, dict):
                raise DiscoveryError(f"failed to parse listen-ports annotation: unexpected entry {entry!r}")
            for port in entry.values():
                try:
                    ports.append(int(port))
                except (TypeError, ValueError) as e:
                    raise DiscoveryError(f"failed to parse listen-ports annotation: {str(e)}") from e
        return ports

    def _ingress_has_certificate(self, ingress: Dict[str, Any]) -> bool:
        annotations = (ingress.get('metadata') or {}).get('annotations') or {}
        if annotations.get(INGRESS_CERTIFICATE_ARN_ANNOTATION):
            return True

        class_name = (ingress.get('spec') or {}).get('ingressClassName')
        if not class_name:
            return False
        try:
            return self._has_certificates_in_ingress_class_params(class_name)
        except ApiException as e:
            raise DiscoveryError(f"error checking IngressClassParams for certificates: {str(e)}") from e

    def _has_certificates_in_ingress_class_params(self, class_name: str) -> bool:
        ingress_class = self.cluster.get_ingress_class(class_name)
        params = (ingress_class.get('spec') or {}).get('parameters')
        if not params:
            return False
        if params.get('apiGroup') != INGRESS_CLASS_PARAMS_GROUP or params.get('kind') != INGRESS_CLASS_PARAMS_KIND:
            return False
        class_params = self.cluster.get_ingress_class_params(params['name'])
        return bool((class_params.get('spec') or {}).get('certificateArn'))

    def fetch_gateway_protocol_port_info(self, gateway: Dict[str, Any]) -> List[ProtocolPortInfo]:
        """UDP listeners map to UDP, every other Gateway protocol to TCP."""
        tcp_ports, udp_ports = [], []
        for listener in (gateway.get('spec') or {}).get('listeners') or []:
            port = int(listener['port'])
            if listener.get('protocol') == 'UDP':
                udp_ports.append(port)
            else:
                tcp_ports.append(port)
        return create_protocol_ports_info(_unique(tcp_ports), _unique(udp_ports))

    def fetch_load_balancer_protocol_port_info(self, lb_arn: str) -> List[ProtocolPortInfo]:
        """Query the load balancer's listeners through ELBv2."""
        try:
            listeners = list_listeners(self.elbv2, lb_arn)
        except (ClientError, BotoCoreError) as e:
            raise DiscoveryError(f"failed to describe listeners for load balancer ARN {lb_arn}: {str(e)}") from e

        tcp_ports, udp_ports = [], []
        for listener in listeners:
            protocol = ELB_PROTOCOLS.get(listener.get('Protocol'))
            if protocol is None:
                raise DiscoveryError(f"listener protocol {listener.get('Protocol')} is not supported by "
                                     f"Global Accelerator for load balancer {lb_arn}")
            (tcp_ports if protocol == Protocol.TCP else udp_ports).append(int(listener['Port']))

        infos = create_protocol_ports_info(tcp_ports, udp_ports)
        if not infos:
            raise DiscoveryError(f"no listeners found for load balancer ARN {lb_arn}")
        logger.debug(f"Discovered protocols and ports from load balancer {lb_arn}: "
                     f"tcp={tcp_ports} udp={udp_ports}")
        return infos
