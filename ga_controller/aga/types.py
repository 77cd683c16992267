"""
Types for GlobalAccelerator specs, endpoint references and loaded endpoints.

The *Spec classes are parsed from the GlobalAccelerator custom resource body as
kopf delivers it (camelCase keys). Optional fields stay None when unset so that
callers can tell "not specified" apart from an explicit value.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

DEFAULT_ENDPOINT_WEIGHT = 128


class EndpointType(str, Enum):
    SERVICE = 'Service'
    INGRESS = 'Ingress'
    GATEWAY = 'Gateway'
    ENDPOINT_ID = 'EndpointID'


class Protocol(str, Enum):
    TCP = 'TCP'
    UDP = 'UDP'


class ClientAffinity(str, Enum):
    NONE = 'NONE'
    SOURCE_IP = 'SOURCE_IP'


class IPAddressType(str, Enum):
    IPV4 = 'IPV4'
    DUAL_STACK = 'DUAL_STACK'


class EndpointStatus(str, Enum):
    LOADED = 'Loaded'
    WARNING = 'Warning'
    FATAL = 'Fatal'


@dataclass(frozen=True)
class PortRange:
    from_port: int
    to_port: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'PortRange':
        return cls(from_port=int(data['fromPort']), to_port=int(data['toPort']))

    def to_dict(self) -> Dict[str, int]:
        return {'fromPort': self.from_port, 'toPort': self.to_port}


@dataclass(frozen=True)
class PortOverride:
    listener_port: int
    endpoint_port: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'PortOverride':
        return cls(listener_port=int(data['listenerPort']), endpoint_port=int(data['endpointPort']))

    def to_dict(self) -> Dict[str, int]:
        return {'listenerPort': self.listener_port, 'endpointPort': self.endpoint_port}


@dataclass(frozen=True)
class EndpointSpec:
    """One endpoint declaration inside an endpoint group."""
    type: EndpointType
    name: Optional[str] = None
    namespace: Optional[str] = None
    endpoint_id: Optional[str] = None
    weight: Optional[int] = None
    client_ip_preservation_enabled: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'EndpointSpec':
        weight = data.get('weight')
        return cls(
            type=EndpointType(data['type']),
            name=data.get('name'),
            namespace=data.get('namespace'),
            endpoint_id=data.get('endpointID'),
            weight=int(weight) if weight is not None else None,
            client_ip_preservation_enabled=data.get('clientIPPreservationEnabled'),
        )

    def resolved_namespace(self, default_namespace: str) -> str:
        if self.namespace is not None:
            return self.namespace
        return default_namespace

    def key(self, default_namespace: str) -> str:
        """Lookup key shared by loaded endpoints and endpoint group matching."""
        return endpoint_key(self.type, self.resolved_namespace(default_namespace),
                            self.name or '', self.endpoint_id or '')

    def describe(self, default_namespace: str = '') -> str:
        if self.type == EndpointType.ENDPOINT_ID:
            return f"{self.type.value} {self.endpoint_id or ''}"
        return f"{self.type.value} {self.resolved_namespace(default_namespace)}/{self.name or ''}"


def endpoint_key(endpoint_type: EndpointType, namespace: str, name: str, arn: str = '') -> str:
    if endpoint_type == EndpointType.ENDPOINT_ID:
        return f"{endpoint_type.value}/{arn}"
    return f"{endpoint_type.value}/{namespace}/{name}"


@dataclass(frozen=True)
class EndpointGroupSpec:
    region: Optional[str] = None
    traffic_dial_percentage: Optional[int] = None
    port_overrides: Optional[Tuple[PortOverride, ...]] = None
    endpoints: Optional[Tuple[EndpointSpec, ...]] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'EndpointGroupSpec':
        dial = data.get('trafficDialPercentage')
        overrides = data.get('portOverrides')
        endpoints = data.get('endpoints')
        return cls(
            region=data.get('region'),
            traffic_dial_percentage=int(dial) if dial is not None else None,
            port_overrides=tuple(PortOverride.from_dict(po) for po in overrides) if overrides is not None else None,
            endpoints=tuple(EndpointSpec.from_dict(ep) for ep in endpoints) if endpoints is not None else None,
        )


@dataclass(frozen=True)
class ListenerSpec:
    protocol: Optional[str] = None
    port_ranges: Optional[Tuple[PortRange, ...]] = None
    client_affinity: str = ''
    endpoint_groups: Optional[Tuple[EndpointGroupSpec, ...]] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'ListenerSpec':
        port_ranges = data.get('portRanges')
        groups = data.get('endpointGroups')
        return cls(
            protocol=data.get('protocol'),
            port_ranges=tuple(PortRange.from_dict(pr) for pr in port_ranges) if port_ranges is not None else None,
            client_affinity=data.get('clientAffinity') or '',
            endpoint_groups=tuple(EndpointGroupSpec.from_dict(g) for g in groups) if groups is not None else None,
        )


@dataclass(frozen=True)
class GlobalAcceleratorSpec:
    name: Optional[str] = None
    ip_address_type: str = ''
    ip_addresses: Optional[Tuple[str, ...]] = None
    tags: Optional[Dict[str, str]] = None
    listeners: Optional[Tuple[ListenerSpec, ...]] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'GlobalAcceleratorSpec':
        data = data or {}
        ip_addresses = data.get('ipAddresses')
        listeners = data.get('listeners')
        tags = data.get('tags')
        return cls(
            name=data.get('name'),
            ip_address_type=data.get('ipAddressType') or '',
            ip_addresses=tuple(ip_addresses) if ip_addresses is not None else None,
            tags=dict(tags) if tags is not None else None,
            listeners=tuple(ListenerSpec.from_dict(l) for l in listeners) if listeners is not None else None,
        )


@dataclass(frozen=True)
class GlobalAccelerator:
    """The owning GlobalAccelerator custom resource."""
    namespace: str
    name: str
    spec: GlobalAcceleratorSpec = field(default_factory=GlobalAcceleratorSpec)
    generation: Optional[int] = None

    @classmethod
    def from_dict(cls, body: Mapping[str, Any]) -> 'GlobalAccelerator':
        meta = body.get('metadata') or {}
        return cls(
            namespace=meta.get('namespace', ''),
            name=meta.get('name', ''),
            spec=GlobalAcceleratorSpec.from_dict(body.get('spec')),
            generation=meta.get('generation'),
        )

    @property
    def key(self) -> str:
        return owner_key(self.namespace, self.name)


def owner_key(namespace: str, name: str) -> str:
    return f"{namespace}/{name}"


@dataclass(frozen=True)
class EndpointReference:
    """Flattened view of one endpoint declared anywhere in a GlobalAccelerator."""
    type: EndpointType
    name: str
    namespace: str
    endpoint: EndpointSpec


@dataclass(frozen=True)
class ResourceKey:
    """Identity of a referenced resource. EndpointID resources use an empty namespace and the ARN as name."""
    kind: EndpointType
    namespace: str
    name: str

    @classmethod
    def from_reference(cls, ref: EndpointReference) -> 'ResourceKey':
        if ref.type == EndpointType.ENDPOINT_ID:
            return cls(kind=ref.type, namespace='', name=ref.endpoint.endpoint_id or '')
        return cls(kind=ref.type, namespace=ref.namespace, name=ref.name)

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind.value}/{self.namespace}/{self.name}"
        return f"{self.kind.value}/{self.name}"


@dataclass(frozen=True)
class LoadedEndpoint:
    """
    Result of resolving one endpoint reference.

    `resource` is a private deep copy of the Kubernetes object captured at load
    time and is only read by auto-discovery.
    """
    type: EndpointType
    name: str
    namespace: str
    weight: int
    endpoint: EndpointSpec
    status: EndpointStatus
    arn: str = ''
    dns_name: str = ''
    message: str = ''
    error: Optional[BaseException] = None
    resource: Optional[Dict[str, Any]] = None
    cross_namespace_allowed: bool = False

    def is_usable(self) -> bool:
        return self.status == EndpointStatus.LOADED

    @property
    def key(self) -> str:
        return endpoint_key(self.type, self.namespace, self.name, self.arn)


@dataclass(frozen=True)
class ProtocolPortInfo:
    protocol: Protocol
    ports: Tuple[int, ...]


def get_all_endpoints(ga: GlobalAccelerator) -> List[EndpointReference]:
    """
    Flatten every endpoint declared in a GlobalAccelerator into references.

    Namespaces default to the GlobalAccelerator's namespace; EndpointID
    endpoints carry an empty namespace and name.
    """
    refs = []
    for listener in ga.spec.listeners or ():
        for group in listener.endpoint_groups or ():
            for endpoint in group.endpoints or ():
                if endpoint.type == EndpointType.ENDPOINT_ID:
                    refs.append(EndpointReference(type=endpoint.type, name='', namespace='', endpoint=endpoint))
                else:
                    refs.append(EndpointReference(
                        type=endpoint.type,
                        name=endpoint.name or '',
                        namespace=endpoint.resolved_namespace(ga.namespace),
                        endpoint=endpoint,
                    ))
    return refs
