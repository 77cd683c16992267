"""
Resource model handed to the actuator: one accelerator, its listeners and their endpoint groups.

Resources refer to their parents by forward references that the actuator
resolves once the parent exists in AWS.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
import json
from .tags import TAG_KEY_CLUSTER, TAG_KEY_RESOURCE, TAG_KEY_STACK
from .types import PortOverride, PortRange

RESOURCE_TYPE_ACCELERATOR = "AWS::GlobalAccelerator::Accelerator"
RESOURCE_TYPE_LISTENER = "AWS::GlobalAccelerator::Listener"
RESOURCE_TYPE_ENDPOINT_GROUP = "AWS::GlobalAccelerator::EndpointGroup"

ACCELERATOR_ID = "GlobalAccelerator"


def listener_id(index: int) -> str:
    return f"Listener-{index}"


def endpoint_group_id(listener_index: int, index: int) -> str:
    return f"EndpointGroup-{listener_index}-{index}"


@dataclass(frozen=True)
class StackID:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ResourceRef:
    """Forward reference to a status field of another resource in the stack."""
    resource_type: str
    resource_id: str
    field: str

    def to_dict(self) -> Dict[str, str]:
        return {'$ref': f"#/resources/{self.resource_type}/{self.resource_id}/status/{self.field}"}


@dataclass
class AcceleratorSpec:
    name: str
    ip_address_type: str
    enabled: bool = True
    ip_addresses: Optional[List[str]] = None
    tags: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'name': self.name,
            'ipAddressType': self.ip_address_type,
            'enabled': self.enabled,
            'tags': dict(self.tags),
        }
        if self.ip_addresses is not None:
            data['ipAddresses'] = list(self.ip_addresses)
        return data


@dataclass
class ListenerSpec:
    accelerator_arn: ResourceRef
    protocol: str
    port_ranges: List[PortRange]
    client_affinity: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'acceleratorARN': self.accelerator_arn.to_dict(),
            'protocol': self.protocol,
            'portRanges': [pr.to_dict() for pr in self.port_ranges],
            'clientAffinity': self.client_affinity,
        }


@dataclass
class EndpointConfiguration:
    endpoint_id: str
    weight: Optional[int] = None
    client_ip_preservation_enabled: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'endpointID': self.endpoint_id}
        if self.weight is not None:
            data['weight'] = self.weight
        if self.client_ip_preservation_enabled is not None:
            data['clientIPPreservationEnabled'] = self.client_ip_preservation_enabled
        return data


@dataclass
class EndpointGroupSpec:
    listener_arn: ResourceRef
    region: str
    traffic_dial_percentage: Optional[int] = None
    port_overrides: Optional[List[PortOverride]] = None
    endpoint_configurations: List[EndpointConfiguration] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'listenerARN': self.listener_arn.to_dict(),
            'region': self.region,
            'endpointConfigurations': [ec.to_dict() for ec in self.endpoint_configurations],
        }
        if self.traffic_dial_percentage is not None:
            data['trafficDialPercentage'] = self.traffic_dial_percentage
        if self.port_overrides is not None:
            data['portOverrides'] = [po.to_dict() for po in self.port_overrides]
        return data


@dataclass
class Accelerator:
    id: str
    spec: AcceleratorSpec
    resource_type: str = RESOURCE_TYPE_ACCELERATOR

    def accelerator_arn(self) -> ResourceRef:
        return ResourceRef(self.resource_type, self.id, 'acceleratorARN')


@dataclass
class Listener:
    id: str
    spec: ListenerSpec
    resource_type: str = RESOURCE_TYPE_LISTENER

    def listener_arn(self) -> ResourceRef:
        return ResourceRef(self.resource_type, self.id, 'listenerARN')


@dataclass
class EndpointGroup:
    id: str
    spec: EndpointGroupSpec
    resource_type: str = RESOURCE_TYPE_ENDPOINT_GROUP


Resource = Union[Accelerator, Listener, EndpointGroup]


class Stack:
    """All resources built for one GlobalAccelerator, keyed by resource type and id."""

    def __init__(self, stack_id: StackID, cluster_name: str = ''):
        self.stack_id = stack_id
        self.cluster_name = cluster_name
        self._resources: Dict[str, Dict[str, Resource]] = {}

    def add_resource(self, resource: Resource):
        self._resources.setdefault(resource.resource_type, {})[resource.id] = resource

    def list_resources(self, resource_type: str) -> List[Resource]:
        return list(self._resources.get(resource_type, {}).values())

    def get_resource(self, resource_type: str, resource_id: str) -> Optional[Resource]:
        return self._resources.get(resource_type, {}).get(resource_id)

    @property
    def accelerator(self) -> Optional[Accelerator]:
        return self.get_resource(RESOURCE_TYPE_ACCELERATOR, ACCELERATOR_ID)

    @property
    def listeners(self) -> List[Listener]:
        return self.list_resources(RESOURCE_TYPE_LISTENER)

    @property
    def endpoint_groups(self) -> List[EndpointGroup]:
        return self.list_resources(RESOURCE_TYPE_ENDPOINT_GROUP)

    def tracking_tags(self, resource: Resource) -> Dict[str, str]:
        """Tags the actuator stamps on a resource to recognise it as owned by this stack."""
        tags = {
            TAG_KEY_STACK: str(self.stack_id),
            TAG_KEY_RESOURCE: resource.id,
        }
        if self.cluster_name:
            tags[TAG_KEY_CLUSTER] = self.cluster_name
        return tags

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': str(self.stack_id),
            'resources': {
                resource_type: {
                    rid: {'spec': res.spec.to_dict(), 'trackingTags': self.tracking_tags(res)}
                    for rid, res in resources.items()
                }
                for resource_type, resources in self._resources.items()
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)
