"""
Builds endpoint group resources and validates port overrides across all listeners.
"""

from typing import Dict, List, Optional, Sequence
import logging
from ..errors import ValidationError
from . import model
from .port_ranges import is_port_in_ranges
from .types import EndpointGroupSpec, ListenerSpec, LoadedEndpoint, PortOverride

logger = logging.getLogger(__name__)


class EndpointGroupBuilder:
    """
    Args:
        cluster_region: Region used when an endpoint group does not name one
        ga_namespace: Namespace of the GlobalAccelerator, the default for endpoint namespaces
    """

    def __init__(self, cluster_region: Optional[str], ga_namespace: str):
        self.cluster_region = cluster_region
        self.ga_namespace = ga_namespace

    def build(self, stack: model.Stack, listeners: Sequence[model.Listener],
              listener_specs: Sequence[ListenerSpec],
              loaded_endpoints: Sequence[LoadedEndpoint]) -> List[model.EndpointGroup]:
        """
        Build endpoint groups for every listener.

        Raises:
            ValidationError: If a region cannot be determined or port overrides are invalid
        """
        if not listeners:
            return []

        loaded_by_key = {le.key: le for le in loaded_endpoints}
        result: List[model.EndpointGroup] = []
        for listener_index, (listener, listener_spec) in enumerate(zip(listeners, listener_specs)):
            for index, group_spec in enumerate(listener_spec.endpoint_groups or ()):
                group = model.EndpointGroup(
                    id=model.endpoint_group_id(listener_index, index),
                    spec=self.build_endpoint_group_spec(listener, group_spec, loaded_by_key),
                )
                result.append(group)

        validate_endpoint_port_overrides_cross_listeners(result, listeners)

        for group in result:
            stack.add_resource(group)
        return result

    def build_endpoint_group_spec(self, listener: model.Listener, group: EndpointGroupSpec,
                                  loaded_by_key: Dict[str, LoadedEndpoint]) -> model.EndpointGroupSpec:
        return model.EndpointGroupSpec(
            listener_arn=listener.listener_arn(),
            region=self.determine_region(group),
            traffic_dial_percentage=group.traffic_dial_percentage,
            port_overrides=build_port_overrides(listener, group),
            endpoint_configurations=self.build_endpoint_configurations(group, loaded_by_key),
        )

    def determine_region(self, group: EndpointGroupSpec) -> str:
        if group.region:
            return group.region
        if self.cluster_region:
            return self.cluster_region
        raise ValidationError("region is required for endpoint group but neither specified in the endpoint "
                              "group nor available from cluster configuration")

    def build_endpoint_configurations(self, group: EndpointGroupSpec,
                                      loaded_by_key: Dict[str, LoadedEndpoint]) -> List[model.EndpointConfiguration]:
        configurations = []
        for endpoint in group.endpoints or ():
            key = endpoint.key(self.ga_namespace)
            loaded = loaded_by_key.get(key)
            if loaded is None:
                logger.info(f"Endpoint {key} not found in loaded endpoints")
                continue
            if not loaded.is_usable():
                logger.info(f"Endpoint {key} not added to endpoint group, no ARN was resolved: {loaded.message}")
                continue
            configurations.append(model.EndpointConfiguration(
                endpoint_id=loaded.arn,
                weight=loaded.weight,
                client_ip_preservation_enabled=endpoint.client_ip_preservation_enabled,
            ))
        return configurations


def build_port_overrides(listener: model.Listener, group: EndpointGroupSpec) -> Optional[List[PortOverride]]:
    if group.port_overrides is None:
        return None
    overrides = list(group.port_overrides)
    validate_listener_ports_within_listener_port_ranges(listener, overrides)
    validate_no_duplicate_ports(overrides)
    return overrides


def validate_listener_ports_within_listener_port_ranges(listener: model.Listener,
                                                       overrides: Sequence[PortOverride]):
    for override in overrides:
        if not is_port_in_ranges(override.listener_port, listener.spec.port_ranges):
            raise ValidationError(
                f"port override listener port {override.listener_port} is not within any listener port "
                f"ranges - this will cause AWS Global Accelerator to reject the configuration")


def validate_no_duplicate_ports(overrides: Sequence[PortOverride]):
    listener_ports = set()
    endpoint_ports = set()
    for override in overrides:
        if override.listener_port in listener_ports:
            raise ValidationError(
                f"duplicate listener port {override.listener_port} in port overrides: each listener port "
                f"can only be used once in port overrides for an endpoint group")
        listener_ports.add(override.listener_port)
        if override.endpoint_port in endpoint_ports:
            raise ValidationError(
                f"duplicate endpoint port {override.endpoint_port} in port overrides: each endpoint port "
                f"can only be used once in port overrides for an endpoint group")
        endpoint_ports.add(override.endpoint_port)


def validate_endpoint_port_overrides_cross_listeners(groups: Sequence[model.EndpointGroup],
                                                    listeners: Sequence[model.Listener]):
    """
    Endpoint ports used in overrides must stay out of every listener's port ranges,
    and one endpoint port may only be overridden from a single listener.
    """
    endpoint_port_usage: Dict[int, str] = {}
    for group in groups:
        listener_id = group.spec.listener_arn.resource_id
        for override in group.spec.port_overrides or ():
            endpoint_port = override.endpoint_port
            for listener in listeners:
                for pr in listener.spec.port_ranges:
                    if pr.from_port <= endpoint_port <= pr.to_port:
                        raise ValidationError(
                            f"endpoint port {endpoint_port} conflicts with listener {listener.id} port range "
                            f"{pr.from_port}-{pr.to_port}: endpoint port cannot be included in any listener "
                            f"port range")
            existing = endpoint_port_usage.get(endpoint_port)
            if existing is not None and existing != listener_id:
                raise ValidationError(
                    f"duplicate endpoint port {endpoint_port}: the same endpoint port cannot be used in port "
                    f"overrides from different listeners (used in {existing} and {listener_id})")
            endpoint_port_usage[endpoint_port] = listener_id
