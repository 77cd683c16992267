"""
Builds listener resources, inferring protocol and ports from the endpoint when the GlobalAccelerator leaves them out.
"""

from typing import List, Optional, Sequence, Tuple
import logging
from ..errors import DiscoveryError, ValidationError
from . import model
from .endpoint_discovery import EndpointDiscovery
from .port_ranges import consolidate_port_ranges
from .types import (
    ClientAffinity,
    GlobalAccelerator,
    ListenerSpec,
    LoadedEndpoint,
    PortRange,
    Protocol,
)

logger = logging.getLogger(__name__)


def find_auto_discovery_endpoint(ga: GlobalAccelerator, listeners: Sequence[ListenerSpec],
                                 loaded_endpoints: Sequence[LoadedEndpoint]) -> Optional[LoadedEndpoint]:
    """
    Return the endpoint to discover from, or None if auto-discovery does not apply.

    Auto-discovery needs exactly one listener with one endpoint group holding one
    Loaded endpoint, and the listener must leave protocol or port ranges unset.
    """
    if len(listeners) != 1:
        return None
    listener = listeners[0]
    if listener.protocol and listener.port_ranges:
        return None
    groups = listener.endpoint_groups or ()
    if len(groups) != 1:
        return None
    endpoints = groups[0].endpoints or ()
    if len(endpoints) != 1:
        return None

    key = endpoints[0].key(ga.namespace)
    for loaded in loaded_endpoints:
        if loaded.key == key and loaded.is_usable():
            return loaded
    return None


def can_apply_auto_discovery(ga: GlobalAccelerator, loaded_endpoints: Sequence[LoadedEndpoint]) -> bool:
    return find_auto_discovery_endpoint(ga, ga.spec.listeners or (), loaded_endpoints) is not None


def create_new_listener(template: ListenerSpec, protocol: Protocol,
                        port_ranges: Sequence[PortRange]) -> ListenerSpec:
    """Copy a listener with the given protocol. Port ranges declared on the template take precedence."""
    ranges = tuple(template.port_ranges) if template.port_ranges else tuple(port_ranges)
    return ListenerSpec(
        protocol=protocol.value,
        port_ranges=ranges,
        client_affinity=template.client_affinity,
        endpoint_groups=template.endpoint_groups,
    )


def build_listener_protocol(listener: ListenerSpec) -> Protocol:
    if not listener.protocol:
        raise ValidationError("listener protocol must be specified when auto-discovery is not applicable")
    try:
        return Protocol(listener.protocol)
    except ValueError:
        raise ValidationError(f"unsupported protocol: {listener.protocol}")


def build_listener_port_ranges(listener: ListenerSpec) -> List[PortRange]:
    if not listener.port_ranges:
        raise ValidationError("listener port ranges must be specified when auto-discovery is not applicable")
    return list(listener.port_ranges)


def build_listener_client_affinity(listener: ListenerSpec) -> ClientAffinity:
    if listener.client_affinity == ClientAffinity.SOURCE_IP.value:
        return ClientAffinity.SOURCE_IP
    return ClientAffinity.NONE


class ListenerBuilder:
    """
    Args:
        discovery: Used to infer protocols and ports for auto-discovered listeners
    """

    def __init__(self, discovery: EndpointDiscovery):
        self.discovery = discovery

    def build(self, stack: model.Stack, accelerator: model.Accelerator, ga: GlobalAccelerator,
              loaded_endpoints: Sequence[LoadedEndpoint]) -> Tuple[List[model.Listener], List[ListenerSpec]]:
        """
        Build the listeners of a GlobalAccelerator.

        Returns:
            Tuple of the listener resources and the listener specs they were built
            from, which differ from the declared ones after auto-discovery

        Raises:
            ValidationError: If a listener is misconfigured or discovery fails
        """
        listener_specs = list(ga.spec.listeners or ())
        endpoint = find_auto_discovery_endpoint(ga, listener_specs, loaded_endpoints)
        if endpoint is not None:
            listener_specs = self.auto_discover_listeners(listener_specs[0], endpoint)
            logger.info(f"Auto-discovered {len(listener_specs)} listener(s) for GlobalAccelerator {ga.key} "
                        f"from {endpoint.key}")

        listeners = []
        for index, spec in enumerate(listener_specs):
            listener = model.Listener(
                id=model.listener_id(index),
                spec=model.ListenerSpec(
                    accelerator_arn=accelerator.accelerator_arn(),
                    protocol=build_listener_protocol(spec).value,
                    port_ranges=build_listener_port_ranges(spec),
                    client_affinity=build_listener_client_affinity(spec).value,
                ),
            )
            stack.add_resource(listener)
            listeners.append(listener)
        return listeners, listener_specs

    def auto_discover_listeners(self, template: ListenerSpec, endpoint: LoadedEndpoint) -> List[ListenerSpec]:
        """Replace the template listener with one listener per discovered protocol."""
        try:
            infos = self.discovery.fetch_protocol_port_info(endpoint)
        except DiscoveryError as e:
            raise ValidationError(f"failed to auto-discover listener protocol and ports from "
                                  f"{endpoint.key}: {str(e)}") from e

        if template.protocol:
            infos = [info for info in infos if info.protocol.value == template.protocol]
            if not infos:
                raise ValidationError(f"protocol {template.protocol} is not served by {endpoint.key}")
        if not infos:
            raise ValidationError(f"no protocols or ports discovered for {endpoint.key}")

        return [create_new_listener(template, info.protocol, consolidate_port_ranges(info.ports))
                for info in infos]
