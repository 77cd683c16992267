from typing import Optional, Sequence
import logging
from ..config import ControllerConfig
from ..errors import EndpointLoadError, FatalEndpointsError
from . import model
from .endpoint_discovery import EndpointDiscovery
from .model_build_accelerator import AcceleratorBuilder
from .model_build_endpoint_group import EndpointGroupBuilder
from .model_build_listener import ListenerBuilder
from .tags import TagHelper
from .types import GlobalAccelerator, LoadedEndpoint

logger = logging.getLogger(__name__)


class ModelBuilder:
    """
    Builds the accelerator -> listener -> endpoint group stack for a GlobalAccelerator.

    Args:
        config: Controller configuration (cluster name, region, tags)
        discovery: Endpoint discovery used by the listener builder
    """

    def __init__(self, config: ControllerConfig, discovery: EndpointDiscovery):
        self.config = config
        self.tag_helper = TagHelper(config.external_managed_tags, config.default_tags,
                                    config.default_tags_low_priority)
        self.accelerator_builder = AcceleratorBuilder(config.cluster_name, self.tag_helper)
        self.listener_builder = ListenerBuilder(discovery)

    def build(self, ga: GlobalAccelerator, loaded_endpoints: Sequence[LoadedEndpoint],
              fatal_errors: Optional[Sequence[EndpointLoadError]] = None) -> model.Stack:
        """
        Build the resource model.

        Args:
            ga: The GlobalAccelerator
            loaded_endpoints: Every loaded endpoint of the GlobalAccelerator
            fatal_errors: Fatal errors reported while loading the endpoints

        Returns:
            model.Stack: The built stack

        Raises:
            FatalEndpointsError: If any endpoint failed to load fatally
            ValidationError: If the GlobalAccelerator cannot be built as written
        """
        if fatal_errors:
            raise FatalEndpointsError(ga.key, list(fatal_errors))

        stack = model.Stack(model.StackID(ga.namespace, ga.name), self.config.cluster_name)
        accelerator = self.accelerator_builder.build(stack, ga)
        listeners, listener_specs = self.listener_builder.build(stack, accelerator, ga, loaded_endpoints)
        endpoint_group_builder = EndpointGroupBuilder(self.config.cluster_region, ga.namespace)
        endpoint_groups = endpoint_group_builder.build(stack, listeners, listener_specs, loaded_endpoints)

        logger.debug(f"Built model for GlobalAccelerator {ga.key}: {len(listeners)} listener(s), "
                     f"{len(endpoint_groups)} endpoint group(s)")
        return stack
