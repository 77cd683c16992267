from typing import List, Optional
import hashlib
import logging
import re
from . import model
from .tags import TagHelper
from .types import GlobalAccelerator, IPAddressType

logger = logging.getLogger(__name__)

# AWS Global Accelerator name limit
MAX_ACCELERATOR_NAME_LENGTH = 64
MAX_NAME_PART_LENGTH = 20
NAME_HASH_LENGTH = 16

_invalid_name_chars = re.compile(r'[^a-zA-Z0-9]')


class AcceleratorBuilder:
    """
    Builds the accelerator resource of a stack.

    Args:
        cluster_name: Name of the Kubernetes cluster, part of generated names
        tag_helper: Computes accelerator tags
    """

    def __init__(self, cluster_name: str, tag_helper: TagHelper):
        self.cluster_name = cluster_name
        self.tag_helper = tag_helper

    def build(self, stack: model.Stack, ga: GlobalAccelerator) -> model.Accelerator:
        """
        Raises:
            ValidationError: If the user tags are not allowed
        """
        ip_address_type = build_ip_address_type(ga.spec.ip_address_type)
        accelerator = model.Accelerator(
            id=model.ACCELERATOR_ID,
            spec=model.AcceleratorSpec(
                name=self.build_accelerator_name(ga, ip_address_type),
                ip_address_type=ip_address_type.value,
                enabled=True,
                ip_addresses=build_ip_addresses(ga.spec.ip_addresses),
                tags=self.tag_helper.get_accelerator_tags(ga.spec.tags),
            ),
        )
        stack.add_resource(accelerator)
        return accelerator

    def build_accelerator_name(self, ga: GlobalAccelerator, ip_address_type: IPAddressType) -> str:
        """
        Use spec.name, or generate a stable one.

        Generated names look like k8s_<namespace>_<name>_<hash> where the hash
        covers cluster, namespace, name and IP address type.
        """
        if ga.spec.name:
            return ga.spec.name

        digest = hashlib.sha256()
        for part in (self.cluster_name, ga.namespace, ga.name, ip_address_type.value):
            digest.update(part.encode('utf-8'))
        name_hash = digest.hexdigest()[:NAME_HASH_LENGTH]

        namespace = _invalid_name_chars.sub('', ga.namespace)[:MAX_NAME_PART_LENGTH]
        name = _invalid_name_chars.sub('', ga.name)[:MAX_NAME_PART_LENGTH]
        return f"k8s_{namespace}_{name}_{name_hash}"[:MAX_ACCELERATOR_NAME_LENGTH]


def build_ip_address_type(requested: str) -> IPAddressType:
    if requested == IPAddressType.DUAL_STACK.value:
        return IPAddressType.DUAL_STACK
    return IPAddressType.IPV4


def build_ip_addresses(ip_addresses) -> Optional[List[str]]:
    if ip_addresses is None:
        return None
    return list(ip_addresses)
