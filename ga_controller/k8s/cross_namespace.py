"""
Authorization of cross-namespace endpoint references through Gateway API ReferenceGrants.
"""

from typing import Any, Dict, Mapping
import logging
from ..aga.types import EndpointType
from kubernetes.client.rest import ApiException
from .client import ClusterClient, GA_GROUP, GA_KIND, GATEWAY_GROUP

logger = logging.getLogger(__name__)

CORE_API_GROUP = ""
INGRESS_API_GROUP = "networking.k8s.io"

# API group of each endpoint kind as it appears in a ReferenceGrant "to" entry
ENDPOINT_KIND_GROUPS: Dict[EndpointType, str] = {
    EndpointType.SERVICE: CORE_API_GROUP,
    EndpointType.INGRESS: INGRESS_API_GROUP,
    EndpointType.GATEWAY: GATEWAY_GROUP,
}


def grant_allows(grant: Mapping[str, Any], owner_namespace: str, to_group: str,
                 to_kind: str, to_name: str) -> bool:
    """
    Check whether one ReferenceGrant lets a GlobalAccelerator in owner_namespace reference the target.

    A "from" entry must name the aga.k8s.aws GlobalAccelerator kind and the owner's
    namespace. A "to" entry must match group and kind, and either omit the name or
    name the target exactly.
    """
    spec = grant.get('spec') or {}

    from_matched = False
    for entry in spec.get('from') or []:
        if (entry.get('group', '') == GA_GROUP and entry.get('kind') == GA_KIND
                and entry.get('namespace') == owner_namespace):
            from_matched = True
            break
    if not from_matched:
        return False

    for entry in spec.get('to') or []:
        if entry.get('group', '') != to_group or entry.get('kind') != to_kind:
            continue
        name = entry.get('name')
        if not name or name == to_name:
            return True
    return False


class ReferenceGrantValidator:
    """Decides whether a GlobalAccelerator may reference a resource in another namespace."""

    def __init__(self, cluster: ClusterClient):
        self.cluster = cluster

    def is_allowed(self, owner_namespace: str, kind: EndpointType, target_namespace: str,
                   target_name: str) -> bool:
        """
        Check for a ReferenceGrant in the target namespace permitting the reference.

        Args:
            owner_namespace: Namespace of the GlobalAccelerator
            kind: Endpoint kind of the target
            target_namespace: Namespace of the referenced resource
            target_name: Name of the referenced resource

        Returns:
            bool: True if a grant permits the reference

        Raises:
            ApiException: If listing ReferenceGrants fails for a reason other than a missing CRD
        """
        if owner_namespace == target_namespace:
            return True

        try:
            grants = self.cluster.list_reference_grants(target_namespace)
        except ApiException as e:
            if e.status == 404:
                logger.info(f"ReferenceGrant API not available, denying {kind.value} "
                            f"{target_namespace}/{target_name} referenced from namespace {owner_namespace}")
                return False
            raise

        to_group = ENDPOINT_KIND_GROUPS[kind]
        for grant in grants:
            if grant_allows(grant, owner_namespace, to_group, kind.value, target_name):
                meta = grant.get('metadata') or {}
                logger.debug(f"ReferenceGrant {target_namespace}/{meta.get('name')} allows {kind.value} "
                             f"{target_namespace}/{target_name} from namespace {owner_namespace}")
                return True
        return False
