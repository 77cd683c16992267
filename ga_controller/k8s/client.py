"""
Thin wrapper over the kubernetes client for the resources the controller reads.

Every getter returns plain dicts (camelCase keys, the same shape kopf hands to
handlers) so callers never hold on to client model objects.
"""

from functools import partial
from typing import Any, Callable, Dict, List, Optional
import logging
import kubernetes
import urllib3
from kubernetes.client.rest import ApiException
from ..aga.types import EndpointType
from ..config import DEFAULT_REQUEST_TIMEOUT

logger = logging.getLogger(__name__)

GA_GROUP = "aga.k8s.aws"
GA_VERSION = "v1beta1"
GA_PLURAL = "globalaccelerators"
GA_KIND = "GlobalAccelerator"

GATEWAY_GROUP = "gateway.networking.k8s.io"
GATEWAY_VERSION = "v1"
GATEWAY_PLURAL = "gateways"
REFERENCE_GRANT_VERSION = "v1beta1"
REFERENCE_GRANT_PLURAL = "referencegrants"

INGRESS_CLASS_PARAMS_GROUP = "elbv2.k8s.aws"
INGRESS_CLASS_PARAMS_VERSION = "v1beta1"
INGRESS_CLASS_PARAMS_PLURAL = "ingressclassparams"
INGRESS_CLASS_PARAMS_KIND = "IngressClassParams"


def load_kube_config():
    """Load in-cluster configuration, falling back to kubeconfig for local development."""
    try:
        kubernetes.config.load_incluster_config()
    except kubernetes.config.ConfigException:
        kubernetes.config.load_kube_config()


def is_not_found(e: BaseException) -> bool:
    return isinstance(e, ApiException) and e.status == 404


class ClusterClient:
    """Get/List/Watch access to Services, Ingresses, Gateways and the aga.k8s.aws resources."""

    def __init__(self, api_client: Optional[kubernetes.client.ApiClient] = None,
                 request_timeout: int = DEFAULT_REQUEST_TIMEOUT):
        self.api_client = api_client or kubernetes.client.ApiClient()
        self.request_timeout = request_timeout
        self.core = kubernetes.client.CoreV1Api(self.api_client)
        self.networking = kubernetes.client.NetworkingV1Api(self.api_client)
        self.custom = kubernetes.client.CustomObjectsApi(self.api_client)

    def _to_dict(self, obj: Any) -> Dict[str, Any]:
        return self.api_client.sanitize_for_serialization(obj)

    def get_service(self, namespace: str, name: str) -> Dict[str, Any]:
        return self._to_dict(self.core.read_namespaced_service(
            name=name, namespace=namespace, _request_timeout=self.request_timeout))

    def get_ingress(self, namespace: str, name: str) -> Dict[str, Any]:
        return self._to_dict(self.networking.read_namespaced_ingress(
            name=name, namespace=namespace, _request_timeout=self.request_timeout))

    def get_gateway(self, namespace: str, name: str) -> Dict[str, Any]:
        return self.custom.get_namespaced_custom_object(
            group=GATEWAY_GROUP,
            version=GATEWAY_VERSION,
            namespace=namespace,
            plural=GATEWAY_PLURAL,
            name=name,
            _request_timeout=self.request_timeout
        )

    def get_resource(self, kind: EndpointType, namespace: str, name: str) -> Dict[str, Any]:
        """
        Fetch the Kubernetes object behind an endpoint of the given kind.

        Raises:
            ValueError: If the kind is not backed by a Kubernetes object
            ApiException: If the API server call fails
        """
        if kind == EndpointType.SERVICE:
            return self.get_service(namespace, name)
        if kind == EndpointType.INGRESS:
            return self.get_ingress(namespace, name)
        if kind == EndpointType.GATEWAY:
            return self.get_gateway(namespace, name)
        raise ValueError(f"{kind.value} endpoints have no backing Kubernetes resource")

    def get_ingress_class(self, name: str) -> Dict[str, Any]:
        return self._to_dict(self.networking.read_ingress_class(name=name, _request_timeout=self.request_timeout))

    def get_ingress_class_params(self, name: str) -> Dict[str, Any]:
        return self.custom.get_cluster_custom_object(
            group=INGRESS_CLASS_PARAMS_GROUP,
            version=INGRESS_CLASS_PARAMS_VERSION,
            plural=INGRESS_CLASS_PARAMS_PLURAL,
            name=name,
            _request_timeout=self.request_timeout
        )

    def list_reference_grants(self, namespace: str) -> List[Dict[str, Any]]:
        response = self.custom.list_namespaced_custom_object(
            group=GATEWAY_GROUP,
            version=REFERENCE_GRANT_VERSION,
            namespace=namespace,
            plural=REFERENCE_GRANT_PLURAL,
            _request_timeout=self.request_timeout
        )
        return response.get('items', [])

    def has_gateway_support(self) -> bool:
        """Probe whether the Gateway API is installed in the cluster."""
        try:
            self.custom.list_cluster_custom_object(
                group=GATEWAY_GROUP,
                version=GATEWAY_VERSION,
                plural=GATEWAY_PLURAL,
                limit=1,
                _request_timeout=self.request_timeout
            )
            return True
        except ApiException as e:
            logger.debug(f"Gateway API not available: {e.status} {e.reason}")
            return False
        except urllib3.exceptions.HTTPError as e:
            logger.warning(f"Gateway API probe failed: {str(e)}")
            return False

    def list_global_accelerators(self) -> List[Dict[str, Any]]:
        response = self.custom.list_cluster_custom_object(
            group=GA_GROUP,
            version=GA_VERSION,
            plural=GA_PLURAL,
            _request_timeout=self.request_timeout
        )
        return response.get('items', [])

    def get_global_accelerator(self, namespace: str, name: str) -> Dict[str, Any]:
        return self.custom.get_namespaced_custom_object(
            group=GA_GROUP,
            version=GA_VERSION,
            namespace=namespace,
            plural=GA_PLURAL,
            name=name,
            _request_timeout=self.request_timeout
        )

    def patch_global_accelerator_status(self, namespace: str, name: str, status: Dict[str, Any]) -> None:
        self.custom.patch_namespaced_custom_object_status(
            group=GA_GROUP,
            version=GA_VERSION,
            namespace=namespace,
            plural=GA_PLURAL,
            name=name,
            body={'status': status},
            _request_timeout=self.request_timeout
        )

    def watch_list_fn(self, kind: EndpointType) -> Callable[..., Any]:
        """
        Namespaced list function for the given kind, suitable for kubernetes.watch.Watch.stream.

        The returned callable accepts namespace and field_selector keyword arguments.
        """
        if kind == EndpointType.SERVICE:
            return self.core.list_namespaced_service
        if kind == EndpointType.INGRESS:
            return self.networking.list_namespaced_ingress
        if kind == EndpointType.GATEWAY:
            return partial(self.custom.list_namespaced_custom_object,
                           group=GATEWAY_GROUP, version=GATEWAY_VERSION, plural=GATEWAY_PLURAL)
        raise ValueError(f"{kind.value} endpoints cannot be watched")
