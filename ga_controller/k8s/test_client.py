import unittest
from unittest.mock import MagicMock, patch
import urllib3
from kubernetes.client.rest import ApiException
from ..aga.types import EndpointType
from ..config import DEFAULT_REQUEST_TIMEOUT
from .client import GATEWAY_GROUP, GATEWAY_PLURAL, GATEWAY_VERSION, ClusterClient, is_not_found


class TestClusterClient(unittest.TestCase):
    def setUp(self):
        self.api_client = MagicMock()
        self.api_client.sanitize_for_serialization.side_effect = lambda obj: {'converted': obj}
        with patch('kubernetes.client.CoreV1Api'), \
             patch('kubernetes.client.NetworkingV1Api'), \
             patch('kubernetes.client.CustomObjectsApi'):
            self.cluster = ClusterClient(self.api_client)

    def test_get_resource_service_is_serialized(self):
        service = self.cluster.get_resource(EndpointType.SERVICE, 'default', 'web')
        self.cluster.core.read_namespaced_service.assert_called_once_with(
            name='web', namespace='default', _request_timeout=DEFAULT_REQUEST_TIMEOUT)
        self.assertEqual(service, {'converted': self.cluster.core.read_namespaced_service.return_value})

    def test_get_resource_gateway(self):
        self.cluster.custom.get_namespaced_custom_object.return_value = {'kind': 'Gateway'}
        gateway = self.cluster.get_resource(EndpointType.GATEWAY, 'default', 'gw')
        self.assertEqual(gateway, {'kind': 'Gateway'})
        self.cluster.custom.get_namespaced_custom_object.assert_called_once_with(
            group=GATEWAY_GROUP, version=GATEWAY_VERSION, namespace='default', plural=GATEWAY_PLURAL, name='gw',
            _request_timeout=DEFAULT_REQUEST_TIMEOUT)

    def test_get_resource_endpoint_id(self):
        with self.assertRaises(ValueError):
            self.cluster.get_resource(EndpointType.ENDPOINT_ID, '', 'arn')

    def test_has_gateway_support(self):
        self.assertTrue(self.cluster.has_gateway_support())
        self.cluster.custom.list_cluster_custom_object.side_effect = ApiException(status=404, reason='Not Found')
        self.assertFalse(self.cluster.has_gateway_support())

    def test_has_gateway_support_transport_error(self):
        self.cluster.custom.list_cluster_custom_object.side_effect = urllib3.exceptions.ReadTimeoutError(
            None, '/apis/gateway.networking.k8s.io/v1/gateways', 'Read timed out.')
        self.assertFalse(self.cluster.has_gateway_support())

    def test_request_timeout_is_configurable(self):
        with patch('kubernetes.client.CoreV1Api'), \
             patch('kubernetes.client.NetworkingV1Api'), \
             patch('kubernetes.client.CustomObjectsApi'):
            cluster = ClusterClient(self.api_client, request_timeout=5)
        cluster.get_global_accelerator('default', 'ga')
        self.assertEqual(cluster.custom.get_namespaced_custom_object.call_args[1]['_request_timeout'], 5)
        cluster.patch_global_accelerator_status('default', 'ga', {})
        self.assertEqual(cluster.custom.patch_namespaced_custom_object_status.call_args[1]['_request_timeout'], 5)

    def test_patch_status(self):
        self.cluster.patch_global_accelerator_status('default', 'ga', {'observedGeneration': 2})
        kwargs = self.cluster.custom.patch_namespaced_custom_object_status.call_args[1]
        self.assertEqual(kwargs['body'], {'status': {'observedGeneration': 2}})
        self.assertEqual((kwargs['namespace'], kwargs['name']), ('default', 'ga'))

    def test_watch_list_fn(self):
        self.assertIs(self.cluster.watch_list_fn(EndpointType.SERVICE), self.cluster.core.list_namespaced_service)
        gateway_fn = self.cluster.watch_list_fn(EndpointType.GATEWAY)
        gateway_fn(namespace='default', field_selector='metadata.name=gw', watch=True)
        self.cluster.custom.list_namespaced_custom_object.assert_called_once_with(
            group=GATEWAY_GROUP, version=GATEWAY_VERSION, plural=GATEWAY_PLURAL,
            namespace='default', field_selector='metadata.name=gw', watch=True)
        with self.assertRaises(ValueError):
            self.cluster.watch_list_fn(EndpointType.ENDPOINT_ID)

    def test_is_not_found(self):
        self.assertTrue(is_not_found(ApiException(status=404)))
        self.assertFalse(is_not_found(ApiException(status=500)))
        self.assertFalse(is_not_found(ValueError()))


if __name__ == '__main__':
    unittest.main()
