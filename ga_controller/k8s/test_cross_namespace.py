import unittest
from unittest.mock import MagicMock
from kubernetes.client.rest import ApiException
from ..aga.types import EndpointType
from .cross_namespace import ReferenceGrantValidator, grant_allows


def make_grant(from_entries, to_entries, name='allow-aga'):
    return {
        'metadata': {'name': name, 'namespace': 'backend'},
        'spec': {'from': from_entries, 'to': to_entries},
    }


GA_FROM = {'group': 'aga.k8s.aws', 'kind': 'GlobalAccelerator', 'namespace': 'frontend'}


class TestGrantAllows(unittest.TestCase):
    def test_service_reference(self):
        grant = make_grant([GA_FROM], [{'group': '', 'kind': 'Service', 'name': 'my-service'}])
        self.assertTrue(grant_allows(grant, 'frontend', '', 'Service', 'my-service'))

    def test_ingress_reference_without_name(self):
        grant = make_grant([GA_FROM], [{'group': 'networking.k8s.io', 'kind': 'Ingress'}])
        self.assertTrue(grant_allows(grant, 'frontend', 'networking.k8s.io', 'Ingress', 'anything'))

    def test_multiple_from_and_to_entries(self):
        grant = make_grant(
            [{'group': 'aga.k8s.aws', 'kind': 'GlobalAccelerator', 'namespace': 'other'}, GA_FROM],
            [{'group': 'networking.k8s.io', 'kind': 'Ingress'}, {'group': '', 'kind': 'Service'}])
        self.assertTrue(grant_allows(grant, 'frontend', '', 'Service', 'my-service'))

    def test_wrong_from_namespace(self):
        grant = make_grant([dict(GA_FROM, namespace='other')], [{'group': '', 'kind': 'Service'}])
        self.assertFalse(grant_allows(grant, 'frontend', '', 'Service', 'my-service'))

    def test_wrong_from_group(self):
        grant = make_grant([dict(GA_FROM, group='some-other-group')], [{'group': '', 'kind': 'Service'}])
        self.assertFalse(grant_allows(grant, 'frontend', '', 'Service', 'my-service'))

    def test_wrong_from_kind(self):
        grant = make_grant([dict(GA_FROM, kind='SomeOtherKind')], [{'group': '', 'kind': 'Service'}])
        self.assertFalse(grant_allows(grant, 'frontend', '', 'Service', 'my-service'))

    def test_wrong_to_group(self):
        grant = make_grant([GA_FROM], [{'group': 'networking.k8s.io', 'kind': 'Service'}])
        self.assertFalse(grant_allows(grant, 'frontend', '', 'Service', 'my-service'))

    def test_wrong_to_name(self):
        grant = make_grant([GA_FROM], [{'group': '', 'kind': 'Service', 'name': 'other-service'}])
        self.assertFalse(grant_allows(grant, 'frontend', '', 'Service', 'my-service'))


class TestReferenceGrantValidator(unittest.TestCase):
    def setUp(self):
        self.cluster = MagicMock()
        self.validator = ReferenceGrantValidator(self.cluster)

    def test_same_namespace_needs_no_grant(self):
        self.assertTrue(self.validator.is_allowed('frontend', EndpointType.SERVICE, 'frontend', 'svc'))
        self.cluster.list_reference_grants.assert_not_called()

    def test_gateway_grant_in_target_namespace(self):
        self.cluster.list_reference_grants.return_value = [
            make_grant([GA_FROM], [{'group': 'gateway.networking.k8s.io', 'kind': 'Gateway'}])
        ]
        self.assertTrue(self.validator.is_allowed('frontend', EndpointType.GATEWAY, 'backend', 'gw'))
        self.cluster.list_reference_grants.assert_called_once_with('backend')

    def test_no_grants(self):
        self.cluster.list_reference_grants.return_value = []
        self.assertFalse(self.validator.is_allowed('frontend', EndpointType.SERVICE, 'backend', 'svc'))

    def test_missing_crd_denies(self):
        self.cluster.list_reference_grants.side_effect = ApiException(status=404, reason='Not Found')
        self.assertFalse(self.validator.is_allowed('frontend', EndpointType.SERVICE, 'backend', 'svc'))

    def test_other_api_errors_propagate(self):
        self.cluster.list_reference_grants.side_effect = ApiException(status=500, reason='Internal')
        with self.assertRaises(ApiException):
            self.validator.is_allowed('frontend', EndpointType.SERVICE, 'backend', 'svc')


if __name__ == '__main__':
    unittest.main()
