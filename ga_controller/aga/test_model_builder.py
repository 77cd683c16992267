import json
import unittest
from unittest.mock import MagicMock
from ..config import ControllerConfig
from ..errors import FatalEndpointsError, ValidationError, fatal_error
from . import model
from .model_builder import ModelBuilder
from .types import EndpointSpec, EndpointStatus, EndpointType, GlobalAccelerator, LoadedEndpoint


def make_ga(listeners, name='ga', namespace='default', **spec):
    spec['listeners'] = listeners
    return GlobalAccelerator.from_dict({'metadata': {'name': name, 'namespace': namespace}, 'spec': spec})


def loaded_web():
    return LoadedEndpoint(type=EndpointType.SERVICE, name='web', namespace='default', weight=128,
                          endpoint=EndpointSpec(type=EndpointType.SERVICE, name='web'),
                          status=EndpointStatus.LOADED, arn='arn:aws:elasticloadbalancing:lb/net/web/1')


def listener(ranges, overrides=None):
    group = {'region': 'us-west-2', 'endpoints': [{'type': 'Service', 'name': 'web'}]}
    if overrides is not None:
        group['portOverrides'] = overrides
    return {'protocol': 'TCP', 'portRanges': ranges, 'endpointGroups': [group]}


class TestModelBuilder(unittest.TestCase):
    def setUp(self):
        self.config = ControllerConfig(cluster_name='test-cluster', cluster_region='us-west-2',
                                       default_tags={'Environment': 'test'})
        self.builder = ModelBuilder(self.config, MagicMock())

    def test_builds_full_stack(self):
        ga = make_ga([listener([{'fromPort': 80, 'toPort': 80}])], ipAddressType='DUAL_STACK')
        stack = self.builder.build(ga, [loaded_web()])

        self.assertEqual(str(stack.stack_id), 'default/ga')
        self.assertEqual(stack.accelerator.spec.ip_address_type, 'DUAL_STACK')
        self.assertEqual(stack.accelerator.spec.tags, {'Environment': 'test'})
        self.assertEqual(len(stack.listeners), 1)
        self.assertEqual(stack.endpoint_groups[0].spec.endpoint_configurations[0].endpoint_id,
                         'arn:aws:elasticloadbalancing:lb/net/web/1')

    def test_port_override_outside_listener_range_fails(self):
        ga = make_ga([listener([{'fromPort': 443, 'toPort': 443}], [{'listenerPort': 80, 'endpointPort': 8080}])])
        with self.assertRaisesRegex(ValidationError, 'not within any listener port range'):
            self.builder.build(ga, [loaded_web()])

    def test_port_override_inside_listener_range_succeeds(self):
        ga = make_ga([listener([{'fromPort': 80, 'toPort': 80}], [{'listenerPort': 80, 'endpointPort': 8080}])])
        stack = self.builder.build(ga, [loaded_web()])
        self.assertEqual(stack.endpoint_groups[0].spec.port_overrides[0].endpoint_port, 8080)

    def test_fatal_endpoints_abort_build(self):
        ga = make_ga([listener([{'fromPort': 80, 'toPort': 80}])])
        error = fatal_error("failed to get endpoint resource from API server", RuntimeError("timeout"),
                            EndpointSpec(type=EndpointType.SERVICE, name='web'), 'default')
        with self.assertRaises(FatalEndpointsError) as ctx:
            self.builder.build(ga, [], [error])
        self.assertEqual(ctx.exception.errors, [error])
        self.assertIn('default/ga', str(ctx.exception))

    def test_stack_serializes_to_json(self):
        ga = make_ga([listener([{'fromPort': 80, 'toPort': 80}])])
        stack = self.builder.build(ga, [loaded_web()])
        data = json.loads(stack.to_json())

        group = data['resources'][model.RESOURCE_TYPE_ENDPOINT_GROUP]['EndpointGroup-0-0']['spec']
        self.assertEqual(group['listenerARN'], {
            '$ref': '#/resources/AWS::GlobalAccelerator::Listener/Listener-0/status/listenerARN'})
        self.assertEqual(group['endpointConfigurations'], [
            {'endpointID': 'arn:aws:elasticloadbalancing:lb/net/web/1', 'weight': 128}])
        accelerator = data['resources'][model.RESOURCE_TYPE_ACCELERATOR]['GlobalAccelerator']['spec']
        self.assertTrue(accelerator['enabled'])
        listener_tags = data['resources'][model.RESOURCE_TYPE_LISTENER]['Listener-0']['trackingTags']
        self.assertEqual(listener_tags, {
            'elbv2.k8s.aws/cluster': 'test-cluster',
            'aga.k8s.aws/stack': 'default/ga',
            'aga.k8s.aws/resource': 'Listener-0',
        })

    def test_tracking_tags(self):
        ga = make_ga([listener([{'fromPort': 80, 'toPort': 80}])])
        stack = self.builder.build(ga, [loaded_web()])
        self.assertEqual(stack.tracking_tags(stack.accelerator), {
            'elbv2.k8s.aws/cluster': 'test-cluster',
            'aga.k8s.aws/stack': 'default/ga',
            'aga.k8s.aws/resource': 'GlobalAccelerator',
        })


if __name__ == '__main__':
    unittest.main()
