import queue
import unittest
from unittest.mock import MagicMock, patch
import os
import kopf
from kubernetes.client.rest import ApiException
from .aga import model
from .aga.reference_tracker import ReferenceTracker
from .aga.types import EndpointSpec, EndpointStatus, EndpointType, LoadedEndpoint, ResourceKey
from .config import ControllerConfig
from .errors import FatalEndpointsError, ValidationError, fatal_error
from .handlers import (
    FATAL_RETRY_DELAY,
    Services,
    consume_events,
    delete_fn,
    handle_reference_grant,
    handle_resource_event,
    reconcile,
    reconcile_owner,
    startup_fn,
)
from .k8s.watcher import ResourceEvent

WEB = ResourceKey(EndpointType.SERVICE, 'default', 'web')


def ga_body(namespace='default', name='ga', endpoint_namespace=None, status=None):
    endpoint = {'type': 'Service', 'name': 'web'}
    if endpoint_namespace:
        endpoint['namespace'] = endpoint_namespace
    body = {
        'metadata': {'namespace': namespace, 'name': name, 'generation': 1},
        'spec': {
            'listeners': [{
                'protocol': 'TCP',
                'portRanges': [{'fromPort': 80, 'toPort': 80}],
                'endpointGroups': [{'endpoints': [endpoint]}],
            }],
        },
    }
    if status is not None:
        body['status'] = status
    return body


def loaded_web(namespace='default'):
    return LoadedEndpoint(type=EndpointType.SERVICE, name='web', namespace=namespace, weight=128,
                          endpoint=EndpointSpec(type=EndpointType.SERVICE, name='web'),
                          status=EndpointStatus.LOADED, arn='arn:lb')


class HandlersTestCase(unittest.TestCase):
    def setUp(self):
        self.logger = MagicMock()
        self.cluster = MagicMock()
        self.loader = MagicMock()
        self.loader.load_endpoints.return_value = ([loaded_web()], [])
        self.model_builder = MagicMock()
        self.model_builder.build.return_value = model.Stack(model.StackID('default', 'ga'), 'test-cluster')
        self.resources_manager = MagicMock()
        self.services = Services(
            config=ControllerConfig(cluster_name='test-cluster'),
            cluster=self.cluster,
            loader=self.loader,
            model_builder=self.model_builder,
            tracker=ReferenceTracker(),
            resources_manager=self.resources_manager,
            event_queues={EndpointType.SERVICE: queue.Queue()},
        )
        self.memo = kopf.Memo()
        self.memo.services = self.services


class TestStartup(unittest.TestCase):
    def test_missing_cluster_name(self):
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(kopf.PermanentError):
                startup_fn(memo=kopf.Memo(), logger=MagicMock())

    def test_services_stored_in_memo(self):
        memo = kopf.Memo()
        services = MagicMock()
        with patch.dict(os.environ, {'K8S_CLUSTER_NAME': 'test-cluster'}, clear=True), \
             patch('ga_controller.handlers.load_kube_config') as mock_load, \
             patch('ga_controller.handlers.create_services', return_value=services) as mock_create, \
             patch('ga_controller.handlers.start_consumers') as mock_start:
            startup_fn(memo=memo, logger=MagicMock())

        mock_load.assert_called_once()
        self.assertEqual(mock_create.call_args[0][0].cluster_name, 'test-cluster')
        mock_start.assert_called_once_with(services)
        self.assertIs(memo.services, services)


class TestReconcile(HandlersTestCase):
    def test_success_records_references_and_status(self):
        reconcile(self.services, ga_body(), self.logger)

        self.assertEqual(self.services.tracker.get_owners_for_resource(WEB), {'default/ga'})
        self.resources_manager.monitor_endpoint_resources.assert_called_once()
        ga, loaded = self.resources_manager.monitor_endpoint_resources.call_args[0]
        self.assertEqual(ga.key, 'default/ga')
        self.assertEqual(loaded, [loaded_web()])

        namespace, name, status = self.cluster.patch_global_accelerator_status.call_args[0]
        self.assertEqual((namespace, name), ('default', 'ga'))
        self.assertEqual(status['observedGeneration'], 1)
        ready = next(c for c in status['conditions'] if c['type'] == 'Ready')
        self.assertEqual((ready['status'], ready['reason']), ('True', 'ModelBuilt'))

    def test_unchanged_status_not_patched(self):
        reconcile(self.services, ga_body(), self.logger)
        status = self.cluster.patch_global_accelerator_status.call_args[0][2]
        self.cluster.patch_global_accelerator_status.reset_mock()

        reconcile(self.services, ga_body(status=status), self.logger)
        self.cluster.patch_global_accelerator_status.assert_not_called()

    def test_validation_error_is_permanent(self):
        self.model_builder.build.side_effect = ValidationError("unsupported protocol: HTTP")

        with self.assertRaises(kopf.PermanentError):
            reconcile(self.services, ga_body(), self.logger)

        self.assertFalse(self.services.tracker.is_resource_referenced(WEB))
        self.resources_manager.monitor_endpoint_resources.assert_not_called()
        status = self.cluster.patch_global_accelerator_status.call_args[0][2]
        ready = next(c for c in status['conditions'] if c['type'] == 'Ready')
        self.assertEqual(ready['reason'], 'ValidationFailed')

    def test_fatal_endpoints_are_temporary(self):
        error = fatal_error("API server error", ApiException(status=500))
        self.loader.load_endpoints.return_value = ([], [error])
        self.model_builder.build.side_effect = FatalEndpointsError('default/ga', [error])

        with self.assertRaises(kopf.TemporaryError) as ctx:
            reconcile(self.services, ga_body(), self.logger)

        self.assertEqual(ctx.exception.delay, FATAL_RETRY_DELAY)
        self.resources_manager.monitor_endpoint_resources.assert_not_called()

    def test_status_patch_failure_does_not_fail_reconcile(self):
        self.cluster.patch_global_accelerator_status.side_effect = ApiException(status=500)
        reconcile(self.services, ga_body(), self.logger)
        self.assertTrue(self.services.tracker.is_resource_referenced(WEB))


class TestDelete(HandlersTestCase):
    def test_delete_releases_references(self):
        reconcile(self.services, ga_body(), self.logger)
        delete_fn(meta={'namespace': 'default', 'name': 'ga'}, memo=self.memo, logger=self.logger)

        self.assertFalse(self.services.tracker.is_resource_referenced(WEB))
        self.resources_manager.remove_ga.assert_called_once_with('default/ga')


class TestResourceEvents(HandlersTestCase):
    def test_event_reconciles_every_owner(self):
        reconcile(self.services, ga_body(name='ga1'), self.logger)
        reconcile(self.services, ga_body(name='ga2'), self.logger)
        self.loader.load_endpoints.reset_mock()
        self.cluster.get_global_accelerator.side_effect = lambda ns, name: ga_body(ns, name)

        handle_resource_event(self.services, ResourceEvent(EndpointType.SERVICE, 'default', 'web', 'MODIFIED'))

        self.assertEqual([c[0] for c in self.cluster.get_global_accelerator.call_args_list],
                         [('default', 'ga1'), ('default', 'ga2')])
        self.assertEqual(self.loader.load_endpoints.call_count, 2)

    def test_event_for_unreferenced_resource(self):
        handle_resource_event(self.services, ResourceEvent(EndpointType.SERVICE, 'default', 'other', 'ADDED'))
        self.cluster.get_global_accelerator.assert_not_called()

    def test_deleted_owner_is_forgotten(self):
        reconcile(self.services, ga_body(), self.logger)
        self.cluster.get_global_accelerator.side_effect = ApiException(status=404)

        reconcile_owner(self.services, 'default/ga')

        self.assertFalse(self.services.tracker.is_resource_referenced(WEB))
        self.resources_manager.remove_ga.assert_called_once_with('default/ga')

    def test_requeued_failure_is_logged(self):
        self.cluster.get_global_accelerator.return_value = ga_body()
        self.model_builder.build.side_effect = ValidationError("bad")
        reconcile_owner(self.services, 'default/ga')
        self.loader.load_endpoints.assert_called_once()

    def test_consumer_processes_queue(self):
        event_queue = self.services.event_queues[EndpointType.SERVICE]
        event_queue.put(ResourceEvent(EndpointType.SERVICE, 'default', 'web', 'DELETED'))

        with patch('ga_controller.handlers.handle_resource_event') as mock_handle:
            mock_handle.side_effect = lambda services, event: services.stop_event.set()
            consume_events(self.services, event_queue)

        mock_handle.assert_called_once()
        self.assertTrue(event_queue.empty())


class TestReferenceGrantEvents(HandlersTestCase):
    def grant(self, from_namespaces):
        return {
            'metadata': {'namespace': 'shared', 'name': 'allow-ga'},
            'spec': {
                'from': [{'group': 'aga.k8s.aws', 'kind': 'GlobalAccelerator', 'namespace': ns}
                         for ns in from_namespaces],
                'to': [{'group': '', 'kind': 'Service'}],
            },
        }

    def test_reconciles_cross_namespace_owners(self):
        self.cluster.list_global_accelerators.return_value = [
            ga_body('team-a', 'ga', endpoint_namespace='shared'),
            ga_body('team-a', 'local'),
            ga_body('team-b', 'ga', endpoint_namespace='shared'),
        ]
        self.cluster.get_global_accelerator.side_effect = lambda ns, name: ga_body(ns, name, 'shared')

        handle_reference_grant(self.services, 'ADDED', self.grant(['team-a']), self.logger)

        self.cluster.get_global_accelerator.assert_called_once_with('team-a', 'ga')

    def test_previous_namespaces_are_reconciled(self):
        self.cluster.list_global_accelerators.return_value = []
        handle_reference_grant(self.services, 'ADDED', self.grant(['team-a']), self.logger)

        self.cluster.list_global_accelerators.return_value = [ga_body('team-a', 'ga', endpoint_namespace='shared')]
        self.cluster.get_global_accelerator.return_value = ga_body('team-a', 'ga', endpoint_namespace='shared')
        handle_reference_grant(self.services, 'MODIFIED', self.grant([]), self.logger)

        self.cluster.get_global_accelerator.assert_called_once_with('team-a', 'ga')
        self.assertEqual(self.services.grant_sources[('shared', 'allow-ga')], set())

    def test_other_kinds_ignored(self):
        grant = self.grant([])
        grant['spec']['from'] = [{'group': 'gateway.networking.k8s.io', 'kind': 'HTTPRoute', 'namespace': 'team-a'}]
        handle_reference_grant(self.services, 'ADDED', grant, self.logger)
        self.cluster.list_global_accelerators.assert_not_called()


if __name__ == '__main__':
    unittest.main()
