import unittest
from .status import (
    CONDITION_ENDPOINTS_RESOLVED,
    CONDITION_READY,
    REASON_ENDPOINT_LOAD_FAILED,
    REASON_MODEL_BUILT,
    build_status,
    set_condition,
    status_changed,
)
from .types import EndpointSpec, EndpointStatus, EndpointType, GlobalAccelerator, LoadedEndpoint

T1 = '2026-01-01T00:00:00Z'
T2 = '2026-01-02T00:00:00Z'


def make_ga(generation=3):
    return GlobalAccelerator.from_dict({'metadata': {'namespace': 'default', 'name': 'ga', 'generation': generation},
                                        'spec': {}})


def endpoint(name, status, message=''):
    return LoadedEndpoint(type=EndpointType.SERVICE, name=name, namespace='default', weight=128,
                          endpoint=EndpointSpec(type=EndpointType.SERVICE, name=name),
                          status=status, message=message)


def condition(status, condition_type):
    return next(c for c in status['conditions'] if c['type'] == condition_type)


class TestSetCondition(unittest.TestCase):
    def test_adds_missing_condition(self):
        conditions = set_condition([], CONDITION_READY, True, REASON_MODEL_BUILT, 'ok', T1)
        self.assertEqual(conditions, [{'type': 'Ready', 'status': 'True', 'reason': 'ModelBuilt',
                                       'message': 'ok', 'lastTransitionTime': T1}])

    def test_unchanged_condition_keeps_transition_time(self):
        conditions = set_condition([], CONDITION_READY, True, REASON_MODEL_BUILT, 'ok', T1)
        conditions = set_condition(conditions, CONDITION_READY, True, REASON_MODEL_BUILT, 'ok', T2)
        self.assertEqual(conditions[0]['lastTransitionTime'], T1)

    def test_changed_condition_replaced(self):
        conditions = set_condition([], CONDITION_READY, True, REASON_MODEL_BUILT, 'ok', T1)
        conditions = set_condition(conditions, CONDITION_READY, False, REASON_ENDPOINT_LOAD_FAILED, 'boom', T2)
        self.assertEqual(len(conditions), 1)
        self.assertEqual(conditions[0]['status'], 'False')
        self.assertEqual(conditions[0]['lastTransitionTime'], T2)


class TestBuildStatus(unittest.TestCase):
    def test_ready_with_resolved_endpoints(self):
        status = build_status({}, make_ga(), True, REASON_MODEL_BUILT, 'built',
                              [endpoint('web', EndpointStatus.LOADED)], now=T1)
        self.assertEqual(status['observedGeneration'], 3)
        self.assertEqual(condition(status, CONDITION_READY)['status'], 'True')
        self.assertEqual(condition(status, CONDITION_ENDPOINTS_RESOLVED)['status'], 'True')

    def test_warnings_listed(self):
        status = build_status({}, make_ga(), True, REASON_MODEL_BUILT, 'built',
                              [endpoint('web', EndpointStatus.LOADED),
                               endpoint('gone', EndpointStatus.WARNING, 'Endpoint not found')], now=T1)
        resolved = condition(status, CONDITION_ENDPOINTS_RESOLVED)
        self.assertEqual(resolved['status'], 'False')
        self.assertEqual(resolved['message'], 'Service/default/gone: Endpoint not found')

    def test_without_loaded_endpoints_keeps_existing_condition(self):
        first = build_status({}, make_ga(), True, REASON_MODEL_BUILT, 'built',
                             [endpoint('web', EndpointStatus.LOADED)], now=T1)
        second = build_status(first, make_ga(4), False, REASON_ENDPOINT_LOAD_FAILED, 'boom', now=T2)
        self.assertEqual(condition(second, CONDITION_ENDPOINTS_RESOLVED),
                         condition(first, CONDITION_ENDPOINTS_RESOLVED))
        self.assertEqual(second['observedGeneration'], 4)

    def test_foreign_fields_carried_over(self):
        status = build_status({'acceleratorARN': 'arn:ga'}, make_ga(), True, REASON_MODEL_BUILT, 'built', now=T1)
        self.assertEqual(status['acceleratorARN'], 'arn:ga')

    def test_status_changed(self):
        status = build_status({}, make_ga(), True, REASON_MODEL_BUILT, 'built', now=T1)
        again = build_status(status, make_ga(), True, REASON_MODEL_BUILT, 'built', now=T2)
        self.assertFalse(status_changed(status, again))
        self.assertTrue(status_changed({}, status))


if __name__ == '__main__':
    unittest.main()
