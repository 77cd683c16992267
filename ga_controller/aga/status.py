"""
GlobalAccelerator status: observedGeneration plus Ready and EndpointsResolved conditions.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence
from .types import EndpointStatus, GlobalAccelerator, LoadedEndpoint

CONDITION_READY = "Ready"
CONDITION_ENDPOINTS_RESOLVED = "EndpointsResolved"

REASON_MODEL_BUILT = "ModelBuilt"
REASON_VALIDATION_FAILED = "ValidationFailed"
REASON_ENDPOINT_LOAD_FAILED = "EndpointLoadFailed"
REASON_ALL_ENDPOINTS_RESOLVED = "AllEndpointsResolved"
REASON_ENDPOINTS_DEGRADED = "EndpointsDegraded"


def _now() -> str:
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def set_condition(conditions: Sequence[Mapping[str, Any]], condition_type: str, status: bool, reason: str,
                  message: str, now: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Return a copy of conditions with condition_type set.

    An existing condition with the same status, reason and message is kept as is,
    so its lastTransitionTime only moves on a real change.
    """
    value = "True" if status else "False"
    result = []
    found = False
    for condition in conditions:
        if condition.get('type') != condition_type:
            result.append(dict(condition))
            continue
        found = True
        if (condition.get('status'), condition.get('reason'), condition.get('message')) == (value, reason, message):
            result.append(dict(condition))
        else:
            result.append(_condition(condition_type, value, reason, message, now))
    if not found:
        result.append(_condition(condition_type, value, reason, message, now))
    return result


def _condition(condition_type: str, value: str, reason: str, message: str, now: Optional[str]) -> Dict[str, Any]:
    return {
        'type': condition_type,
        'status': value,
        'reason': reason,
        'message': message,
        'lastTransitionTime': now or _now(),
    }


def endpoint_warnings(loaded_endpoints: Sequence[LoadedEndpoint]) -> List[str]:
    warnings = []
    for endpoint in loaded_endpoints:
        if endpoint.status != EndpointStatus.WARNING:
            continue
        warnings.append(f"{endpoint.key}: {endpoint.error or endpoint.message}")
    return warnings


def build_status(current: Optional[Mapping[str, Any]], ga: GlobalAccelerator, ready: bool, reason: str,
                 message: str, loaded_endpoints: Optional[Sequence[LoadedEndpoint]] = None,
                 now: Optional[str] = None) -> Dict[str, Any]:
    """
    Compute the next status of a GlobalAccelerator.

    Args:
        current: Status currently stored on the object
        ga: The GlobalAccelerator being reconciled
        ready: Whether the model was built
        reason: Ready condition reason
        message: Ready condition message
        loaded_endpoints: Result of endpoint loading, None when loading did not run
        now: Timestamp for changed conditions

    Returns:
        dict: The new status; fields not owned here are carried over
    """
    status = dict(current or {})
    conditions = set_condition(status.get('conditions') or [], CONDITION_READY, ready, reason, message, now)

    if loaded_endpoints is not None:
        warnings = endpoint_warnings(loaded_endpoints)
        if warnings:
            conditions = set_condition(conditions, CONDITION_ENDPOINTS_RESOLVED, False, REASON_ENDPOINTS_DEGRADED,
                                       "; ".join(warnings), now)
        else:
            conditions = set_condition(conditions, CONDITION_ENDPOINTS_RESOLVED, True,
                                       REASON_ALL_ENDPOINTS_RESOLVED,
                                       f"{len(loaded_endpoints)} endpoint(s) resolved", now)

    status['conditions'] = conditions
    if ga.generation is not None:
        status['observedGeneration'] = ga.generation
    return status


def status_changed(current: Optional[Mapping[str, Any]], new: Mapping[str, Any]) -> bool:
    return dict(current or {}) != dict(new)
