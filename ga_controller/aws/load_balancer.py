from typing import Any, Dict, Iterator, List
import logging
from .client import retry_aws_operation

logger = logging.getLogger(__name__)


def iter_load_balancers(elbv2: Any) -> Iterator[Dict[str, Any]]:
    """
    Yield every load balancer visible to the client, following pagination.

    Args:
        elbv2: AWS ELBv2 client

    Raises:
        botocore.exceptions.ClientError: If a page cannot be fetched after retries
    """
    kwargs = {}
    while True:
        response = retry_aws_operation(elbv2.describe_load_balancers, **kwargs)
        for lb in response.get('LoadBalancers', []):
            yield lb
        marker = response.get('NextMarker')
        if not marker:
            return
        kwargs['Marker'] = marker


def list_listeners(elbv2: Any, lb_arn: str) -> List[Dict[str, Any]]:
    """
    List all listeners of a load balancer.

    Args:
        elbv2: AWS ELBv2 client
        lb_arn: ARN of the load balancer

    Returns:
        List of listener descriptions as returned by DescribeListeners

    Raises:
        botocore.exceptions.ClientError: If the listeners cannot be described
    """
    listeners = []
    kwargs = {'LoadBalancerArn': lb_arn}
    while True:
        response = retry_aws_operation(elbv2.describe_listeners, **kwargs)
        listeners.extend(response.get('Listeners', []))
        marker = response.get('NextMarker')
        if not marker:
            break
        kwargs['Marker'] = marker
    logger.debug(f"Found {len(listeners)} listeners for load balancer {lb_arn}")
    return listeners
