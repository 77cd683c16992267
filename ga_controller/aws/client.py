import boto3
from botocore.config import Config
import logging
import time
import os
from botocore.exceptions import ClientError

# Constants
AWS_RETRY_ATTEMPTS = 3
AWS_RETRY_DELAY = 1  # seconds

# Lookups that cannot succeed on a retry
NON_RETRYABLE_ERROR_CODES = frozenset({
    'AccessDenied',
    'AccessDeniedException',
    'ValidationError',
    'LoadBalancerNotFound',
    'ListenerNotFound',
})

# botocore retries throttling itself; retry_aws_operation covers transient service errors
aws_config = Config(
    retries=dict(
        max_attempts=AWS_RETRY_ATTEMPTS,
        mode='standard'
    )
)

# Regional STS endpoints are required for IRSA in opt-in regions
if os.environ.get('AWS_REGION') or os.environ.get('AWS_DEFAULT_REGION'):
    os.environ['AWS_STS_REGIONAL_ENDPOINTS'] = 'regional'

logger = logging.getLogger(__name__)


def default_region():
    return os.environ.get('AWS_REGION') or os.environ.get('AWS_DEFAULT_REGION')


def get_credentials():
    """Resolve credentials from the default chain (IRSA, node role, environment, shared file).

    Returns:
        botocore.credentials.Credentials, or None when the chain is empty
    """
    credentials = boto3.Session().get_credentials()
    if credentials is None:
        logger.warning("No AWS credentials found in the credential chain")
    return credentials


def _client_kwargs(region):
    kwargs = {'config': aws_config}
    if region:
        kwargs['region_name'] = region

    credentials = get_credentials()
    if credentials is not None:
        kwargs['aws_access_key_id'] = credentials.access_key
        kwargs['aws_secret_access_key'] = credentials.secret_key
        if credentials.token:
            kwargs['aws_session_token'] = credentials.token
    return kwargs


def get_elbv2_client(region=None):
    """ELBv2 client used to look up load balancers and their listeners.

    Args:
        region (str, optional): AWS region, defaults to AWS_REGION / AWS_DEFAULT_REGION

    Returns:
        boto3.client: ELBv2 client
    """
    region = region or default_region()
    logger.info(f"Creating ELBv2 client for region {region or '<default>'}")
    return boto3.client('elbv2', **_client_kwargs(region))


def error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', '')


def retry_aws_operation(operation_func, *args, **kwargs):
    """
    Call an AWS operation, retrying transient ClientErrors with exponential backoff.

    Errors listed in NON_RETRYABLE_ERROR_CODES and the last failed attempt are raised as is.
    """
    name = getattr(operation_func, '__name__', 'AWS operation')
    for attempt in range(AWS_RETRY_ATTEMPTS):
        try:
            return operation_func(*args, **kwargs)
        except ClientError as e:
            if error_code(e) in NON_RETRYABLE_ERROR_CODES or attempt == AWS_RETRY_ATTEMPTS - 1:
                raise
            wait_time = (2 ** attempt) * AWS_RETRY_DELAY
            logger.warning(f"{name} failed ({error_code(e)}), retrying in {wait_time}s: {str(e)}")
            time.sleep(wait_time)
