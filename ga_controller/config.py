"""
Controller configuration read from environment variables.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_DNS_CACHE_TTL = 300  # seconds
DEFAULT_RECONCILE_INTERVAL = 300  # seconds
DEFAULT_WATCH_TIMEOUT = 300  # seconds
DEFAULT_REQUEST_TIMEOUT = 30  # seconds


@dataclass(frozen=True)
class ControllerConfig:
    cluster_name: str
    cluster_region: Optional[str] = None
    default_tags: Dict[str, str] = field(default_factory=dict)
    external_managed_tags: FrozenSet[str] = frozenset()
    default_tags_low_priority: bool = False
    dns_cache_ttl: int = DEFAULT_DNS_CACHE_TTL
    reconcile_interval: int = DEFAULT_RECONCILE_INTERVAL
    watch_timeout: int = DEFAULT_WATCH_TIMEOUT
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT


def parse_tags(raw: str) -> Dict[str, str]:
    """
    Parse a comma separated list of key=value pairs.

    Args:
        raw: String such as "Team=platform,Environment=prod"

    Returns:
        Dict of tag key to value

    Raises:
        ConfigError: If an entry has no '=' or an empty key
    """
    tags = {}
    for entry in raw.split(','):
        entry = entry.strip()
        if not entry:
            continue
        if '=' not in entry:
            raise ConfigError(f"Invalid tag entry '{entry}': expected key=value")
        key, value = entry.split('=', 1)
        key = key.strip()
        if not key:
            raise ConfigError(f"Invalid tag entry '{entry}': empty key")
        tags[key] = value.strip()
    return tags


def _parse_int(env: Dict[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got '{raw}'")
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def load_config(env: Optional[Dict[str, str]] = None) -> ControllerConfig:
    """
    Build the controller configuration from environment variables.

    Args:
        env: Mapping to read from, defaults to os.environ

    Returns:
        ControllerConfig

    Raises:
        ConfigError: If K8S_CLUSTER_NAME is missing or a value is malformed
    """
    if env is None:
        env = dict(os.environ)

    cluster_name = env.get('K8S_CLUSTER_NAME')
    if not cluster_name:
        raise ConfigError("K8S_CLUSTER_NAME environment variable is required but not set")

    cluster_region = env.get('AWS_REGION') or env.get('AWS_DEFAULT_REGION') or None
    external_managed_tags = frozenset(
        key.strip() for key in env.get('EXTERNAL_MANAGED_TAGS', '').split(',') if key.strip()
    )

    config = ControllerConfig(
        cluster_name=cluster_name,
        cluster_region=cluster_region,
        default_tags=parse_tags(env.get('DEFAULT_TAGS', '')),
        external_managed_tags=external_managed_tags,
        default_tags_low_priority=env.get('DEFAULT_TAGS_LOW_PRIORITY', 'false').lower() == 'true',
        dns_cache_ttl=_parse_int(env, 'DNS_CACHE_TTL', DEFAULT_DNS_CACHE_TTL),
        reconcile_interval=_parse_int(env, 'RECONCILE_INTERVAL', DEFAULT_RECONCILE_INTERVAL),
        watch_timeout=_parse_int(env, 'WATCH_TIMEOUT', DEFAULT_WATCH_TIMEOUT),
        request_timeout=_parse_int(env, 'REQUEST_TIMEOUT', DEFAULT_REQUEST_TIMEOUT),
    )
    logger.info(f"Loaded configuration for cluster {config.cluster_name} in region {config.cluster_region}")
    return config
