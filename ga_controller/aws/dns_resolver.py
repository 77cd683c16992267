"""
Resolves load balancer DNS names to load balancer ARNs with a TTL cache.
"""

from typing import Any, Callable, Dict, Optional, Tuple
import logging
import threading
import time
from botocore.exceptions import BotoCoreError, ClientError
from ..config import DEFAULT_DNS_CACHE_TTL
from ..errors import DNSResolutionError
from .load_balancer import iter_load_balancers

logger = logging.getLogger(__name__)


class DNSToLoadBalancerResolver:
    """
    Maps a load balancer DNS name to its ARN.

    Cache hits only read under the lock. A miss calls ELBv2 outside the lock
    and then inserts under it, so two concurrent misses for the same name may
    both reach AWS; both write the same ARN.

    Args:
        elbv2: AWS ELBv2 client
        ttl: Seconds a resolved ARN stays cached
        clock: Monotonic time source, injectable for tests
    """

    def __init__(self, elbv2: Any, ttl: int = DEFAULT_DNS_CACHE_TTL,
                 clock: Callable[[], float] = time.monotonic):
        self._elbv2 = elbv2
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._cache: Dict[str, Tuple[str, float]] = {}

    def _cached(self, dns_name: str) -> Optional[str]:
        with self._lock:
            entry = self._cache.get(dns_name)
        if entry is None:
            return None
        arn, expires_at = entry
        if self._clock() >= expires_at:
            return None
        return arn

    def resolve_dns_to_load_balancer_arn(self, dns_name: str) -> str:
        """
        Resolve a load balancer DNS name to its ARN.

        Args:
            dns_name: DNS name of an ALB or NLB

        Returns:
            str: The load balancer ARN

        Raises:
            DNSResolutionError: If the name is empty, no load balancer matches, or ELBv2 fails
        """
        if not dns_name:
            raise DNSResolutionError("DNS name is empty")

        arn = self._cached(dns_name)
        if arn is not None:
            logger.debug(f"DNS cache hit for {dns_name}: {arn}")
            return arn

        try:
            arn = self._lookup(dns_name)
        except (ClientError, BotoCoreError) as e:
            raise DNSResolutionError(f"failed to describe load balancers while resolving {dns_name}: {str(e)}") from e

        if arn is None:
            raise DNSResolutionError(f"no load balancer found with DNS name {dns_name}")

        with self._lock:
            self._cache[dns_name] = (arn, self._clock() + self._ttl)
        logger.debug(f"Resolved {dns_name} to {arn}")
        return arn

    def _lookup(self, dns_name: str) -> Optional[str]:
        for lb in iter_load_balancers(self._elbv2):
            if lb.get('DNSName') == dns_name:
                return lb.get('LoadBalancerArn')
        return None
