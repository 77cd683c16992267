"""
Error types raised while resolving endpoints and building the accelerator model.
"""

from typing import Any, List, Optional


class ConfigError(Exception):
    """Invalid controller configuration."""


class ValidationError(Exception):
    """A GlobalAccelerator spec that can never build as written.

    These are deterministic: retrying without changing the GlobalAccelerator fails the same way.
    """


class DiscoveryError(Exception):
    """Protocol and port information could not be discovered for an endpoint."""


class DNSResolutionError(Exception):
    """A load balancer DNS name could not be resolved to an ARN."""


class EndpointLoadError(Exception):
    """
    Failure to load a single endpoint, classified as warning or fatal.

    Args:
        message: Short human readable reason
        cause: The underlying exception, if any
        endpoint: The endpoint declaration that failed
        parent_namespace: Namespace of the owning GlobalAccelerator
        fatal: True when the failure should abort the reconciliation
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None,
                 endpoint: Any = None, parent_namespace: str = '', fatal: bool = False):
        self.message = message
        self.cause = cause
        self.endpoint = endpoint
        self.parent_namespace = parent_namespace
        self.fatal = fatal
        super().__init__(self._format())
        self.__cause__ = cause

    def _format(self) -> str:
        identity = ''
        if self.endpoint is not None:
            identity = f" (endpoint {self.endpoint.describe(self.parent_namespace)})"
        if self.cause is not None:
            return f"{self.message}{identity}: {self.cause}"
        return f"{self.message}{identity}"

    def is_fatal(self) -> bool:
        return self.fatal


def warning_error(message: str, cause: Optional[BaseException] = None,
                  endpoint: Any = None, parent_namespace: str = '') -> EndpointLoadError:
    return EndpointLoadError(message, cause, endpoint, parent_namespace, fatal=False)


def fatal_error(message: str, cause: Optional[BaseException] = None,
                endpoint: Any = None, parent_namespace: str = '') -> EndpointLoadError:
    return EndpointLoadError(message, cause, endpoint, parent_namespace, fatal=True)


class FatalEndpointsError(Exception):
    """One or more endpoints of a GlobalAccelerator failed to load fatally."""

    def __init__(self, owner: str, errors: List[BaseException]):
        self.owner = owner
        self.errors = list(errors)
        details = '; '.join(str(e) for e in self.errors)
        super().__init__(f"{len(self.errors)} endpoint(s) of {owner} failed to load: {details}")
