"""
Error taxonomy for runtime linking.

Every failure surfaced by the engine is a RuntimeLinkError subclass so callers
can report the message directly and branch on the type:

- ConfigurationError: bad connection/credential/declaration input, never retried
- ConflictError: a different runtime's agent already occupies the namespace
- TransientClusterError: cluster API failure, safe to retry manually
- ReadinessTimeoutError: no fresh heartbeat within the linking timeout
- RemoteControlPlaneError: failure talking to the control plane
"""

from typing import Optional


class RuntimeLinkError(Exception):
    """Base class for all runtime linking errors."""


class ConfigurationError(RuntimeLinkError):
    """Malformed or contradictory configuration input."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid configuration for '{field}': {message}")


class ConflictError(RuntimeLinkError):
    """An agent deployment for another runtime identity already exists."""

    def __init__(self, namespace: str, existing_runtime_id: str, runtime_id: str):
        self.namespace = namespace
        self.existing_runtime_id = existing_runtime_id
        self.runtime_id = runtime_id
        super().__init__(
            f"found existing agent deployment in namespace {namespace} with a different "
            f"runtime id: {existing_runtime_id or '<none>'} (expected {runtime_id})"
        )


class TransientClusterError(RuntimeLinkError):
    """Cluster API failure other than the documented not-found/already-exists cases."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None, message: Optional[str] = None):
        self.operation = operation
        self.status = getattr(cause, "status", None)
        detail = message or (str(cause) if cause is not None else "unknown error")
        super().__init__(f"{operation}: {detail}")


class ReadinessTimeoutError(RuntimeLinkError, TimeoutError):
    """The agent did not report a fresh heartbeat within the configured timeout."""

    def __init__(self, runtime_name: str, timeout: str):
        self.runtime_name = runtime_name
        self.timeout = timeout
        super().__init__(
            f"Timeout waiting for runtime link status of {runtime_name}, timeout: {timeout}"
        )


class RemoteControlPlaneError(RuntimeLinkError):
    """Failure returned by (or while reaching) the control plane API."""

    def __init__(
        self,
        operation: str,
        runtime: str,
        message: str,
        status_code: Optional[int] = None
    ):
        self.operation = operation
        self.runtime = runtime
        self.status_code = status_code
        super().__init__(f"{operation} failed for runtime {runtime}: {message}")


class RuntimeNotFoundError(RemoteControlPlaneError):
    """The control plane has no record for the runtime."""


class UnexpectedRuntimeTypeError(RemoteControlPlaneError):
    """The control plane record is not a Kubernetes runtime."""
