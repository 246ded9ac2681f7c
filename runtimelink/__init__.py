"""Links Kubernetes clusters to a remote fleet-management control plane."""

from .errors import (
    ConfigurationError,
    ConflictError,
    ReadinessTimeoutError,
    RemoteControlPlaneError,
    RuntimeLinkError,
    RuntimeNotFoundError,
    TransientClusterError,
    UnexpectedRuntimeTypeError,
)
from .models import (
    ClusterConnection,
    ExecConfig,
    ExternalAgentBootstrap,
    Label,
    RuntimeDeclaration,
    RuntimeStatus,
)
from .services import RuntimeEngine, get_runtime_engine

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "ConflictError",
    "ReadinessTimeoutError",
    "RemoteControlPlaneError",
    "RuntimeLinkError",
    "RuntimeNotFoundError",
    "TransientClusterError",
    "UnexpectedRuntimeTypeError",
    "ClusterConnection",
    "ExecConfig",
    "ExternalAgentBootstrap",
    "Label",
    "RuntimeDeclaration",
    "RuntimeStatus",
    "RuntimeEngine",
    "get_runtime_engine",
]
