"""
Services for managed Kubernetes runtimes.

- ControlPlaneClient: REST client for the fleet-management control plane
- RuntimeLinker: link/finalize a runtime remotely
- ReadinessWaiter: heartbeat polling
- RuntimeEngine: converge, refresh and remove
"""

from .control_plane import ControlPlaneClient, get_control_plane_client
from .engine import RuntimeEngine, get_runtime_engine
from .label_reconciler import reconcile_labels
from .readiness import ReadinessWaiter
from .runtime_linker import RuntimeLinker

__all__ = [
    "ControlPlaneClient",
    "get_control_plane_client",
    "RuntimeEngine",
    "get_runtime_engine",
    "reconcile_labels",
    "ReadinessWaiter",
    "RuntimeLinker",
]
