"""
Cluster orchestration for managed runtimes.

- AuthConfigResolver: layered cluster access configuration
- plan_bootstrap: drift decision between two declarations
- kubernetes: agent objects in the target cluster
"""

from .auth_config import AuthConfigResolver, ClusterConnectionConfig
from .bootstrap_plan import plan_bootstrap

__all__ = [
    "AuthConfigResolver",
    "ClusterConnectionConfig",
    "plan_bootstrap",
]
