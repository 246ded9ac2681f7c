"""
Kubernetes Orchestration Module

This module contains all Kubernetes-specific code for the runtime agent:
- ClusterClient: Low-level Kubernetes API interactions, cached per configuration
- Manifest helpers: Namespace, ServiceAccount, ClusterRoleBinding, Deployment
- ObjectReconciler: Conflict check, ordered create, teardown and readiness wait
"""

from .client import ClusterClient, build_api_client, clear_cluster_clients, get_cluster_client
from .helpers import (
    AGENT_DEPLOYMENT_NAME,
    CLUSTER_ROLE_BINDING_NAME,
    RUNTIME_ID_ANNOTATION,
    SERVICE_ACCOUNT_NAME,
    build_agent_env,
    create_agent_deployment_manifest,
    create_cluster_role_binding_manifest,
    create_namespace_manifest,
    create_service_account_manifest,
    get_standard_labels,
)
from .reconciler import ObjectReconciler

__all__ = [
    # Client
    "ClusterClient",
    "build_api_client",
    "clear_cluster_clients",
    "get_cluster_client",
    # Manifest Helpers
    "AGENT_DEPLOYMENT_NAME",
    "CLUSTER_ROLE_BINDING_NAME",
    "RUNTIME_ID_ANNOTATION",
    "SERVICE_ACCOUNT_NAME",
    "build_agent_env",
    "create_agent_deployment_manifest",
    "create_cluster_role_binding_manifest",
    "create_namespace_manifest",
    "create_service_account_manifest",
    "get_standard_labels",
    # Reconciler
    "ObjectReconciler",
]
