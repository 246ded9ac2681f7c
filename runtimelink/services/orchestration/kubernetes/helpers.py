"""
Kubernetes Manifests for the Runtime Agent

The agent runs from a fixed set of objects in one well-known namespace:
- Namespace: holds the agent objects
- ServiceAccount: identity the agent pod runs as
- ClusterRoleBinding: grants that identity cluster-admin
- Deployment: single-replica agent, annotated with the runtime id it serves
"""

from kubernetes import client
from typing import Dict, List, Optional

from ....models import AgentBootstrapParams


AGENT_DEPLOYMENT_NAME = "prodvana-agent"
SERVICE_ACCOUNT_NAME = "prodvana"
CLUSTER_ROLE_BINDING_NAME = "prodvana-access"
CLUSTER_ROLE_NAME = "cluster-admin"
RUNTIME_ID_ANNOTATION = "prodvana.io/runtime-id"

AGENT_CONTAINER_NAME = "default"
AGENT_PORT = 5100
RELEASE_CHANNEL = "prodvana"


# =============================================================================
# Labels
# =============================================================================

def get_standard_labels() -> Dict[str, str]:
    """Labels put on every object the engine creates."""
    return {
        "app.kubernetes.io/name": AGENT_DEPLOYMENT_NAME,
        "app.kubernetes.io/managed-by": "runtimelink",
    }


def get_agent_pod_labels() -> Dict[str, str]:
    return {
        "app": AGENT_DEPLOYMENT_NAME,
        "prodvana.io/service": AGENT_DEPLOYMENT_NAME,
    }


# =============================================================================
# Cluster-scoped and namespace objects
# =============================================================================

def create_namespace_manifest(namespace: str) -> client.V1Namespace:
    return client.V1Namespace(
        metadata=client.V1ObjectMeta(
            name=namespace,
            labels=get_standard_labels()
        )
    )


def create_service_account_manifest(namespace: str) -> client.V1ServiceAccount:
    return client.V1ServiceAccount(
        metadata=client.V1ObjectMeta(
            name=SERVICE_ACCOUNT_NAME,
            namespace=namespace,
            labels=get_standard_labels()
        )
    )


def create_cluster_role_binding_manifest(namespace: str) -> client.V1ClusterRoleBinding:
    """
    Bind the agent's service account to cluster-admin.

    Args:
        namespace: Namespace of the service account

    Returns:
        V1ClusterRoleBinding
    """
    return client.V1ClusterRoleBinding(
        metadata=client.V1ObjectMeta(
            name=CLUSTER_ROLE_BINDING_NAME,
            labels=get_standard_labels()
        ),
        subjects=[
            client.RbacV1Subject(
                kind="ServiceAccount",
                name=SERVICE_ACCOUNT_NAME,
                namespace=namespace
            )
        ],
        role_ref=client.V1RoleRef(
            api_group="rbac.authorization.k8s.io",
            kind="ClusterRole",
            name=CLUSTER_ROLE_NAME
        )
    )


# =============================================================================
# Agent Deployment
# =============================================================================

def build_agent_env(
    namespace: str,
    base_env: Dict[str, str],
    overrides: Optional[Dict[str, str]]
) -> List[client.V1EnvVar]:
    """
    Build the agent container environment.

    Layers, later layers win on name collisions:
    1. Fixed variables (namespace, release channel)
    2. Base environment handed out by the control plane
    3. Declared overrides

    Variables keep the position of their first appearance; each layer is
    added in sorted key order so the output is deterministic.

    Args:
        namespace: Agent namespace
        base_env: Environment from the control plane link response
        overrides: Declared agent environment, None if not declared

    Returns:
        List of V1EnvVar
    """
    env: Dict[str, str] = {
        "PVN_NAMESPACE": namespace,
        "PVN_RELEASE_CHANNEL": RELEASE_CHANNEL,
    }
    for layer in (base_env or {}, overrides or {}):
        for key in sorted(layer):
            env[key] = layer[key]

    return [client.V1EnvVar(name=k, value=v) for k, v in env.items()]


def create_agent_deployment_manifest(
    namespace: str,
    runtime_id: str,
    bootstrap: AgentBootstrapParams,
    agent_env: Optional[Dict[str, str]] = None
) -> client.V1Deployment:
    """
    Create the agent Deployment.

    The runtime id annotation is what the conflict check and refresh read
    back to tell which runtime the live agent serves.

    Args:
        namespace: Agent namespace
        runtime_id: Runtime id returned by the control plane
        bootstrap: Image, args and base env from the link response
        agent_env: Declared agent environment overrides

    Returns:
        V1Deployment
    """
    pod_labels = get_agent_pod_labels()

    container = client.V1Container(
        name=AGENT_CONTAINER_NAME,
        image=bootstrap.image,
        image_pull_policy="Always",
        args=list(bootstrap.args),
        env=build_agent_env(namespace, bootstrap.env, agent_env),
        ports=[
            client.V1ContainerPort(
                container_port=AGENT_PORT,
                protocol="TCP"
            )
        ]
    )

    return client.V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=client.V1ObjectMeta(
            name=AGENT_DEPLOYMENT_NAME,
            namespace=namespace,
            labels=get_standard_labels(),
            annotations={RUNTIME_ID_ANNOTATION: runtime_id}
        ),
        spec=client.V1DeploymentSpec(
            replicas=1,
            selector=client.V1LabelSelector(
                match_labels={"app": AGENT_DEPLOYMENT_NAME}
            ),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=pod_labels),
                spec=client.V1PodSpec(
                    service_account_name=SERVICE_ACCOUNT_NAME,
                    containers=[container]
                )
            )
        )
    )
