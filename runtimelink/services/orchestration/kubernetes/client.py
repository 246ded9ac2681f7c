"""
Kubernetes Client for the Runtime Agent Objects

Async wrapper over the kubernetes API for the handful of objects the agent
needs. Every call runs the synchronous client in a worker thread.

Not-found on delete and already-exists on create are treated as success so
every operation is idempotent. Any other API failure is raised as a
TransientClusterError.
"""

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from tenacity import RetryError, before_sleep_log, retry, retry_if_result, stop_after_delay, wait_fixed
import logging
import asyncio
from typing import Dict, Optional

from ....errors import ConfigurationError, TransientClusterError
from ..auth_config import ClusterConnectionConfig
from .helpers import (
    AGENT_DEPLOYMENT_NAME,
    CLUSTER_ROLE_BINDING_NAME,
    RUNTIME_ID_ANNOTATION,
    SERVICE_ACCOUNT_NAME,
)

logger = logging.getLogger(__name__)


def build_api_client(connection: ClusterConnectionConfig) -> client.ApiClient:
    """
    Build an ApiClient bound to one resolved configuration.

    The global kubernetes configuration is never touched, so clients for
    different clusters can live side by side.
    """
    configuration = client.Configuration()
    try:
        if connection.in_cluster:
            config.load_incluster_config(client_configuration=configuration)
        else:
            config.load_kube_config_from_dict(
                connection.kubeconfig,
                context=connection.context,
                client_configuration=configuration,
                persist_config=False
            )
    except (config.ConfigException, ValueError, OSError) as e:
        raise ConfigurationError("kubeconfig", f"Invalid kubernetes configuration was supplied: {e}") from e

    if connection.proxy_url:
        configuration.proxy = connection.proxy_url

    return client.ApiClient(configuration)


class ClusterClient:
    """
    Manages the agent objects in one cluster.

    Objects handled:
    - Namespace
    - ServiceAccount
    - ClusterRoleBinding
    - Deployment
    """

    def __init__(self, api_client: client.ApiClient):
        self.api_client = api_client
        self.core_v1 = client.CoreV1Api(api_client)
        self.apps_v1 = client.AppsV1Api(api_client)
        self.rbac_v1 = client.RbacAuthorizationV1Api(api_client)

    @classmethod
    def from_connection_config(cls, connection: ClusterConnectionConfig) -> "ClusterClient":
        return cls(build_api_client(connection))

    # =========================================================================
    # NAMESPACE MANAGEMENT
    # =========================================================================

    async def namespace_exists(self, namespace: str) -> bool:
        """
        Check if a Kubernetes namespace exists.

        Args:
            namespace: Namespace name to check

        Returns:
            True if namespace exists, False otherwise
        """
        try:
            await asyncio.to_thread(
                self.core_v1.read_namespace,
                name=namespace
            )
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise TransientClusterError(f"read namespace {namespace}", e) from e

    async def create_namespace(self, manifest: client.V1Namespace) -> bool:
        """
        Create a namespace.

        Returns:
            True if created, False if it already existed
        """
        name = manifest.metadata.name
        try:
            await asyncio.to_thread(
                self.core_v1.create_namespace,
                body=manifest
            )
            logger.info(f"[K8S] ✅ Created namespace: {name}")
            return True
        except ApiException as e:
            if e.status == 409:
                logger.debug(f"[K8S] Namespace {name} already exists")
                return False
            raise TransientClusterError(f"create namespace {name}", e) from e

    async def delete_namespace(self, namespace: str) -> None:
        """Delete a namespace immediately, waiting on dependents in the foreground."""
        try:
            await asyncio.to_thread(
                self.core_v1.delete_namespace,
                name=namespace,
                grace_period_seconds=0,
                propagation_policy="Foreground"
            )
            logger.info(f"[K8S] Deleted namespace: {namespace}")
        except ApiException as e:
            if e.status != 404:
                raise TransientClusterError(f"delete namespace {namespace}", e) from e

    async def wait_for_namespace_deleted(
        self,
        namespace: str,
        timeout: float = 300,
        poll_interval: float = 1.0
    ) -> None:
        """
        Wait until a namespace is gone.

        Raises:
            TransientClusterError: If the namespace still exists after the timeout
        """
        @retry(
            retry=retry_if_result(lambda exists: exists),
            stop=stop_after_delay(timeout),
            wait=wait_fixed(poll_interval),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
        )
        async def _poll() -> bool:
            return await self.namespace_exists(namespace)

        try:
            await _poll()
        except RetryError as e:
            raise TransientClusterError(
                f"wait for namespace {namespace} deletion",
                message=f"namespace still exists after {timeout:g}s"
            ) from e
        logger.debug(f"[K8S] Namespace {namespace} is gone")

    # =========================================================================
    # SERVICE ACCOUNT AND RBAC
    # =========================================================================

    async def create_service_account(
        self,
        manifest: client.V1ServiceAccount,
        namespace: str
    ) -> bool:
        name = manifest.metadata.name
        try:
            await asyncio.to_thread(
                self.core_v1.create_namespaced_service_account,
                namespace=namespace,
                body=manifest
            )
            logger.info(f"[K8S] ✅ Created service account: {namespace}/{name}")
            return True
        except ApiException as e:
            if e.status == 409:
                logger.debug(f"[K8S] Service account {namespace}/{name} already exists")
                return False
            raise TransientClusterError(f"create service account {namespace}/{name}", e) from e

    async def delete_service_account(self, namespace: str, name: str = SERVICE_ACCOUNT_NAME) -> None:
        try:
            await asyncio.to_thread(
                self.core_v1.delete_namespaced_service_account,
                name=name,
                namespace=namespace
            )
            logger.info(f"[K8S] Deleted service account: {namespace}/{name}")
        except ApiException as e:
            if e.status != 404:
                raise TransientClusterError(f"delete service account {namespace}/{name}", e) from e

    async def create_cluster_role_binding(self, manifest: client.V1ClusterRoleBinding) -> bool:
        name = manifest.metadata.name
        try:
            await asyncio.to_thread(
                self.rbac_v1.create_cluster_role_binding,
                body=manifest
            )
            logger.info(f"[K8S] ✅ Created cluster role binding: {name}")
            return True
        except ApiException as e:
            if e.status == 409:
                logger.debug(f"[K8S] Cluster role binding {name} already exists")
                return False
            raise TransientClusterError(f"create cluster role binding {name}", e) from e

    async def delete_cluster_role_binding(self, name: str = CLUSTER_ROLE_BINDING_NAME) -> None:
        try:
            await asyncio.to_thread(
                self.rbac_v1.delete_cluster_role_binding,
                name=name
            )
            logger.info(f"[K8S] Deleted cluster role binding: {name}")
        except ApiException as e:
            if e.status != 404:
                raise TransientClusterError(f"delete cluster role binding {name}", e) from e

    # =========================================================================
    # DEPLOYMENT LIFECYCLE
    # =========================================================================

    async def create_deployment(
        self,
        deployment: client.V1Deployment,
        namespace: str
    ) -> bool:
        """Create a Deployment, leaving an existing one untouched."""
        deployment_name = deployment.metadata.name
        try:
            await asyncio.to_thread(
                self.apps_v1.create_namespaced_deployment,
                namespace=namespace,
                body=deployment
            )
            logger.info(f"[K8S] ✅ Created deployment: {namespace}/{deployment_name}")
            return True
        except ApiException as e:
            if e.status == 409:
                logger.debug(f"[K8S] Deployment {namespace}/{deployment_name} already exists")
                return False
            raise TransientClusterError(f"create deployment {namespace}/{deployment_name}", e) from e

    async def delete_deployment(self, namespace: str, name: str = AGENT_DEPLOYMENT_NAME) -> None:
        """Delete a Deployment."""
        try:
            await asyncio.to_thread(
                self.apps_v1.delete_namespaced_deployment,
                name=name,
                namespace=namespace
            )
            logger.info(f"[K8S] Deleted deployment: {namespace}/{name}")
        except ApiException as e:
            if e.status != 404:
                raise TransientClusterError(f"delete deployment {namespace}/{name}", e) from e

    async def get_deployment_runtime_id(
        self,
        namespace: str,
        name: str = AGENT_DEPLOYMENT_NAME
    ) -> Optional[str]:
        """
        Read the runtime id annotation of the agent deployment.

        Returns:
            The annotation value ("" if the deployment exists without one),
            or None if there is no deployment
        """
        try:
            deployment = await asyncio.to_thread(
                self.apps_v1.read_namespaced_deployment,
                name=name,
                namespace=namespace
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise TransientClusterError(f"read deployment {namespace}/{name}", e) from e

        annotations = deployment.metadata.annotations or {}
        return annotations.get(RUNTIME_ID_ANNOTATION, "")


# Clients are cached per resolved configuration
_cluster_clients: Dict[str, ClusterClient] = {}


def get_cluster_client(connection: ClusterConnectionConfig) -> ClusterClient:
    """Get or create the cluster client for a resolved configuration."""
    key = connection.cache_key()
    if key not in _cluster_clients:
        logger.info(f"[K8S] Creating cluster client for {connection.server or 'in-cluster'}")
        _cluster_clients[key] = ClusterClient.from_connection_config(connection)
    return _cluster_clients[key]


def clear_cluster_clients() -> None:
    """Drop all cached cluster clients."""
    for cluster_client in _cluster_clients.values():
        cluster_client.api_client.close()
    _cluster_clients.clear()
