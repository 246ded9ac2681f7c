"""
Unit tests for the Kubernetes cluster client.

Kubernetes API classes are replaced with mocks; ApiException status codes
drive the idempotence paths.
"""

import pytest
from unittest.mock import Mock, patch

pytest.importorskip("kubernetes")

from kubernetes import client
from kubernetes.client.rest import ApiException

from runtimelink.errors import ConfigurationError, TransientClusterError
from runtimelink.models import ClusterConnection
from runtimelink.services.orchestration.auth_config import AuthConfigResolver, ClusterConnectionConfig
from runtimelink.services.orchestration.kubernetes import client as cluster_module
from runtimelink.services.orchestration.kubernetes.client import (
    ClusterClient,
    build_api_client,
    clear_cluster_clients,
    get_cluster_client,
)
from runtimelink.services.orchestration.kubernetes.helpers import (
    create_namespace_manifest,
    create_service_account_manifest,
)


@pytest.fixture
def cluster():
    """ClusterClient with mocked API groups."""
    cluster = ClusterClient(Mock())
    cluster.core_v1 = Mock()
    cluster.apps_v1 = Mock()
    cluster.rbac_v1 = Mock()
    return cluster


def deployment_with_annotations(annotations):
    return Mock(metadata=client.V1ObjectMeta(name="prodvana-agent", annotations=annotations))


@pytest.mark.unit
@pytest.mark.kubernetes
class TestIdempotence:
    """Test the not-found and already-exists paths."""

    @pytest.mark.asyncio
    async def test_create_namespace_already_exists(self, cluster):
        cluster.core_v1.create_namespace.side_effect = ApiException(status=409)

        created = await cluster.create_namespace(create_namespace_manifest("prodvana"))

        assert created is False

    @pytest.mark.asyncio
    async def test_create_namespace_passes_manifest(self, cluster):
        manifest = create_namespace_manifest("prodvana")

        assert await cluster.create_namespace(manifest) is True

        cluster.core_v1.create_namespace.assert_called_once_with(body=manifest)

    @pytest.mark.asyncio
    async def test_create_service_account_failure_is_transient(self, cluster):
        cluster.core_v1.create_namespaced_service_account.side_effect = ApiException(status=500, reason="boom")

        with pytest.raises(TransientClusterError) as exc_info:
            await cluster.create_service_account(create_service_account_manifest("prodvana"), "prodvana")

        assert exc_info.value.status == 500
        assert "prodvana/prodvana" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_deletes_tolerate_not_found(self, cluster):
        cluster.apps_v1.delete_namespaced_deployment.side_effect = ApiException(status=404)
        cluster.rbac_v1.delete_cluster_role_binding.side_effect = ApiException(status=404)
        cluster.core_v1.delete_namespaced_service_account.side_effect = ApiException(status=404)
        cluster.core_v1.delete_namespace.side_effect = ApiException(status=404)

        await cluster.delete_deployment("prodvana")
        await cluster.delete_cluster_role_binding()
        await cluster.delete_service_account("prodvana")
        await cluster.delete_namespace("prodvana")

        cluster.apps_v1.delete_namespaced_deployment.assert_called_once_with(
            name="prodvana-agent", namespace="prodvana"
        )
        cluster.rbac_v1.delete_cluster_role_binding.assert_called_once_with(name="prodvana-access")

    @pytest.mark.asyncio
    async def test_delete_failure_is_transient(self, cluster):
        cluster.apps_v1.delete_namespaced_deployment.side_effect = ApiException(status=403)

        with pytest.raises(TransientClusterError) as exc_info:
            await cluster.delete_deployment("prodvana")

        assert exc_info.value.status == 403
        assert isinstance(exc_info.value.__cause__, ApiException)

    @pytest.mark.asyncio
    async def test_delete_namespace_is_immediate_and_foreground(self, cluster):
        await cluster.delete_namespace("prodvana")

        cluster.core_v1.delete_namespace.assert_called_once_with(
            name="prodvana", grace_period_seconds=0, propagation_policy="Foreground"
        )


@pytest.mark.unit
@pytest.mark.kubernetes
class TestDeploymentRuntimeId:

    @pytest.mark.asyncio
    async def test_missing_deployment(self, cluster):
        cluster.apps_v1.read_namespaced_deployment.side_effect = ApiException(status=404)

        assert await cluster.get_deployment_runtime_id("prodvana") is None

    @pytest.mark.asyncio
    async def test_annotated_deployment(self, cluster):
        cluster.apps_v1.read_namespaced_deployment.return_value = deployment_with_annotations(
            {"prodvana.io/runtime-id": "rt-123"}
        )

        assert await cluster.get_deployment_runtime_id("prodvana") == "rt-123"

    @pytest.mark.asyncio
    async def test_unannotated_deployment(self, cluster):
        cluster.apps_v1.read_namespaced_deployment.return_value = deployment_with_annotations(None)

        assert await cluster.get_deployment_runtime_id("prodvana") == ""


@pytest.mark.unit
@pytest.mark.kubernetes
class TestNamespaceDeletionWait:

    @pytest.mark.asyncio
    async def test_waits_until_namespace_is_gone(self, cluster):
        cluster.core_v1.read_namespace.side_effect = [Mock(), Mock(), ApiException(status=404)]

        await cluster.wait_for_namespace_deleted("prodvana", timeout=5, poll_interval=0)

        assert cluster.core_v1.read_namespace.call_count == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_timeout(self, cluster):
        cluster.core_v1.read_namespace.return_value = Mock()

        with pytest.raises(TransientClusterError) as exc_info:
            await cluster.wait_for_namespace_deleted("prodvana", timeout=0, poll_interval=0)

        assert "prodvana" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_read_failure_is_not_retried(self, cluster):
        cluster.core_v1.read_namespace.side_effect = ApiException(status=500)

        with pytest.raises(TransientClusterError):
            await cluster.wait_for_namespace_deleted("prodvana", timeout=5, poll_interval=0)

        assert cluster.core_v1.read_namespace.call_count == 1


@pytest.mark.unit
@pytest.mark.kubernetes
class TestApiClientConstruction:

    def test_kubeconfig_is_applied_without_touching_global_config(self):
        resolved = AuthConfigResolver(environ={}).resolve(ClusterConnection(
            host="https://k8s.example.com", token="secret-token", proxy_url="http://proxy:3128"
        ))

        api_client = build_api_client(resolved)

        assert api_client.configuration.host == "https://k8s.example.com"
        assert "Bearer secret-token" in str(api_client.configuration.auth_settings())
        assert api_client.configuration.proxy == "http://proxy:3128"

    def test_in_cluster_failure_is_a_configuration_error(self, monkeypatch):
        monkeypatch.delenv("KUBERNETES_SERVICE_HOST", raising=False)
        monkeypatch.delenv("KUBERNETES_SERVICE_PORT", raising=False)

        with pytest.raises(ConfigurationError):
            build_api_client(ClusterConnectionConfig(in_cluster=True))

    def test_clients_are_cached_per_configuration(self):
        resolver = AuthConfigResolver(environ={})
        first = resolver.resolve(ClusterConnection(host="https://a.example.com", token="t"))
        same = resolver.resolve(ClusterConnection(host="https://a.example.com", token="t"))
        other = resolver.resolve(ClusterConnection(host="https://b.example.com", token="t"))

        clear_cluster_clients()
        with patch.object(cluster_module, "build_api_client", side_effect=lambda c: Mock()) as mock_build:
            assert get_cluster_client(first) is get_cluster_client(same)
            assert get_cluster_client(first) is not get_cluster_client(other)
        clear_cluster_clients()

        assert mock_build.call_count == 2
