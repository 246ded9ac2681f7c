"""
Unit tests for the control plane API client.

Requests are served by httpx.MockTransport handlers.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from runtimelink.errors import RemoteControlPlaneError, RuntimeNotFoundError
from runtimelink.models import Label
from runtimelink.services.control_plane import ControlPlaneClient, parse_timestamp

BASE_URL = "https://api.test-org.prodvana.io"


def make_client(handler):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ControlPlaneClient(BASE_URL, "test-token", http_client=http_client)


@pytest.mark.unit
class TestParseTimestamp:

    def test_utc_suffix(self):
        assert parse_timestamp("2024-01-01T12:00:00Z") == datetime(2024, 1, 1, 12, tzinfo=timezone.utc)

    def test_nanosecond_fraction_is_truncated(self):
        parsed = parse_timestamp("2024-01-01T12:00:00.123456789Z")
        assert parsed.microsecond == 123456

    def test_missing_timestamp(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None


@pytest.mark.unit
class TestControlPlaneClient:
    """Test request shapes and error mapping."""

    @pytest.mark.asyncio
    async def test_link_runtime_sends_managed_k8s_body(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "runtime_id": "rt-123",
                "k8s_agent_image": "prodvana/agent:1",
                "k8s_agent_args": ["--flag"],
                "k8s_agent_env": {"A": "1"},
            })

        result = await make_client(handler).link_runtime("my-cluster", {"LOG_LEVEL": "debug"})

        assert seen["method"] == "POST"
        assert seen["path"] == "/v1/runtimes/link"
        assert seen["auth"] == "Bearer test-token"
        assert seen["body"] == {
            "name": "my-cluster",
            "type": "K8S",
            "source": "IAC",
            "auth": {"k8s": {"agent_externally_managed": True, "agent_env": {"LOG_LEVEL": "debug"}}},
        }
        assert result.runtime_id == "rt-123"
        assert result.bootstrap.image == "prodvana/agent:1"
        assert result.bootstrap.args == ["--flag"]
        assert result.bootstrap.env == {"A": "1"}

    @pytest.mark.asyncio
    async def test_link_without_agent_env_omits_the_key(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"runtime_id": "rt-1"})

        await make_client(handler).link_runtime("my-cluster")

        assert "agent_env" not in bodies[0]["auth"]["k8s"]

    @pytest.mark.asyncio
    async def test_link_external_runtime(self):
        def handler(request):
            return httpx.Response(200, json={
                "runtime_id": "rt-9",
                "k8s_agent_api_token": "agent-token",
                "k8s_agent_url": "https://agent.example.com",
                "k8s_agent_image": "prodvana/agent:1",
                "k8s_agent_args": ["--a"],
            })

        bootstrap = await make_client(handler).link_external_runtime("ext")

        assert bootstrap.runtime_id == "rt-9"
        assert bootstrap.agent_api_token == "agent-token"
        assert bootstrap.agent_url == "https://agent.example.com"
        assert bootstrap.agent_args == ["--a"]

    @pytest.mark.asyncio
    async def test_get_runtime_parses_labels(self):
        def handler(request):
            assert request.url.params["include_auth"] == "true"
            return httpx.Response(200, json={"runtime": {
                "id": "rt-123",
                "name": "my-cluster",
                "type": "K8S",
                "config": {"labels": [{"label": "env", "value": "prod"}]},
            }})

        record = await make_client(handler).get_runtime("my-cluster", include_auth=True)

        assert record.id == "rt-123"
        assert record.is_kubernetes
        assert record.labels == [Label(label="env", value="prod")]

    @pytest.mark.asyncio
    async def test_configure_labels_preserves_other_config(self):
        puts = []

        def handler(request):
            if request.method == "GET":
                return httpx.Response(200, json={"runtime": {
                    "id": "rt-123", "name": "my-cluster", "type": "K8S",
                    "config": {"labels": [{"label": "old", "value": "x"}], "k8s": {"keep": True}},
                }})
            puts.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={})

        await make_client(handler).configure_runtime_labels("my-cluster", [Label(label="env", value="prod")])

        path, body = puts[0]
        assert path == "/v1/runtimes/my-cluster/config"
        assert body == {"config": {"labels": [{"label": "env", "value": "prod"}], "k8s": {"keep": True}}}

    @pytest.mark.asyncio
    async def test_get_runtime_status(self):
        def handler(request):
            assert request.url.path == "/v1/runtimes/id/rt-123/status"
            return httpx.Response(200, json={"last_heartbeat_timestamp": "2024-01-01T12:00:00Z"})

        status = await make_client(handler).get_runtime_status("rt-123")

        assert status.last_heartbeat == datetime(2024, 1, 1, 12, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_status_without_heartbeat(self):
        status = await make_client(lambda r: httpx.Response(200, json={})).get_runtime_status("rt-123")

        assert status.last_heartbeat is None

    @pytest.mark.asyncio
    async def test_remove_runtime_accepts_empty_body(self):
        def handler(request):
            assert request.method == "DELETE"
            return httpx.Response(204)

        await make_client(handler).remove_runtime("my-cluster")

    @pytest.mark.asyncio
    async def test_404_raises_not_found(self):
        client = make_client(lambda r: httpx.Response(404, json={"message": "no such runtime"}))

        with pytest.raises(RuntimeNotFoundError) as exc_info:
            await client.get_runtime("missing")

        assert exc_info.value.status_code == 404
        assert "no such runtime" in str(exc_info.value)
        assert "missing" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_server_error_names_operation_and_runtime(self):
        client = make_client(lambda r: httpx.Response(500, text="boom"))

        with pytest.raises(RemoteControlPlaneError) as exc_info:
            await client.remove_runtime("my-cluster")

        assert not isinstance(exc_info.value, RuntimeNotFoundError)
        assert exc_info.value.status_code == 500
        assert str(exc_info.value).startswith("remove runtime failed for runtime my-cluster")

    @pytest.mark.asyncio
    async def test_transport_error_is_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RemoteControlPlaneError) as exc_info:
            await make_client(handler).link_runtime("my-cluster")

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
