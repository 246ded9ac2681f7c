"""
Control Plane API Client for runtime linking.

Thin JSON client over the fleet-management API. The control plane owns the
authoritative runtime records; this client only reads them and triggers
updates.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from ..errors import ConfigurationError, RemoteControlPlaneError, RuntimeNotFoundError
from ..models import (
    RUNTIME_TYPE_K8S,
    AgentBootstrapParams,
    ExternalAgentBootstrap,
    Label,
    LinkResult,
    RuntimeHeartbeat,
    RuntimeRecord,
)

logger = logging.getLogger(__name__)

_FRACTION_RE = re.compile(r'\.(\d+)')


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC3339 timestamp into an aware datetime (UTC if no offset)."""
    if not value:
        return None
    text = value.strip().replace("Z", "+00:00").replace("z", "+00:00")
    # fromisoformat only takes up to microseconds
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _labels_from_payload(payload: Optional[List[Dict[str, Any]]]) -> List[Label]:
    return [Label(label=item["label"], value=item.get("value", "")) for item in payload or []]


class ControlPlaneClient:
    """Client for the runtime endpoints of the control plane API."""

    def __init__(
        self,
        base_url: str,
        api_token: str,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize the control plane client.

        Args:
            base_url: API base URL, e.g. https://api.my-org.prodvana.io
            api_token: API token with permissions for the organization
            timeout: Per-request timeout in seconds
            http_client: Shared AsyncClient to send requests with (optional)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {
            "Authorization": f"Bearer {api_token}",
            "Accept": "application/json",
        }
        self._http = http_client

    async def _send(
        self,
        method: str,
        url: str,
        json: Optional[Dict] = None,
        params: Optional[Dict] = None
    ) -> httpx.Response:
        if self._http is not None:
            return await self._http.request(
                method, url, headers=self.headers, json=json, params=params, timeout=self.timeout
            )
        async with httpx.AsyncClient() as client:
            return await client.request(
                method, url, headers=self.headers, json=json, params=params, timeout=self.timeout
            )

    async def _request(
        self,
        operation: str,
        runtime: str,
        method: str,
        endpoint: str,
        json: Optional[Dict] = None,
        params: Optional[Dict] = None
    ) -> Dict[str, Any]:
        """
        Make an authenticated request to the control plane.

        Args:
            operation: Operation name used in error messages
            runtime: Runtime name (or id) the call is about
            method: HTTP method
            endpoint: API endpoint (without base URL)
            json: JSON payload
            params: URL query parameters

        Returns:
            JSON response as dictionary ({} for empty bodies)

        Raises:
            RuntimeNotFoundError: If the control plane answers 404
            RemoteControlPlaneError: On any other failure
        """
        url = f"{self.base_url}{endpoint}"
        try:
            response = await self._send(method, url, json=json, params=params)
        except httpx.HTTPError as e:
            raise RemoteControlPlaneError(operation, runtime, f"request failed: {e}") from e

        if response.status_code == 404:
            raise RuntimeNotFoundError(operation, runtime, self._error_detail(response), 404)
        if response.is_error:
            raise RemoteControlPlaneError(
                operation, runtime, self._error_detail(response), response.status_code
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise RemoteControlPlaneError(operation, runtime, f"invalid JSON response: {e}") from e

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("message"):
            return f"{response.status_code} - {body['message']}"
        return f"{response.status_code} - {response.text}"

    # =========================================================================
    # RUNTIME OPERATIONS
    # =========================================================================

    async def _link(self, name: str, agent_env: Optional[Dict[str, str]]) -> Dict[str, Any]:
        k8s_auth: Dict[str, Any] = {"agent_externally_managed": True}
        if agent_env is not None:
            k8s_auth["agent_env"] = agent_env
        body = {
            "name": name,
            "type": RUNTIME_TYPE_K8S,
            "source": "IAC",
            "auth": {"k8s": k8s_auth},
        }
        return await self._request("link runtime", name, "POST", "/v1/runtimes/link", json=body)

    async def link_runtime(self, name: str, agent_env: Optional[Dict[str, str]] = None) -> LinkResult:
        """
        Register or update a Kubernetes runtime. Idempotent by name.

        Args:
            name: Runtime name
            agent_env: Agent environment overrides, None if not declared

        Returns:
            LinkResult with the runtime id and agent bootstrap parameters
        """
        data = await self._link(name, agent_env)
        return LinkResult(
            runtime_id=data["runtime_id"],
            bootstrap=AgentBootstrapParams(
                image=data.get("k8s_agent_image", ""),
                args=list(data.get("k8s_agent_args") or []),
                env=dict(data.get("k8s_agent_env") or {}),
            ),
        )

    async def link_external_runtime(self, name: str) -> ExternalAgentBootstrap:
        """Link a runtime whose agent is deployed by the user."""
        data = await self._link(name, None)
        return ExternalAgentBootstrap(
            runtime_id=data["runtime_id"],
            agent_api_token=data.get("k8s_agent_api_token", ""),
            agent_url=data.get("k8s_agent_url", ""),
            agent_image=data.get("k8s_agent_image", ""),
            agent_args=list(data.get("k8s_agent_args") or []),
        )

    async def get_runtime(self, name: str, include_auth: bool = False) -> RuntimeRecord:
        """Read the current runtime record."""
        data = await self._request(
            "get runtime", name, "GET", f"/v1/runtimes/{name}",
            params={"include_auth": str(include_auth).lower()}
        )
        runtime = data.get("runtime") or {}
        config = runtime.get("config") or {}
        return RuntimeRecord(
            id=runtime.get("id", ""),
            name=runtime.get("name", name),
            type=runtime.get("type", ""),
            labels=_labels_from_payload(config.get("labels")),
            config=config,
        )

    async def configure_runtime_labels(self, name: str, labels: List[Label]) -> None:
        """
        Replace the label set of a runtime.

        The rest of the runtime config is read back and written unchanged.
        """
        record = await self.get_runtime(name)
        config = dict(record.config)
        config["labels"] = [label.model_dump() for label in labels]
        await self._request(
            "configure runtime", name, "PUT", f"/v1/runtimes/{name}/config",
            json={"config": config}
        )
        logger.debug(f"[LINK] Configured {len(labels)} labels on runtime {name}")

    async def get_runtime_status(self, runtime_id: str, runtime_name: Optional[str] = None) -> RuntimeHeartbeat:
        """Read the last heartbeat reported by the runtime's agent."""
        data = await self._request(
            "get runtime status", runtime_name or runtime_id, "GET",
            f"/v1/runtimes/id/{runtime_id}/status"
        )
        try:
            heartbeat = parse_timestamp(data.get("last_heartbeat_timestamp"))
        except ValueError as e:
            raise RemoteControlPlaneError(
                "get runtime status", runtime_name or runtime_id, f"invalid heartbeat timestamp: {e}"
            ) from e
        return RuntimeHeartbeat(runtime_id=runtime_id, last_heartbeat=heartbeat)

    async def remove_runtime(self, name: str) -> None:
        """Unregister a runtime."""
        await self._request("remove runtime", name, "DELETE", f"/v1/runtimes/{name}")
        logger.info(f"[LINK] Removed runtime {name} from control plane")


# Global instance - lazily initialized
_control_plane_instance: Optional[ControlPlaneClient] = None


def get_control_plane_client() -> ControlPlaneClient:
    """Get or create the global control plane client."""
    global _control_plane_instance
    if _control_plane_instance is None:
        from ..config import get_settings

        settings = get_settings()
        if not settings.pvn_org_slug and not settings.pvn_api_url:
            raise ConfigurationError(
                "org_slug", "missing control plane organization, set the PVN_ORG_SLUG environment variable"
            )
        if not settings.pvn_api_token:
            raise ConfigurationError(
                "api_token", "missing control plane API token, set the PVN_API_TOKEN environment variable"
            )
        logger.debug("[LINK] Creating control plane client")
        _control_plane_instance = ControlPlaneClient(
            base_url=settings.control_plane_url,
            api_token=settings.pvn_api_token,
            timeout=settings.control_plane_timeout_seconds,
        )
    return _control_plane_instance
