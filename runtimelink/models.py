"""
Data models for managed Kubernetes runtimes.

RuntimeDeclaration is the user-declared intent handed to the engine by the
configuration layer. The remaining models describe what comes back from the
control plane and what the engine reports upward.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


RUNTIME_TYPE_K8S = "K8S"


class Label(BaseModel):
    """A single runtime label."""
    label: str = Field(..., description="Label name")
    value: str = Field(..., description="Label value")

    class Config:
        frozen = True


class ExecConfig(BaseModel):
    """Exec credential plugin used to authenticate to the cluster."""
    api_version: str = Field(..., description="API version of the exec credential plugin")
    command: str = Field(..., description="Command to execute")
    # Decoded by the auth resolver, which reports bad shapes as exec.args / exec.env
    args: Optional[Any] = Field(None, description="Arguments to pass when executing the command")
    env: Optional[Any] = Field(None, description="Environment variables to set when executing the command")


class ClusterConnection(BaseModel):
    """
    Cluster access fields as declared by the user.

    Every field is optional. An unset field falls through to the matching
    KUBE_* environment variable and then to the kubeconfig file(s).
    """
    host: Optional[str] = Field(None, description="Address of the Kubernetes cluster (scheme://hostname:port)")
    username: Optional[str] = None
    password: Optional[str] = None
    insecure: Optional[bool] = Field(None, description="Skip TLS certificate verification")
    tls_server_name: Optional[str] = None
    client_certificate: Optional[str] = Field(None, description="PEM-encoded client certificate")
    client_key: Optional[str] = Field(None, description="PEM-encoded client certificate key")
    cluster_ca_certificate: Optional[str] = Field(None, description="PEM-encoded root certificates bundle")
    config_paths: Optional[List[str]] = Field(None, description="Kubeconfig paths, earlier paths win")
    config_path: Optional[str] = None
    config_context: Optional[str] = None
    config_context_auth_info: Optional[str] = None
    config_context_cluster: Optional[str] = None
    token: Optional[str] = None
    proxy_url: Optional[str] = None
    exec: Optional[ExecConfig] = None


class RuntimeDeclaration(BaseModel):
    """
    Declared intent for a managed Kubernetes runtime.

    ``name`` is the immutable identity. ``agent_env`` and ``labels`` keep the
    difference between ``None`` (not declared) and empty, since drift
    detection compares them structurally.
    """
    name: str = Field(..., description="Runtime name")
    connection: ClusterConnection = Field(default_factory=ClusterConnection)
    agent_env: Optional[Dict[str, str]] = Field(None, description="Environment overrides for the agent")
    labels: Optional[List[Label]] = Field(None, description="Ordered labels to apply to the runtime")
    timeout: Optional[str] = Field(None, description="How long to wait for linking, e.g. 10m or 1h")


class RuntimeStatus(BaseModel):
    """What the engine reports back after converge or refresh."""
    runtime_id: str
    name: str
    agent_namespace: str
    labels: List[Label] = Field(default_factory=list)
    # Runtime id recorded on the live agent deployment, None when absent
    agent_runtime_id: Optional[str] = None


class BootstrapAction(str, Enum):
    """
    Outcome of comparing the previous and current declaration.

    Attributes:
        NOOP: Nothing the agent depends on changed, leave the cluster alone
        CREATE: First converge, create the bootstrap objects
        REPLACE: Agent-affecting drift, tear down and recreate
    """

    NOOP = "noop"
    CREATE = "create"
    REPLACE = "replace"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class AgentBootstrapParams:
    """Agent parameters handed out by the control plane on link."""
    image: str
    args: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class LinkResult:
    """Result of linking a runtime with the control plane."""
    runtime_id: str
    bootstrap: AgentBootstrapParams


@dataclass(frozen=True)
class ExternalAgentBootstrap:
    """Bootstrap material for an agent the user deploys themselves."""
    runtime_id: str
    agent_api_token: str
    agent_url: str
    agent_image: str
    agent_args: List[str] = field(default_factory=list)


@dataclass
class RuntimeRecord:
    """Authoritative runtime record held by the control plane."""
    id: str
    name: str
    type: str
    labels: List[Label] = field(default_factory=list)
    config: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_kubernetes(self) -> bool:
        return self.type == RUNTIME_TYPE_K8S


@dataclass(frozen=True)
class RuntimeHeartbeat:
    """Status of a runtime as reported by its agent."""
    runtime_id: str
    last_heartbeat: Optional[datetime] = None
