"""
Cluster Access Configuration Resolver

Turns the connection fields of a runtime declaration into one fully
materialized cluster access configuration. The sources, highest precedence
first:

1. Fields set explicitly on the declaration
2. KUBE_* environment variables
3. Kubeconfig file(s): a single path is used directly, several paths form a
   precedence chain where earlier files win on conflicting entries
4. Context/cluster/user selection inside those files

Each override is independent: an absent value falls through to the next
source, it never means "set to empty". Resolution either fully succeeds or
raises a ConfigurationError before any cluster call is made.
"""

import base64
import hashlib
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlparse

import yaml

from ...errors import ConfigurationError
from ...models import ClusterConnection

logger = logging.getLogger(__name__)

RESOLVED_NAME = "runtimelink"

# Kubeconfig keys that hold file paths, resolved relative to the file they came from
_CLUSTER_FILE_KEYS = ("certificate-authority",)
_USER_FILE_KEYS = ("client-certificate", "client-key", "tokenFile")

_REDACTED_KEYS = {"token", "password", "client-key-data", "client-key"}


def _parse_bool(value: str) -> bool:
    return value in ("true", "1", "on")


def _split_paths(value: str) -> List[str]:
    return [p for p in value.split(os.pathsep) if p]


@dataclass(frozen=True)
class ConnectionField:
    """A connection override and the environment variable backing it."""
    name: str
    env: str
    parse: Callable[[str], Any] = str


CONNECTION_FIELDS: Tuple[ConnectionField, ...] = (
    ConnectionField("host", "KUBE_HOST"),
    ConnectionField("username", "KUBE_USER"),
    ConnectionField("password", "KUBE_PASSWORD"),
    ConnectionField("insecure", "KUBE_INSECURE", _parse_bool),
    ConnectionField("tls_server_name", "KUBE_TLS_SERVER_NAME"),
    ConnectionField("client_certificate", "KUBE_CLIENT_CERT_DATA"),
    ConnectionField("client_key", "KUBE_CLIENT_KEY_DATA"),
    ConnectionField("cluster_ca_certificate", "KUBE_CLUSTER_CA_CERT_DATA"),
    ConnectionField("config_paths", "KUBE_CONFIG_PATHS", _split_paths),
    ConnectionField("config_path", "KUBE_CONFIG_PATH"),
    ConnectionField("config_context", "KUBE_CTX"),
    ConnectionField("config_context_auth_info", "KUBE_CTX_AUTH_INFO"),
    ConnectionField("config_context_cluster", "KUBE_CTX_CLUSTER"),
    ConnectionField("token", "KUBE_TOKEN"),
    ConnectionField("proxy_url", "KUBE_PROXY_URL"),
)

_FIELDS_BY_NAME = {f.name: f for f in CONNECTION_FIELDS}

# Within one source a single path beats a path list
_PATH_FIELDS = ("config_path", "config_paths")

# A source maps a connection field to its value, or None when it has none
ValueSource = Callable[[ConnectionField], Optional[Any]]


def explicit_source(connection: ClusterConnection) -> ValueSource:
    """Values set directly on the declaration."""
    return lambda f: getattr(connection, f.name)


def environment_source(environ: Mapping[str, str]) -> ValueSource:
    """Values from KUBE_* environment variables. Empty variables count as unset."""
    def source(f: ConnectionField) -> Optional[Any]:
        value = environ.get(f.env, "")
        return f.parse(value) if value != "" else None
    return source


def first_present(f: ConnectionField, sources: Sequence[ValueSource]) -> Optional[Any]:
    """Return the value of the first source that has one."""
    for source in sources:
        value = source(f)
        if value is not None:
            return value
    return None


def merge_sources(sources: Sequence[ValueSource]) -> Dict[str, Any]:
    """Layer the sources over every connection field, first non-absent value wins."""
    return {f.name: first_present(f, sources) for f in CONNECTION_FIELDS}


def default_server_url(host: str, default_tls: bool) -> str:
    """
    Normalize a host into a complete server URL.

    A bare host or host:port gets https:// when TLS material is configured and
    http:// otherwise. Paths are not allowed.
    """
    parsed = urlparse(host)
    if not parsed.scheme or not parsed.netloc:
        scheme = "https" if default_tls else "http"
        parsed = urlparse(f"{scheme}://{host}")
    if not parsed.netloc or not parsed.hostname:
        raise ValueError(f"host must be a URL or a host:port pair: {host!r}")
    if parsed.path not in ("", "/"):
        raise ValueError(f"host must be a URL or a host:port pair: {host!r}")
    try:
        parsed.port
    except ValueError as e:
        raise ValueError(f"invalid port in host {host!r}") from e
    return f"{parsed.scheme}://{parsed.netloc}"


def _b64(pem: str) -> str:
    return base64.b64encode(pem.encode("utf-8")).decode("ascii")


@dataclass(frozen=True)
class ClusterConnectionConfig:
    """
    Fully resolved cluster access configuration.

    Either a single-context kubeconfig document, or the in-cluster service
    account when no connection source was given at all.
    """
    kubeconfig: Optional[Dict[str, Any]] = None
    context: Optional[str] = None
    proxy_url: Optional[str] = None
    in_cluster: bool = False
    sources: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def server(self) -> Optional[str]:
        if not self.kubeconfig:
            return None
        return self.kubeconfig["clusters"][0]["cluster"].get("server")

    def cache_key(self) -> str:
        """Stable key identifying this configuration, used for client caching."""
        payload = json.dumps(
            {
                "kubeconfig": self.kubeconfig,
                "context": self.context,
                "proxy_url": self.proxy_url,
                "in_cluster": self.in_cluster,
            },
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def describe(self) -> Dict[str, Any]:
        """Redacted view for logging."""
        if self.in_cluster:
            return {"in_cluster": True}
        cluster = dict(self.kubeconfig["clusters"][0]["cluster"])
        user = {
            k: ("<redacted>" if k in _REDACTED_KEYS else v)
            for k, v in self.kubeconfig["users"][0]["user"].items()
        }
        for key in ("certificate-authority-data",):
            if key in cluster:
                cluster[key] = "<data>"
        if "client-certificate-data" in user:
            user["client-certificate-data"] = "<data>"
        if "exec" in user:
            exec_cfg = dict(user["exec"])
            exec_cfg["env"] = [e["name"] for e in exec_cfg.get("env") or []]
            user["exec"] = exec_cfg
        return {"cluster": cluster, "user": user, "proxy_url": self.proxy_url, "sources": list(self.sources)}


@dataclass
class _MergedKubeconfig:
    clusters: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    contexts: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    users: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    current_context: Optional[str] = None


class AuthConfigResolver:
    """Resolves layered connection settings into a ClusterConnectionConfig."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        """
        Args:
            environ: Environment to read KUBE_* variables from (default: os.environ)
        """
        self.environ = os.environ if environ is None else environ

    def resolve(self, connection: ClusterConnection) -> ClusterConnectionConfig:
        """
        Resolve the declared connection into a cluster access configuration.

        Raises:
            ConfigurationError: Naming the offending field
        """
        layers = [explicit_source(connection), environment_source(self.environ)]
        values = merge_sources(layers)

        paths, path_field = self._config_paths(layers)
        cluster: Dict[str, Any] = {}
        user: Dict[str, Any] = {}
        sources: List[str] = []

        if paths:
            merged = self._load_kubeconfigs(paths, path_field)
            cluster, user = self._select_context(merged, values)
            sources.extend(paths)

        self._apply_overrides(cluster, user, values, connection)

        if not cluster.get("server"):
            if not paths and self._nothing_configured(values, connection):
                if self.environ.get("KUBERNETES_SERVICE_HOST"):
                    logger.info("[AUTH] No cluster connection configured, using in-cluster service account")
                    return ClusterConnectionConfig(in_cluster=True, sources=("in-cluster",))
                raise ConfigurationError(
                    "host",
                    "no cluster configuration was provided: set host, config_path/config_paths, "
                    "or the matching KUBE_* environment variables"
                )
            raise ConfigurationError("host", "cluster has no server defined")

        kubeconfig = {
            "apiVersion": "v1",
            "kind": "Config",
            "clusters": [{"name": RESOLVED_NAME, "cluster": cluster}],
            "users": [{"name": RESOLVED_NAME, "user": user}],
            "contexts": [{"name": RESOLVED_NAME, "context": {"cluster": RESOLVED_NAME, "user": RESOLVED_NAME}}],
            "current-context": RESOLVED_NAME,
        }
        resolved = ClusterConnectionConfig(
            kubeconfig=kubeconfig,
            context=RESOLVED_NAME,
            proxy_url=cluster.get("proxy-url"),
            sources=tuple(sources),
        )
        logger.debug(f"[AUTH] Resolved cluster configuration: {resolved.describe()}")
        return resolved

    # =========================================================================
    # KUBECONFIG FILES
    # =========================================================================

    def _config_paths(self, layers: Sequence[ValueSource]) -> Tuple[List[str], str]:
        """Pick the kubeconfig path(s) from the first source that sets either path field."""
        raw, path_field = None, "config_paths"
        for source in layers:
            for name in _PATH_FIELDS:
                value = source(_FIELDS_BY_NAME[name])
                if value is not None:
                    raw = [value] if name == "config_path" else value
                    path_field = name
                    break
            if raw is not None:
                break
        if raw is None:
            return [], path_field

        if isinstance(raw, str) or not isinstance(raw, (list, tuple)):
            raise ConfigurationError(path_field, "must be a list of paths")

        expanded = []
        for p in raw:
            path = self._expand_path(p, path_field)
            logger.debug(f"[AUTH] Using kubeconfig: {path}")
            expanded.append(path)
        return expanded, path_field

    @staticmethod
    def _expand_path(path: Any, path_field: str) -> str:
        if not isinstance(path, str) or not path.strip():
            raise ConfigurationError(path_field, f"invalid kubeconfig path {path!r}")
        expanded = os.path.expanduser(path)
        if expanded.startswith("~"):
            raise ConfigurationError(path_field, f"cannot expand user-specific home dir in {path!r}")
        return expanded

    def _load_kubeconfigs(self, paths: List[str], path_field: str) -> _MergedKubeconfig:
        # Merged by hand rather than with KubeConfigMerger so per-field overrides
        # can be applied to the selected cluster and user before loading
        merged = _MergedKubeconfig()
        explicit = len(paths) == 1

        for path in paths:
            try:
                with open(path, encoding="utf-8") as f:
                    document = yaml.safe_load(f)
            except FileNotFoundError as e:
                if explicit:
                    raise ConfigurationError(path_field, f"unable to read kubeconfig {path}: {e}") from e
                # Missing files in a precedence chain are skipped
                logger.debug(f"[AUTH] Kubeconfig {path} does not exist, skipping")
                continue
            except OSError as e:
                raise ConfigurationError(path_field, f"unable to read kubeconfig {path}: {e}") from e
            except yaml.YAMLError as e:
                raise ConfigurationError(path_field, f"unable to parse kubeconfig {path}: {e}") from e

            if document is None:
                continue
            if not isinstance(document, dict):
                raise ConfigurationError(path_field, f"unable to parse kubeconfig {path}: not a mapping")

            self._merge_document(merged, document, os.path.dirname(os.path.abspath(path)), path, path_field)

        return merged

    @staticmethod
    def _merge_document(
        merged: _MergedKubeconfig,
        document: Dict[str, Any],
        base_dir: str,
        path: str,
        path_field: str
    ) -> None:
        """Merge one kubeconfig into the chain. Entries already present win."""
        sections = (
            ("clusters", "cluster", merged.clusters, _CLUSTER_FILE_KEYS),
            ("contexts", "context", merged.contexts, ()),
            ("users", "user", merged.users, _USER_FILE_KEYS),
        )
        for section, item_key, target, file_keys in sections:
            entries = document.get(section) or []
            if not isinstance(entries, list):
                raise ConfigurationError(path_field, f"unable to parse kubeconfig {path}: '{section}' must be a list")
            for entry in entries:
                if not isinstance(entry, dict) or not entry.get("name"):
                    continue
                name = entry["name"]
                if name in target:
                    continue
                item = dict(entry.get(item_key) or {})
                for key in file_keys:
                    if item.get(key) and not os.path.isabs(item[key]):
                        item[key] = os.path.join(base_dir, item[key])
                target[name] = item

        if not merged.current_context and document.get("current-context"):
            merged.current_context = document["current-context"]

    @staticmethod
    def _select_context(
        merged: _MergedKubeconfig,
        values: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        context_name = values["config_context"] or merged.current_context
        context: Dict[str, Any] = {}
        if context_name:
            if context_name not in merged.contexts:
                field_name = "config_context" if values["config_context"] else "config_path"
                raise ConfigurationError(field_name, f"context {context_name!r} not found in kubeconfig")
            context = merged.contexts[context_name]
            logger.debug(f"[AUTH] Using kubeconfig context: {context_name!r}")

        cluster_name = values["config_context_cluster"] or context.get("cluster")
        user_name = values["config_context_auth_info"] or context.get("user")

        if values["config_context_cluster"] and cluster_name not in merged.clusters:
            raise ConfigurationError("config_context_cluster", f"cluster {cluster_name!r} not found in kubeconfig")
        if values["config_context_auth_info"] and user_name not in merged.users:
            raise ConfigurationError("config_context_auth_info", f"user {user_name!r} not found in kubeconfig")

        cluster = dict(merged.clusters.get(cluster_name) or {})
        user = dict(merged.users.get(user_name) or {})
        return cluster, user

    # =========================================================================
    # OVERRIDES
    # =========================================================================

    def _apply_overrides(
        self,
        cluster: Dict[str, Any],
        user: Dict[str, Any],
        values: Dict[str, Any],
        connection: ClusterConnection
    ) -> None:
        if values["insecure"] is not None:
            cluster["insecure-skip-tls-verify"] = bool(values["insecure"])
        if values["tls_server_name"] is not None:
            cluster["tls-server-name"] = values["tls_server_name"]
        if values["cluster_ca_certificate"] is not None:
            cluster.pop("certificate-authority", None)
            cluster["certificate-authority-data"] = _b64(values["cluster_ca_certificate"])
        if values["client_certificate"] is not None:
            user.pop("client-certificate", None)
            user["client-certificate-data"] = _b64(values["client_certificate"])

        if values["host"] is not None:
            # Scheme defaults to https only when TLS material was given as an override
            default_tls = (
                values["cluster_ca_certificate"] is not None
                or values["client_certificate"] is not None
                or bool(values["insecure"])
            )
            try:
                cluster["server"] = default_server_url(values["host"], default_tls)
            except ValueError as e:
                raise ConfigurationError("host", f"failed to parse host: {e}") from e

        if values["username"] is not None:
            user["username"] = values["username"]
        if values["password"] is not None:
            user["password"] = values["password"]
        if values["client_key"] is not None:
            user.pop("client-key", None)
            user["client-key-data"] = _b64(values["client_key"])
        if values["token"] is not None:
            user.pop("tokenFile", None)
            user["token"] = values["token"]

        if connection.exec is not None:
            user.pop("auth-provider", None)
            user["exec"] = self._exec_config(connection)
            logger.debug(f"[AUTH] Using exec credential plugin: {connection.exec.command}")

        if values["proxy_url"] is not None:
            cluster["proxy-url"] = values["proxy_url"]

    @staticmethod
    def _exec_config(connection: ClusterConnection) -> Dict[str, Any]:
        spec = connection.exec
        exec_cfg: Dict[str, Any] = {
            "apiVersion": spec.api_version,
            "command": spec.command,
            "interactiveMode": "IfAvailable",
        }

        if spec.args is not None:
            if isinstance(spec.args, (str, bytes)) or not isinstance(spec.args, (list, tuple)):
                raise ConfigurationError("exec.args", "Failed to parse exec args: expected a list of strings")
            for idx, arg in enumerate(spec.args):
                if not isinstance(arg, str):
                    raise ConfigurationError(
                        "exec.args", f"Failed to parse exec args: element {idx} is {type(arg).__name__}, not a string"
                    )
            exec_cfg["args"] = list(spec.args)

        if spec.env is not None:
            if not isinstance(spec.env, Mapping):
                raise ConfigurationError("exec.env", "Failed to parse exec env: expected a map of strings")
            env = []
            for name in sorted(spec.env, key=str):
                value = spec.env[name]
                if not isinstance(name, str) or not isinstance(value, str):
                    raise ConfigurationError(
                        "exec.env", f"Failed to parse exec env: entry {name!r} must map a string to a string"
                    )
                env.append({"name": name, "value": value})
            exec_cfg["env"] = env

        return exec_cfg

    @staticmethod
    def _nothing_configured(values: Dict[str, Any], connection: ClusterConnection) -> bool:
        return connection.exec is None and all(v is None for v in values.values())
