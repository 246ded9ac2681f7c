"""
Runtime Engine

Entry point for the configuration layer. Ties together cluster access
resolution, control plane linking, agent object reconciliation and the
readiness wait for managed Kubernetes runtimes.

Converge flow:
1. Validate the declaration and resolve the linking timeout
2. Resolve cluster access and get a (cached) cluster client
3. Link the runtime with the control plane
4. Plan the bootstrap action (create / noop / replace) and apply it
5. Push the declared labels and report the refreshed status
"""

import asyncio
import logging
import weakref
from datetime import timedelta
from typing import Callable, Optional

from ..config import Settings, get_settings
from ..errors import ConfigurationError, RuntimeNotFoundError, UnexpectedRuntimeTypeError
from ..models import BootstrapAction, ExternalAgentBootstrap, RuntimeDeclaration, RuntimeStatus
from ..utils import parse_duration, resolve_timeout, validate_declaration, validate_runtime_name
from .control_plane import ControlPlaneClient, get_control_plane_client
from .label_reconciler import reconcile_labels
from .orchestration import AuthConfigResolver, ClusterConnectionConfig, plan_bootstrap
from .orchestration.kubernetes import ClusterClient, ObjectReconciler, get_cluster_client
from .readiness import ReadinessWaiter
from .runtime_linker import RuntimeLinker

logger = logging.getLogger(__name__)


class RuntimeEngine:
    """
    Converges, refreshes and removes managed Kubernetes runtimes.

    Calls for the same runtime name are serialized within this process.
    Serializing across processes is up to the caller.
    """

    def __init__(
        self,
        control_plane: Optional[ControlPlaneClient] = None,
        settings: Optional[Settings] = None,
        resolver: Optional[AuthConfigResolver] = None,
        cluster_client_factory: Callable[[ClusterConnectionConfig], ClusterClient] = get_cluster_client,
        waiter: Optional[ReadinessWaiter] = None
    ):
        self.settings = settings or get_settings()
        self.control_plane = control_plane or get_control_plane_client()
        self.linker = RuntimeLinker(self.control_plane)
        self.resolver = resolver or AuthConfigResolver()
        self.cluster_client_factory = cluster_client_factory
        self.waiter = waiter or ReadinessWaiter(
            self.control_plane,
            poll_interval=self.settings.readiness_poll_interval_seconds,
            freshness_window=timedelta(minutes=self.settings.readiness_freshness_minutes),
        )
        # Entries live only while some call holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @property
    def namespace(self) -> str:
        return self.settings.agent_namespace

    def _lock_for(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[name] = lock
        return lock

    def _reconciler_for(self, declaration: RuntimeDeclaration) -> ObjectReconciler:
        connection = self.resolver.resolve(declaration.connection)
        cluster = self.cluster_client_factory(connection)
        return ObjectReconciler(
            cluster,
            self.waiter,
            namespace=self.namespace,
            namespace_delete_timeout=self.settings.namespace_delete_timeout_seconds,
            namespace_delete_poll_interval=self.settings.namespace_delete_poll_interval_seconds,
        )

    # =========================================================================
    # MANAGED RUNTIMES
    # =========================================================================

    async def converge(
        self,
        declaration: RuntimeDeclaration,
        previous: Optional[RuntimeDeclaration] = None
    ) -> RuntimeStatus:
        """
        Bring a runtime in line with its declaration.

        Args:
            declaration: Declared intent
            previous: Declaration applied last time, None on first converge

        Returns:
            RuntimeStatus after convergence

        Raises:
            ConfigurationError: Invalid declaration or cluster access configuration
            ConflictError: Another runtime's agent occupies the namespace
            TransientClusterError: Cluster API failure
            ReadinessTimeoutError: The agent did not link within the timeout
            RemoteControlPlaneError: Control plane failure
        """
        validate_declaration(declaration, self.settings.default_link_timeout)
        timeout_label, timeout = resolve_timeout(declaration, self.settings.default_link_timeout)
        if previous is not None and previous.name != declaration.name:
            raise ConfigurationError(
                "name",
                f"cannot rename runtime {previous.name!r} to {declaration.name!r}, "
                "the name is immutable and requires a replacement"
            )

        async with self._lock_for(declaration.name):
            reconciler = self._reconciler_for(declaration)

            link = await self.linker.link(declaration)
            action = plan_bootstrap(previous, declaration)
            logger.info(f"[ENGINE] Converging runtime {declaration.name}: {action}")

            await reconciler.reconcile(
                action,
                link,
                declaration.name,
                declaration.agent_env,
                timeout,
                timeout_label=timeout_label,
            )

            if action is BootstrapAction.NOOP:
                return RuntimeStatus(
                    runtime_id=link.runtime_id,
                    name=declaration.name,
                    agent_namespace=self.namespace,
                    labels=list(declaration.labels or []),
                )

            await self.linker.finalize(declaration.name, declaration.labels)
            status = await self._refresh(declaration, reconciler)
            logger.info(f"[ENGINE] ✅ Runtime {declaration.name} converged ({status.runtime_id})")
            return status

    async def refresh(self, declaration: RuntimeDeclaration) -> RuntimeStatus:
        """
        Read the current state of a runtime.

        Raises:
            RuntimeNotFoundError: The control plane has no such runtime
            UnexpectedRuntimeTypeError: The runtime is no longer a Kubernetes runtime
        """
        validate_runtime_name(declaration.name)
        reconciler = self._reconciler_for(declaration)
        return await self._refresh(declaration, reconciler)

    async def _refresh(self, declaration: RuntimeDeclaration, reconciler: ObjectReconciler) -> RuntimeStatus:
        record = await self.linker.read(declaration.name)
        if not record.is_kubernetes:
            raise UnexpectedRuntimeTypeError(
                "refresh runtime",
                declaration.name,
                f"unexpected non-Kubernetes runtime type: {record.type}. "
                "Did the runtime change outside of this configuration?"
            )

        return RuntimeStatus(
            runtime_id=record.id,
            name=record.name or declaration.name,
            agent_namespace=self.namespace,
            labels=reconcile_labels(record.labels, declaration.labels),
            agent_runtime_id=await reconciler.read_agent_runtime_id(),
        )

    async def remove(self, declaration: RuntimeDeclaration) -> None:
        """Unregister the runtime, then tear down the agent objects."""
        validate_runtime_name(declaration.name)
        async with self._lock_for(declaration.name):
            reconciler = self._reconciler_for(declaration)
            try:
                await self.linker.unlink(declaration.name)
            except RuntimeNotFoundError:
                logger.warning(f"[ENGINE] Runtime {declaration.name} is already gone from the control plane")
            await reconciler.teardown()
            logger.info(f"[ENGINE] ✅ Removed runtime {declaration.name}")

    # =========================================================================
    # EXTERNALLY MANAGED RUNTIMES
    # =========================================================================

    async def link_external(self, name: str) -> ExternalAgentBootstrap:
        """Link a runtime whose agent the user deploys. No cluster objects are touched."""
        validate_runtime_name(name)
        async with self._lock_for(name):
            return await self.linker.link_external(name)

    async def remove_external(self, name: str) -> None:
        validate_runtime_name(name)
        async with self._lock_for(name):
            await self.linker.unlink(name)

    async def await_link(self, name: str, timeout: Optional[str] = None) -> str:
        """
        Wait for an already linked runtime to report a fresh heartbeat.

        Args:
            name: Runtime name
            timeout: Duration string, defaults to the configured link timeout

        Returns:
            The runtime id
        """
        validate_runtime_name(name)
        timeout_label = timeout or self.settings.default_link_timeout
        try:
            parsed = parse_duration(timeout_label)
        except ValueError as e:
            raise ConfigurationError("timeout", str(e)) from e

        record = await self.linker.read(name)
        if not record.is_kubernetes:
            logger.debug(f"[ENGINE] Runtime {name} is of type {record.type}, not waiting for an agent")
            return record.id

        await self.waiter.wait(record.id, parsed, runtime_name=name, timeout_label=timeout_label)
        return record.id


# Global instance - lazily initialized
_engine_instance: Optional[RuntimeEngine] = None


def get_runtime_engine() -> RuntimeEngine:
    """Get or create the global runtime engine."""
    global _engine_instance
    if _engine_instance is None:
        _engine_instance = RuntimeEngine()
    return _engine_instance
