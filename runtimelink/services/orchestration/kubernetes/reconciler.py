"""
Agent Object Reconciler

Brings the agent objects of one cluster in line with a linked runtime:
conflict check, teardown, ordered creation and the wait for the agent's
first heartbeat.
"""

import logging
from datetime import timedelta
from typing import Dict, Optional

from ....errors import ConflictError
from ....models import BootstrapAction, LinkResult
from ...readiness import ReadinessWaiter
from .client import ClusterClient
from .helpers import (
    create_agent_deployment_manifest,
    create_cluster_role_binding_manifest,
    create_namespace_manifest,
    create_service_account_manifest,
)

logger = logging.getLogger(__name__)


class ObjectReconciler:
    """Creates, checks and tears down the agent objects in a namespace."""

    def __init__(
        self,
        cluster: ClusterClient,
        waiter: ReadinessWaiter,
        namespace: str = "prodvana",
        namespace_delete_timeout: float = 300,
        namespace_delete_poll_interval: float = 1.0
    ):
        self.cluster = cluster
        self.waiter = waiter
        self.namespace = namespace
        self.namespace_delete_timeout = namespace_delete_timeout
        self.namespace_delete_poll_interval = namespace_delete_poll_interval

    async def reconcile(
        self,
        action: BootstrapAction,
        link: LinkResult,
        runtime_name: str,
        agent_env: Optional[Dict[str, str]],
        timeout: timedelta,
        timeout_label: Optional[str] = None
    ) -> None:
        """
        Apply a bootstrap action for a linked runtime.

        Args:
            action: What to do, see plan_bootstrap
            link: Link result with the runtime id and agent parameters
            runtime_name: Runtime name, for messages
            agent_env: Declared agent environment overrides
            timeout: How long to wait for the agent's heartbeat
            timeout_label: Timeout as configured, for messages

        Raises:
            ConflictError: On create, if another runtime's agent is deployed
            TransientClusterError: On cluster API failure
            ReadinessTimeoutError: If the agent never reports a fresh heartbeat
        """
        if action is BootstrapAction.NOOP:
            logger.info(f"[K8S] No agent changes for runtime {runtime_name}, skipping bootstrap")
            return

        if action is BootstrapAction.CREATE:
            await self.check_conflict(link.runtime_id)
        else:
            logger.info(f"[K8S] Agent configuration of runtime {runtime_name} changed, replacing agent")
            await self.teardown()

        await self.create_objects(link, agent_env)
        await self.waiter.wait(
            link.runtime_id,
            timeout,
            runtime_name=runtime_name,
            timeout_label=timeout_label
        )

    async def check_conflict(self, runtime_id: str) -> None:
        """Fail if the namespace already runs an agent for a different runtime."""
        existing = await self.cluster.get_deployment_runtime_id(self.namespace)
        if existing is None:
            return
        if existing != runtime_id:
            raise ConflictError(self.namespace, existing, runtime_id)
        logger.debug(f"[K8S] Agent deployment for runtime {runtime_id} already exists")

    async def create_objects(self, link: LinkResult, agent_env: Optional[Dict[str, str]]) -> None:
        """Create namespace, service account, binding and deployment, in that order."""
        await self.cluster.create_namespace(create_namespace_manifest(self.namespace))
        await self.cluster.create_service_account(
            create_service_account_manifest(self.namespace),
            self.namespace
        )
        await self.cluster.create_cluster_role_binding(
            create_cluster_role_binding_manifest(self.namespace)
        )
        await self.cluster.create_deployment(
            create_agent_deployment_manifest(self.namespace, link.runtime_id, link.bootstrap, agent_env),
            self.namespace
        )

    async def teardown(self) -> None:
        """Delete deployment, binding, service account and namespace, in that order."""
        await self.cluster.delete_deployment(self.namespace)
        await self.cluster.delete_cluster_role_binding()
        await self.cluster.delete_service_account(self.namespace)
        await self.cluster.delete_namespace(self.namespace)
        await self.cluster.wait_for_namespace_deleted(
            self.namespace,
            timeout=self.namespace_delete_timeout,
            poll_interval=self.namespace_delete_poll_interval
        )
        logger.info(f"[K8S] ✅ Removed agent objects from namespace {self.namespace}")

    async def read_agent_runtime_id(self) -> Optional[str]:
        """Runtime id the live agent deployment is annotated with, None if absent."""
        runtime_id = await self.cluster.get_deployment_runtime_id(self.namespace)
        return runtime_id or None
