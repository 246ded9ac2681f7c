"""
Runtime linking against the control plane.

Link registers (or re-registers) a runtime and hands back the agent bootstrap
parameters. Finalize pushes the declared labels once the agent is up.
"""

import logging
from typing import List, Optional

from ..models import ExternalAgentBootstrap, Label, LinkResult, RuntimeDeclaration, RuntimeRecord
from .control_plane import ControlPlaneClient

logger = logging.getLogger(__name__)


class RuntimeLinker:
    """Control plane side of a managed runtime."""

    def __init__(self, control_plane: ControlPlaneClient):
        self.control_plane = control_plane

    async def link(self, declaration: RuntimeDeclaration) -> LinkResult:
        """
        Register the runtime, idempotent by name.

        Returns:
            LinkResult with the stable runtime id and the agent image, args and env
        """
        result = await self.control_plane.link_runtime(declaration.name, declaration.agent_env)
        logger.info(f"[LINK] Linked runtime {declaration.name} ({result.runtime_id})")
        return result

    async def finalize(self, name: str, labels: Optional[List[Label]]) -> None:
        """Apply the declared labels. Undeclared labels (None) leave the remote set alone."""
        if labels is None:
            logger.debug(f"[LINK] No labels declared for runtime {name}, leaving remote labels as is")
            return
        await self.control_plane.configure_runtime_labels(name, labels)
        logger.info(f"[LINK] Applied {len(labels)} labels to runtime {name}")

    async def read(self, name: str) -> RuntimeRecord:
        return await self.control_plane.get_runtime(name, include_auth=True)

    async def unlink(self, name: str) -> None:
        await self.control_plane.remove_runtime(name)

    async def link_external(self, name: str) -> ExternalAgentBootstrap:
        """Link a runtime whose agent is deployed outside this engine."""
        bootstrap = await self.control_plane.link_external_runtime(name)
        logger.info(f"[LINK] Linked externally managed runtime {name} ({bootstrap.runtime_id})")
        return bootstrap

