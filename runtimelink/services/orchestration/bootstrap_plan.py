"""Decides what converging a runtime does to the agent objects in the cluster."""

from typing import Optional

from ...models import BootstrapAction, RuntimeDeclaration


def plan_bootstrap(
    previous: Optional[RuntimeDeclaration],
    current: RuntimeDeclaration
) -> BootstrapAction:
    """
    Compare the previously applied declaration with the current one.

    Only agent_env and labels count as drift. Both are compared structurally,
    so an undeclared value (None) differs from an empty one.

    Args:
        previous: Declaration applied last time, None on first converge
        current: Declaration being converged

    Returns:
        CREATE on first converge, NOOP without drift, REPLACE otherwise
    """
    if previous is None:
        return BootstrapAction.CREATE
    if previous.agent_env == current.agent_env and previous.labels == current.labels:
        return BootstrapAction.NOOP
    return BootstrapAction.REPLACE
