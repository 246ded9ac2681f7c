"""
Readiness polling for linked runtimes.

A runtime counts as linked once its agent has reported a heartbeat recently.
A missing or stale heartbeat means the agent has not started reporting yet,
so it is polled again rather than treated as an error.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from ..errors import ReadinessTimeoutError, RuntimeNotFoundError
from .control_plane import ControlPlaneClient

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReadinessWaiter:
    """Polls the control plane until a runtime reports a fresh heartbeat."""

    def __init__(
        self,
        control_plane: ControlPlaneClient,
        poll_interval: float = 1.0,
        freshness_window: timedelta = timedelta(minutes=10),
        monotonic: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.control_plane = control_plane
        self.poll_interval = poll_interval
        self.freshness_window = freshness_window
        self._monotonic = monotonic
        self._now = now
        self._sleep = sleep

    def is_fresh(self, heartbeat: Optional[datetime]) -> bool:
        """Check if a heartbeat falls within the freshness window."""
        if heartbeat is None:
            return False
        return heartbeat > self._now() - self.freshness_window

    async def wait(
        self,
        runtime_id: str,
        timeout: timedelta,
        runtime_name: Optional[str] = None,
        timeout_label: Optional[str] = None
    ) -> None:
        """
        Wait for the runtime to report a fresh heartbeat.

        Args:
            runtime_id: Runtime identifier to poll
            timeout: Maximum time to wait
            runtime_name: Runtime name for messages (defaults to the id)
            timeout_label: Timeout as configured, e.g. "10m", for messages

        Raises:
            ReadinessTimeoutError: If no fresh heartbeat is seen within the timeout
            RemoteControlPlaneError: If the status call fails for any reason other than not found
        """
        name = runtime_name or runtime_id
        label = timeout_label or f"{timeout.total_seconds():g}s"
        started = self._monotonic()
        attempts = 0

        while True:
            attempts += 1
            try:
                status = await self.control_plane.get_runtime_status(runtime_id, runtime_name=name)
                heartbeat = status.last_heartbeat
            except RuntimeNotFoundError:
                logger.debug(f"[READY] No status yet for runtime {name}")
                heartbeat = None

            if self.is_fresh(heartbeat):
                logger.info(f"[READY] ✅ Runtime {name} is linked (heartbeat {heartbeat.isoformat()})")
                return

            elapsed = self._monotonic() - started
            if elapsed > timeout.total_seconds():
                logger.warning(
                    f"[READY] Runtime {name} did not report a heartbeat after {attempts} attempts ({label})"
                )
                raise ReadinessTimeoutError(name, label)

            if attempts % 30 == 0:
                logger.info(f"[READY] Still waiting for runtime {name} to link ({elapsed:.0f}s elapsed)")
            await self._sleep(self.poll_interval)
