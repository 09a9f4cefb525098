"""
Presence cleanup service: deletes stale venue presences.

Background worker that polls every 10 minutes. Presences not refreshed for
STALE_PRESENCE_HOURS are already invisible to reads; the sweep just removes
them.
"""

import asyncio
import logging
import os
from typing import Optional

from kingofcourt.database import db
from kingofcourt.services.presence_service import cleanup_stale_presences
from kingofcourt.utils.constants import STALE_PRESENCE_HOURS

logger = logging.getLogger(__name__)

# How often the worker sweeps stale presences (seconds)
POLL_INTERVAL_SECONDS = int(os.getenv("PRESENCE_SWEEP_INTERVAL_SECONDS", "600"))  # 10 minutes


class PresenceCleanupService:
    """Background service that sweeps stale presences."""

    def __init__(
        self,
        poll_interval_seconds: float = POLL_INTERVAL_SECONDS,
        threshold_hours: float = STALE_PRESENCE_HOURS,
    ):
        self.poll_interval_seconds = poll_interval_seconds
        self.threshold_hours = threshold_hours
        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def start(self) -> None:
        """Start the background cleanup worker."""
        if self._worker_task is None or self._worker_task.done():
            self._stop_event.clear()
            self._worker_task = asyncio.create_task(self._poll_loop())
            logger.info("Presence cleanup worker started")

    def stop(self) -> None:
        """Stop the background cleanup worker."""
        self._stop_event.set()
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            logger.info("Presence cleanup worker stopped")

    async def _poll_loop(self) -> None:
        """Main loop: sweep, then sleep. Repeats until stopped."""
        while not self._stop_event.is_set():
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Error in presence cleanup worker: {e}", exc_info=True)

            # Wait for poll interval or until stop is signalled
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.poll_interval_seconds
                )
                break
            except asyncio.TimeoutError:
                pass

    async def sweep(self) -> int:
        """Run one sweep in its own session and commit it."""
        async with db.AsyncSessionLocal() as session:
            try:
                deleted = await cleanup_stale_presences(session, self.threshold_hours)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        if deleted:
            logger.info(f"Removed {deleted} stale presence(s)")
        return deleted


# Global singleton, created on first use so it binds to the running loop
_cleanup_service: Optional[PresenceCleanupService] = None


def get_presence_cleanup_service() -> PresenceCleanupService:
    """Get the global presence cleanup service instance."""
    global _cleanup_service
    if _cleanup_service is None:
        _cleanup_service = PresenceCleanupService()
    return _cleanup_service
