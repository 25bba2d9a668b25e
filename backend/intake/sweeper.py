"""
sweeper.py: periodic eviction of stale PENDING sessions.

Started as a background task in the FastAPI lifespan and cancelled on shutdown.
A confirmation that arrives after its session was swept is dropped as a
no-match; there is no grace period.
"""
import asyncio
import logging
from datetime import timedelta

from backend.intake.registry import SessionRegistry

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_S = 60
SESSION_MAX_AGE = timedelta(minutes=7)


class ExpirySweeper:
    def __init__(
        self,
        registry: SessionRegistry,
        interval_s: float = SWEEP_INTERVAL_S,
        max_age: timedelta = SESSION_MAX_AGE,
    ) -> None:
        self._registry = registry
        self._interval_s = interval_s
        self._max_age = max_age

    def sweep(self) -> int:
        """Run one tick. Returns the number of sessions evicted."""
        expired = self._registry.remove_if_older_than(self._max_age)
        for session in expired:
            logger.info(
                "Session expired session_id=%s ref=%s", session.session_id, session.reference
            )
        return len(expired)

    async def run(self) -> None:
        """Sweep every interval_s until cancelled."""
        logger.info(
            "Expiry sweeper started interval=%ss max_age=%ss",
            self._interval_s, int(self._max_age.total_seconds()),
        )
        while True:
            await asyncio.sleep(self._interval_s)
            try:
                self.sweep()
            except Exception:
                # One bad tick must not stop future sweeps
                logger.error("Expiry sweep failed", exc_info=True)
