"""Background task that fails provisioning records stuck in ``creating``.

A launch commits its creating record before calling the backend. If the
process dies before the record is reconciled, nothing else would ever move
it on; this task sweeps such records to failed once they are older than the
configured age.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lab_api.services import record_writer

logger = logging.getLogger(__name__)


class StaleProvisioningReaper:
    """Periodically marks stale creating records as failed."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        stale_after_minutes: int,
        interval_seconds: float,
    ):
        self._session_factory = session_factory
        self._stale_after = timedelta(minutes=stale_after_minutes)
        self._interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        self._task = asyncio.create_task(self._reap_loop())
        logger.info(
            "Stale provisioning reaper started (stale after %s, every %ss)",
            self._stale_after, self._interval_seconds,
        )

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def _reap_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            await self.reap_once()

    async def reap_once(self, now: datetime | None = None) -> int:
        """Run one sweep. Returns how many records were failed, 0 on error."""
        now = now or datetime.now(timezone.utc)
        # Timestamps are stored without a zone, in UTC.
        cutoff = (now - self._stale_after).astimezone(timezone.utc).replace(tzinfo=None)
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    reaped = await record_writer.fail_stale_records(db, cutoff)
        except Exception:
            logger.exception("Stale provisioning sweep failed")
            return 0

        if reaped:
            logger.warning("Marked %d stale creating container(s) as failed", reaped)
        return reaped
