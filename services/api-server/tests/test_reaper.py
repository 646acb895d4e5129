"""Tests for the StaleProvisioningReaper background task.

The sweep itself is exercised against the in-memory canonical schema;
the loop wiring (start/stop, error tolerance) uses mocks.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import text

from lab_shared.schemas.container import ContainerStatus

from lab_api.reaper import StaleProvisioningReaper
from lab_api.services import record_writer
from lab_api.services.record_writer import ContainerRecordPayload


def _build_reaper(session_factory, stale_after_minutes: int = 15) -> StaleProvisioningReaper:
    return StaleProvisioningReaper(
        session_factory=session_factory,
        stale_after_minutes=stale_after_minutes,
        interval_seconds=0.01,
    )


async def _insert_creating(session_factory, name: str, created_at: str | None = None) -> int:
    async with session_factory() as db:
        async with db.begin():
            record = await record_writer.create_container_record(
                db, ContainerRecordPayload(external_id=name, image="ubuntu:24.04", owner_user_id=42)
            )
            if created_at:
                await db.execute(
                    text("UPDATE containers SET created_at = :ts WHERE id = :id"),
                    {"ts": created_at, "id": record.id},
                )
    return record.id


async def _status_of(session_factory, record_id: int) -> ContainerStatus:
    async with session_factory() as db:
        async with db.begin():
            record = await record_writer.get_container_record(db, record_id)
    return record.status


class TestReapOnce:
    @pytest.mark.asyncio
    async def test_fails_only_stale_creating_records(self, session_factory):
        stale_id = await _insert_creating(session_factory, "lab-stale", "2020-01-01 00:00:00")
        fresh_id = await _insert_creating(session_factory, "lab-fresh")

        reaped = await _build_reaper(session_factory).reap_once()

        assert reaped == 1
        assert await _status_of(session_factory, stale_id) is ContainerStatus.failed
        assert await _status_of(session_factory, fresh_id) is ContainerStatus.creating

    @pytest.mark.asyncio
    async def test_cutoff_respects_configured_age(self, session_factory):
        record_id = await _insert_creating(session_factory, "lab-young")
        later = datetime.now(timezone.utc) + timedelta(hours=2)

        reaped = await _build_reaper(session_factory, stale_after_minutes=60).reap_once(now=later)

        assert reaped == 1
        assert await _status_of(session_factory, record_id) is ContainerStatus.failed

    @pytest.mark.asyncio
    async def test_errors_are_logged_not_raised(self):
        factory = MagicMock(side_effect=RuntimeError("database unavailable"))

        assert await _build_reaper(factory).reap_once() == 0


class TestReaperLifecycle:
    @pytest.mark.asyncio
    async def test_loop_sweeps_until_stopped(self):
        reaper = _build_reaper(MagicMock())

        with patch.object(reaper, "reap_once", AsyncMock(return_value=0)) as mock_reap:
            reaper.start()
            await asyncio.sleep(0.05)
            await reaper.stop()

        assert mock_reap.await_count >= 1
        assert reaper._task.cancelled()

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self):
        await _build_reaper(MagicMock()).stop()
