"""Query surface the notifier needs from the events and users tables."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modules.event_notifier.errors import StoreError
from shared.models.event import Event
from shared.models.user import User
from shared.schemas.notifications import Threshold

logger = structlog.get_logger()

# How far ahead of the event each reminder fires
THRESHOLD_OFFSETS: dict[Threshold, timedelta] = {
    Threshold.H24: timedelta(hours=24),
    Threshold.H1: timedelta(hours=1),
}

# asyncpg raises socket errors and timeouts without SQLAlchemy wrapping them
_DB_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)

_FLAG_COLUMNS = {
    Threshold.H24: Event.notified_24h,
    Threshold.H1: Event.notified_1h,
    Threshold.RECORDING: Event.notified_record,
}


def threshold_window(
    threshold: Threshold, now: datetime, tolerance: timedelta
) -> tuple[datetime, datetime]:
    """Return the inclusive start-time window for a reminder threshold."""
    try:
        offset = THRESHOLD_OFFSETS[threshold]
    except KeyError:
        raise ValueError(f"{threshold!r} is not a time-based threshold") from None
    target = now + offset
    return target - tolerance, target + tolerance


class EventStore:
    """Async SQLAlchemy adapter over ``events`` and ``users``.

    Every database failure surfaces as :class:`StoreError`.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_events_crossing_threshold(
        self, threshold: Threshold, now: datetime, tolerance: timedelta
    ) -> list[Event]:
        """Events with notifications on, the threshold's flag unset and a
        start time inside the threshold window."""
        window_start, window_end = threshold_window(threshold, now, tolerance)
        flag = _FLAG_COLUMNS[threshold]
        stmt = (
            select(Event)
            .where(
                Event.notify_enabled.is_(True),
                flag.is_(False),
                Event.starts_at >= window_start,
                Event.starts_at <= window_end,
            )
            .order_by(Event.starts_at)
        )
        return await self._fetch_events(stmt, threshold=threshold.value)

    async def find_events_with_unnotified_recording(self, now: datetime) -> list[Event]:
        """Started events that have a recording nobody has been told about."""
        stmt = (
            select(Event)
            .where(
                Event.notified_record.is_(False),
                Event.recording_url.is_not(None),
                Event.recording_url != "",
                Event.starts_at <= now,
            )
            .order_by(Event.starts_at)
        )
        return await self._fetch_events(stmt, threshold=Threshold.RECORDING.value)

    async def mark_notified(self, event_id: uuid.UUID, threshold: Threshold) -> bool:
        """Flip the threshold's flag to true.

        Single conditional UPDATE, so two overlapping writers can't both
        claim the flip. Returns True only for the call that changed the row;
        repeating the call is a no-op.
        """
        flag = _FLAG_COLUMNS[threshold]
        conditions = [Event.id == event_id, flag.is_(False)]
        if threshold == Threshold.RECORDING:
            conditions.extend([Event.recording_url.is_not(None), Event.recording_url != ""])

        stmt = (
            update(Event)
            .where(*conditions)
            .values({flag.key: True})
            .execution_options(synchronize_session=False)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except _DB_ERRORS as e:
            raise StoreError(
                f"marking event {event_id} notified for {threshold.value} failed: {e}"
            ) from e
        return (result.rowcount or 0) > 0

    async def list_recipient_identities(self) -> set[str]:
        """Telegram ids of every linked user, read fresh on each call."""
        stmt = select(User.telegram_id).where(
            User.telegram_id.is_not(None),
            User.telegram_id != "",
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return {str(tid) for tid in result.scalars().all()}
        except _DB_ERRORS as e:
            raise StoreError(f"listing recipients failed: {e}") from e

    async def get_event(self, event_id: uuid.UUID) -> Event | None:
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(Event).where(Event.id == event_id))
                return result.scalar_one_or_none()
        except _DB_ERRORS as e:
            raise StoreError(f"loading event {event_id} failed: {e}") from e

    async def _fetch_events(self, stmt, *, threshold: str) -> list[Event]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                events = list(result.scalars().all())
        except _DB_ERRORS as e:
            raise StoreError(f"reading {threshold} candidates failed: {e}") from e
        logger.debug("notification_candidates_loaded", threshold=threshold, count=len(events))
        return events
