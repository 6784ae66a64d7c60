"""Scheduled platform event (webinar, Q&A, workshop, deadline)."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Index, String, Text, false, true
from sqlalchemy.orm import Mapped, mapped_column

from shared.models.base import Base


class EventKind(str, enum.Enum):
    WEBINAR = "WEBINAR"
    QA = "QA"
    WORKSHOP = "WORKSHOP"
    DEADLINE = "DEADLINE"


class Event(Base):
    __tablename__ = "events"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(Text)
    kind: Mapped[str] = mapped_column(String(32), default=EventKind.WEBINAR.value)

    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    meeting_url: Mapped[str | None] = mapped_column(Text, default=None)
    recording_url: Mapped[str | None] = mapped_column(Text, default=None)

    # Edited by course management
    notify_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true()
    )

    # Owned by the notifier; only ever flipped false -> true
    notified_24h: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false()
    )
    notified_1h: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false()
    )
    notified_record: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false()
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (Index("ix_events_starts_at", "starts_at"),)
