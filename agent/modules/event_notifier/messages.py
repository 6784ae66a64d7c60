"""Telegram HTML bodies for event notifications."""

from __future__ import annotations

import html
from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo

from shared.models.event import Event, EventKind

KIND_LABELS: dict[str, str] = {
    EventKind.WEBINAR.value: "🖥 Webinar",
    EventKind.QA.value: "❓ Q&A",
    EventKind.WORKSHOP.value: "🎯 Workshop",
    EventKind.DEADLINE.value: "⏰ Deadline",
}

# Spelled out so output doesn't depend on the process locale
_MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


def kind_label(kind: str) -> str:
    return KIND_LABELS.get(kind, kind)


def resolve_timezone(name: str) -> tzinfo:
    """Look up an IANA zone, falling back to UTC for unknown names."""
    try:
        return ZoneInfo(name)
    except (KeyError, ValueError):
        return timezone.utc


def _localize(dt: datetime, tz: tzinfo) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(tz)


def format_day_time(dt: datetime, tz: tzinfo) -> str:
    """``18 October, 09:30`` in the display timezone."""
    local = _localize(dt, tz)
    return f"{local.day} {_MONTHS[local.month - 1]}, {local:%H:%M}"


def format_time(dt: datetime, tz: tzinfo) -> str:
    return f"{_localize(dt, tz):%H:%M}"


def _link(url: str, text: str) -> str:
    return f'<a href="{html.escape(url, quote=True)}">{html.escape(text)}</a>'


def _label(event: Event) -> str:
    return html.escape(kind_label(event.kind))


def _title(event: Event) -> str:
    return html.escape(event.title)


def format_24h_reminder(event: Event, tz: tzinfo) -> str:
    text = (
        f"⏰ <b>Reminder: {_label(event)}</b>\n\n"
        f"<b>{_title(event)}</b>\n"
        f"📅 {format_day_time(event.starts_at, tz)} (in 24 hours)"
    )
    if event.meeting_url:
        text += f"\n\n🔗 {_link(event.meeting_url, 'Meeting link')}"
    return text


def format_1h_reminder(event: Event, tz: tzinfo) -> str:
    text = (
        f"🔔 <b>{_label(event)} starts in 1 hour!</b>\n\n"
        f"<b>{_title(event)}</b>\n"
        f"🕐 {format_time(event.starts_at, tz)}"
    )
    if event.meeting_url:
        text += f"\n\n🔗 {_link(event.meeting_url, 'Join')}"
    return text


def format_recording_ready(event: Event) -> str:
    if not event.recording_url:
        raise ValueError(f"event {event.id} has no recording")
    return (
        f"🎬 <b>Recording available: {_title(event)}</b>\n\n"
        f"🔗 {_link(event.recording_url, 'Watch the recording')}"
    )


def format_announcement(event: Event, tz: tzinfo) -> str:
    """Ad-hoc announcement sent when an admin pushes an event manually."""
    text = (
        f"📢 <b>{_label(event)}: {_title(event)}</b>\n\n"
        f"🕐 {format_day_time(event.starts_at, tz)}"
    )
    if event.meeting_url:
        text += f"\n\n🔗 {_link(event.meeting_url, 'Meeting link')}"
    return text
