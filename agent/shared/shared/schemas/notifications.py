"""Schemas describing event notification runs and their outcomes."""

from __future__ import annotations

import enum
from datetime import datetime

from pydantic import BaseModel, Field


class Threshold(str, enum.Enum):
    """A one-time notification trigger for an event."""

    H24 = "24h"  # 24 hours before start
    H1 = "1h"  # 1 hour before start
    RECORDING = "recording"  # recording became available after start


class DeliveryFailure(BaseModel):
    recipient: str
    error: str


class DeliveryReport(BaseModel):
    """Outcome of broadcasting one message to a set of recipients."""

    sent: int = 0
    failed: int = 0
    failures: list[DeliveryFailure] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return self.sent + self.failed


class ThresholdReport(BaseModel):
    """What happened to one threshold during a tick."""

    threshold: Threshold
    candidates: int = 0
    notified: int = 0  # events whose flag this tick flipped
    mark_failures: int = 0
    sent: int = 0
    failed: int = 0
    store_error: str | None = None


class TickReport(BaseModel):
    """Summary of a single scheduler tick."""

    started_at: datetime
    finished_at: datetime | None = None
    skipped: bool = False  # another tick held the lock
    recipients: int = 0
    thresholds: list[ThresholdReport] = Field(default_factory=list)
    error: str | None = None

    @property
    def sent(self) -> int:
        return sum(t.sent for t in self.thresholds)

    @property
    def failed(self) -> int:
        return sum(t.failed for t in self.thresholds)

    def for_threshold(self, threshold: Threshold) -> ThresholdReport | None:
        for report in self.thresholds:
            if report.threshold == threshold:
                return report
        return None


class NotifierStatus(BaseModel):
    """Response for the notifier's status endpoint."""

    enabled: bool
    disabled_reason: str | None = None
    running: bool = False
    interval_seconds: int
    tolerance_seconds: int
    last_tick: TickReport | None = None


class AnnouncementResponse(BaseModel):
    """Response for a manual event announcement."""

    event_id: str
    delivery: DeliveryReport
