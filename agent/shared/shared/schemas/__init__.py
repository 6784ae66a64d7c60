"""Pydantic schemas for the platform services."""

from shared.schemas.common import HealthResponse
from shared.schemas.notifications import (
    AnnouncementResponse,
    DeliveryFailure,
    DeliveryReport,
    NotifierStatus,
    Threshold,
    ThresholdReport,
    TickReport,
)

__all__ = [
    "AnnouncementResponse",
    "DeliveryFailure",
    "DeliveryReport",
    "HealthResponse",
    "NotifierStatus",
    "Threshold",
    "ThresholdReport",
    "TickReport",
]
