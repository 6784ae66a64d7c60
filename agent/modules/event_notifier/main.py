"""Event notifier module - FastAPI service with background scheduler."""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis
import structlog
from fastapi import Depends, FastAPI, HTTPException

from modules.event_notifier.errors import ConfigurationError, StoreError
from modules.event_notifier.gateway import DeliveryGateway, build_gateway
from modules.event_notifier.messages import format_announcement
from modules.event_notifier.scheduler import NotificationScheduler
from modules.event_notifier.store import EventStore
from shared.auth import require_service_auth
from shared.config import get_settings
from shared.database import dispose_engine, get_session_factory
from shared.schemas.common import HealthResponse
from shared.schemas.notifications import AnnouncementResponse, NotifierStatus, TickReport

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()
app = FastAPI(title="Event Notifier", version="1.0.0")

store: EventStore | None = None
gateway: DeliveryGateway | None = None
scheduler: NotificationScheduler | None = None
disabled_reason: str | None = None
_redis: aioredis.Redis | None = None


@app.on_event("startup")
async def startup():
    global store, gateway, scheduler, disabled_reason, _redis
    settings = get_settings()
    store = EventStore(get_session_factory())

    try:
        gateway = build_gateway(settings)
    except ConfigurationError as e:
        # The rest of the platform doesn't depend on us; stay up, send nothing.
        disabled_reason = str(e)
        logger.warning("notifications_disabled", reason=disabled_reason)
        return

    if settings.redis_url:
        _redis = aioredis.from_url(settings.redis_url, decode_responses=True)

    scheduler = NotificationScheduler.from_settings(settings, store, gateway, _redis)
    scheduler.start()
    logger.info("event_notifier_ready")


@app.on_event("shutdown")
async def shutdown():
    global scheduler, gateway, _redis
    if scheduler is not None:
        await scheduler.stop()
        scheduler = None
    if gateway is not None:
        await gateway.close()
        gateway = None
    if _redis is not None:
        await _redis.aclose()
        _redis = None
    await dispose_engine()
    logger.info("event_notifier_shutdown")


def _require_scheduler() -> NotificationScheduler:
    if scheduler is None:
        raise HTTPException(
            status_code=503,
            detail=f"Notifications are disabled: {disabled_reason or 'not started'}",
        )
    return scheduler


@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse()


@app.get("/status", response_model=NotifierStatus)
async def status():
    settings = get_settings()
    return NotifierStatus(
        enabled=scheduler is not None,
        disabled_reason=disabled_reason,
        running=scheduler.running if scheduler else False,
        interval_seconds=settings.notify_interval_seconds,
        tolerance_seconds=settings.notify_tolerance_seconds,
        last_tick=scheduler.last_report if scheduler else None,
    )


@app.post("/tick", response_model=TickReport)
async def run_tick(_=Depends(require_service_auth)):
    """Run one notification tick now (skipped if one is already running)."""
    return await _require_scheduler().tick()


@app.post("/events/{event_id}/notify", response_model=AnnouncementResponse)
async def notify_event(event_id: uuid.UUID, _=Depends(require_service_auth)):
    """Announce an event to every linked user right away.

    Does not touch the event's reminder flags.
    """
    active = _require_scheduler()

    try:
        event = await active.store.get_event(event_id)
        if event is None:
            raise HTTPException(status_code=404, detail="Event not found")
        recipients = await active.store.list_recipient_identities()
    except StoreError as e:
        logger.error("announcement_store_error", event_id=str(event_id), error=str(e))
        raise HTTPException(status_code=503, detail="Event store unavailable") from e

    delivery = await active.gateway.broadcast(recipients, format_announcement(event, active.tz))
    logger.info(
        "event_announced",
        event_id=str(event_id),
        sent=delivery.sent,
        failed=delivery.failed,
    )
    return AnnouncementResponse(event_id=str(event_id), delivery=delivery)
