"""Event notification scheduler — polls events and sends one-time reminders.

Each tick checks three independent thresholds:

- 24h reminder: start time within ``tolerance`` of ``now + 24h``
- 1h reminder: start time within ``tolerance`` of ``now + 1h``
- recording: event has started and a recording URL was added

Every qualifying event is broadcast to all linked recipients and then its
flag is set, so later ticks skip it. The flag is set once the broadcast
attempt finishes, whatever the per-recipient outcome (at-least-once; a crash
between send and flag write re-sends on the next tick).
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import structlog

from modules.event_notifier.errors import StoreError
from modules.event_notifier.gateway import DeliveryGateway
from modules.event_notifier.lock import TickLock
from modules.event_notifier.messages import (
    format_1h_reminder,
    format_24h_reminder,
    format_recording_ready,
    resolve_timezone,
)
from modules.event_notifier.store import EventStore
from shared.config import Settings
from shared.models.event import Event
from shared.schemas.notifications import Threshold, ThresholdReport, TickReport

logger = structlog.get_logger()

# Order thresholds are evaluated in within a tick
THRESHOLDS = (Threshold.H24, Threshold.H1, Threshold.RECORDING)


class NotificationScheduler:
    """Runs notification ticks on a fixed interval."""

    def __init__(
        self,
        store: EventStore,
        gateway: DeliveryGateway,
        *,
        interval_seconds: int = 300,
        tolerance_seconds: int = 300,
        display_timezone: str = "UTC",
        lock: TickLock | None = None,
    ):
        self.store = store
        self.gateway = gateway
        self.interval_seconds = interval_seconds
        self.tolerance = timedelta(seconds=tolerance_seconds)
        self.tz = resolve_timezone(display_timezone)
        self.lock = lock or TickLock()
        self.last_report: TickReport | None = None
        self._task: asyncio.Task | None = None

        if tolerance_seconds < interval_seconds:
            logger.warning(
                "notify_tolerance_below_interval",
                tolerance_seconds=tolerance_seconds,
                interval_seconds=interval_seconds,
                hint="Events may slip between ticks without a reminder",
            )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: EventStore,
        gateway: DeliveryGateway,
        redis_client=None,
    ) -> NotificationScheduler:
        return cls(
            store,
            gateway,
            interval_seconds=settings.notify_interval_seconds,
            tolerance_seconds=settings.notify_tolerance_seconds,
            display_timezone=settings.display_timezone,
            lock=TickLock(redis_client, ttl_seconds=settings.notify_tick_lock_ttl_seconds),
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self, now: datetime | None = None) -> TickReport:
        """Run one scan-deliver-mark cycle.

        Returns a skipped report without doing anything if another tick is
        still in progress.
        """
        now = now or datetime.now(timezone.utc)

        try:
            acquired = await self.lock.try_acquire()
        except Exception as e:
            logger.error("tick_lock_unavailable", error=str(e))
            return TickReport(started_at=now, finished_at=now, skipped=True, error=str(e))

        if not acquired:
            logger.info("notification_tick_skipped", reason="tick_in_progress")
            return TickReport(started_at=now, finished_at=now, skipped=True)

        try:
            report = await self._run_tick(now)
        finally:
            await self.lock.release()

        self.last_report = report
        return report

    async def _run_tick(self, now: datetime) -> TickReport:
        report = TickReport(started_at=now)

        # Read once per tick so newly linked users get the next notification
        try:
            recipients = await self.store.list_recipient_identities()
        except StoreError as e:
            logger.error("recipient_lookup_failed", error=str(e))
            report.error = str(e)
            report.finished_at = datetime.now(timezone.utc)
            return report

        report.recipients = len(recipients)
        for threshold in THRESHOLDS:
            report.thresholds.append(
                await self._process_threshold(threshold, now, recipients)
            )

        report.finished_at = datetime.now(timezone.utc)
        if any(t.candidates for t in report.thresholds):
            logger.info(
                "notification_tick_complete",
                recipients=report.recipients,
                sent=report.sent,
                failed=report.failed,
                **{f"candidates_{t.threshold.value}": t.candidates for t in report.thresholds},
            )
        return report

    async def _process_threshold(
        self, threshold: Threshold, now: datetime, recipients: set[str]
    ) -> ThresholdReport:
        result = ThresholdReport(threshold=threshold)

        try:
            events = await self._load_candidates(threshold, now)
        except StoreError as e:
            # Retried on the next tick
            logger.error("notification_candidates_error", threshold=threshold.value, error=str(e))
            result.store_error = str(e)
            return result

        result.candidates = len(events)

        for event in events:
            try:
                message = self._render(threshold, event)
                delivery = await self.gateway.broadcast(recipients, message)
            except Exception as e:
                logger.error(
                    "event_notification_error",
                    event_id=str(event.id),
                    threshold=threshold.value,
                    error=str(e),
                )
                continue

            result.sent += delivery.sent
            result.failed += delivery.failed
            logger.info(
                "event_notification_sent",
                event_id=str(event.id),
                threshold=threshold.value,
                sent=delivery.sent,
                failed=delivery.failed,
            )

            try:
                flipped = await self.store.mark_notified(event.id, threshold)
            except StoreError as e:
                # The event stays a candidate and will be re-sent every tick
                # until this write goes through.
                result.mark_failures += 1
                logger.error(
                    "mark_notified_failed",
                    event_id=str(event.id),
                    threshold=threshold.value,
                    error=str(e),
                )
                continue

            if flipped:
                result.notified += 1
            else:
                logger.warning(
                    "notification_already_marked",
                    event_id=str(event.id),
                    threshold=threshold.value,
                )

        return result

    async def _load_candidates(self, threshold: Threshold, now: datetime) -> list[Event]:
        if threshold == Threshold.RECORDING:
            return await self.store.find_events_with_unnotified_recording(now)
        return await self.store.find_events_crossing_threshold(threshold, now, self.tolerance)

    def _render(self, threshold: Threshold, event: Event) -> str:
        if threshold == Threshold.H24:
            return format_24h_reminder(event, self.tz)
        if threshold == Threshold.H1:
            return format_1h_reminder(event, self.tz)
        return format_recording_ready(event)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run_forever(self) -> None:
        """Tick every ``interval_seconds`` until cancelled."""
        logger.info(
            "event_notifier_started",
            interval_seconds=self.interval_seconds,
            tolerance_seconds=int(self.tolerance.total_seconds()),
        )
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.error("event_notifier_loop_error", error=str(e))

            await asyncio.sleep(self.interval_seconds)

    def start(self) -> asyncio.Task:
        if not self.running:
            self._task = asyncio.create_task(self.run_forever())
        return self._task

    async def stop(self) -> None:
        """Cancel the loop; an in-flight broadcast is abandoned unmarked."""
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("event_notifier_stopped")
