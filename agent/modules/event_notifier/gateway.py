"""Outbound message delivery.

Each gateway implements ``send_one`` for its transport; ``broadcast`` fans a
message out to many recipients and never lets one failure stop the rest.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Iterable

import structlog
from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError

from modules.event_notifier.errors import ConfigurationError, DeliveryError
from shared.config import TELEGRAM_TOKEN_PLACEHOLDER, Settings
from shared.schemas.notifications import DeliveryFailure, DeliveryReport

logger = structlog.get_logger()


class DeliveryGateway(ABC):
    """Transport-agnostic message delivery."""

    def __init__(self, max_concurrent_sends: int = 20):
        self.max_concurrent_sends = max(1, max_concurrent_sends)

    @abstractmethod
    async def send_one(self, recipient: str, message: str) -> None:
        """Deliver ``message`` to one recipient.

        Raises :class:`DeliveryError` if the transport rejects it or times out.
        """

    async def close(self) -> None:
        """Release transport resources."""

    async def broadcast(self, recipients: Iterable[str], message: str) -> DeliveryReport:
        """Send ``message`` to every recipient concurrently.

        Per-recipient failures are logged and counted, never raised.
        Cancellation propagates to the caller.
        """
        targets = sorted(set(recipients))
        report = DeliveryReport()
        if not targets:
            return report

        semaphore = asyncio.Semaphore(self.max_concurrent_sends)

        async def _deliver(recipient: str) -> str | None:
            async with semaphore:
                try:
                    await self.send_one(recipient, message)
                except DeliveryError as e:
                    logger.warning("delivery_failed", recipient=recipient, error=e.reason)
                    return e.reason
                except Exception as e:
                    logger.error(
                        "delivery_unexpected_error", recipient=recipient, error=str(e)
                    )
                    return str(e)
            return None

        outcomes = await asyncio.gather(*(_deliver(r) for r in targets))

        for recipient, error in zip(targets, outcomes):
            if error is None:
                report.sent += 1
            else:
                report.failed += 1
                report.failures.append(DeliveryFailure(recipient=recipient, error=error))

        logger.info("broadcast_complete", sent=report.sent, failed=report.failed)
        return report


def _chat_id(recipient: str) -> int | str:
    # Numeric ids go over the wire as ints, @usernames as-is
    stripped = recipient.strip()
    if stripped.lstrip("-").isdigit():
        return int(stripped)
    return stripped


class TelegramGateway(DeliveryGateway):
    """Delivers HTML messages through the Telegram Bot API."""

    def __init__(self, bot: Bot, send_timeout: float = 5.0, max_concurrent_sends: int = 20):
        super().__init__(max_concurrent_sends=max_concurrent_sends)
        self.bot = bot
        self.send_timeout = send_timeout

    async def send_one(self, recipient: str, message: str) -> None:
        try:
            await asyncio.wait_for(
                self.bot.send_message(
                    chat_id=_chat_id(recipient),
                    text=message,
                    parse_mode=ParseMode.HTML,
                ),
                timeout=self.send_timeout,
            )
        except asyncio.TimeoutError:
            raise DeliveryError(recipient, f"timed out after {self.send_timeout}s") from None
        except TelegramError as e:
            raise DeliveryError(recipient, f"{type(e).__name__}: {e.message}") from e

    async def close(self) -> None:
        try:
            await self.bot.shutdown()
        except TelegramError as e:
            logger.warning("telegram_shutdown_error", error=str(e))


def build_gateway(settings: Settings) -> TelegramGateway:
    """Create the Telegram gateway, or raise if no bot token is configured."""
    token = settings.telegram_token.strip()
    if not token or token == TELEGRAM_TOKEN_PLACEHOLDER:
        raise ConfigurationError("TELEGRAM_TOKEN is not set")
    return TelegramGateway(
        Bot(token=token),
        send_timeout=settings.notify_send_timeout_seconds,
        max_concurrent_sends=settings.notify_max_concurrent_sends,
    )
