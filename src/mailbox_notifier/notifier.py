# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Notification sinks used by the mailbox monitors.

A sink is any object with ``async send(endpoint, text)`` and ``async close()``
methods. Monitors
receive their sink at construction, so tests can pass a capturing fake and
the service can choose between the Telegram Bot API and plain logging.

Example:
    Sending through the Telegram Bot API::

        notifier = TelegramNotifier(token="123:ABC")
        await notifier.send(chat_id=4242, text="New mail")
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Protocol

import aiohttp

from .errors import DeliveryError
from .logger import get_logger

if TYPE_CHECKING:
    from logging import Logger

    from .models import MessageEnvelope

TELEGRAM_API_URL = "https://api.telegram.org"
TELEGRAM_MAX_LENGTH = 4096
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class NotificationSink(Protocol):
    """Delivers a text message to a user endpoint.

    Implementations raise :class:`DeliveryError` when the message could not
    be delivered; callers log it and move on.
    """

    async def send(self, endpoint: int | str, text: str) -> None: ...

    async def close(self) -> None: ...


def format_envelope(login: str, envelope: MessageEnvelope) -> str:
    """Render the notification text for a matching message."""
    sender = envelope.senders[0] if envelope.senders else None
    sender_text = ""
    if sender is not None:
        sender_text = sender.name or sender.mailbox
    date_text = envelope.date.strftime(DATE_FORMAT) if envelope.date else "-"
    return (
        f"At: {date_text}\n"
        f"Account: {login}\n"
        f"From: {sender_text}\n"
        f"Subject: {envelope.subject}\n"
    )


def truncate(text: str, limit: int = TELEGRAM_MAX_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


class TelegramNotifier:
    """Sink posting messages through the Telegram Bot API ``sendMessage``.

    One ``aiohttp.ClientSession`` is opened on first use and kept until
    :meth:`close`.
    """

    def __init__(
        self,
        token: str,
        *,
        api_url: str = TELEGRAM_API_URL,
        timeout: float = 10.0,
        logger: Logger | None = None,
    ):
        if not token:
            raise ValueError("Telegram bot token is required")
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._session: aiohttp.ClientSession | None = None
        self.logger = logger or get_logger("TelegramNotifier")

    @property
    def url(self) -> str:
        return f"{self._api_url}/bot{self._token}/sendMessage"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout))
        return self._session

    async def send(self, endpoint: int | str, text: str) -> None:
        payload = {"chat_id": endpoint, "text": truncate(text)}
        session = self._get_session()
        try:
            async with session.post(self.url, json=payload) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise DeliveryError(endpoint, f"HTTP {resp.status}: {body}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise DeliveryError(endpoint, exc) from exc
        self.logger.debug("Notification delivered to chat %s", endpoint)

    async def close(self) -> None:
        """Close the HTTP session, if one was opened."""
        if self._session is not None:
            await self._session.close()
            self._session = None


class LogNotifier:
    """Sink writing notifications to the log, used when no bot is configured."""

    def __init__(self, logger: Logger | None = None):
        self.logger = logger or get_logger("LogNotifier")

    async def send(self, endpoint: int | str, text: str) -> None:
        self.logger.info("Notification for %s: %s", endpoint, text.replace("\n", " | "))

    async def close(self) -> None:
        pass


__all__ = [
    "LogNotifier",
    "NotificationSink",
    "TelegramNotifier",
    "format_envelope",
    "truncate",
]
