"""Tests for notification formatting and delivery."""

import types
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from mailbox_notifier.errors import DeliveryError
from mailbox_notifier.models import MessageEnvelope, Sender
from mailbox_notifier.notifier import LogNotifier, TelegramNotifier, format_envelope, truncate


def mock_client_session(response=None, post_error=None):
    """Patch ``aiohttp.ClientSession`` so that ``post`` yields ``response``."""
    session = MagicMock(closed=False)
    session.close = AsyncMock()
    if post_error is not None:
        session.post = MagicMock(side_effect=post_error)
    else:
        session.post = MagicMock(return_value=AsyncMock(
            __aenter__=AsyncMock(return_value=response),
            __aexit__=AsyncMock(return_value=None),
        ))
    patcher = patch("aiohttp.ClientSession", return_value=session)
    return patcher, session


class TestFormatEnvelope:
    def test_full_envelope(self):
        envelope = MessageEnvelope(
            seq=1,
            date=datetime(2006, 1, 2, 15, 4, 5),
            subject="Quarterly numbers",
            senders=(Sender(mailbox="cfo@corp.test", name="Jane Doe"), Sender(mailbox="x@corp.test")),
        )

        assert format_envelope("me@corp.test", envelope) == (
            "At: 2006-01-02 15:04:05\n"
            "Account: me@corp.test\n"
            "From: Jane Doe\n"
            "Subject: Quarterly numbers\n"
        )

    def test_falls_back_to_address_and_placeholder_date(self):
        envelope = MessageEnvelope(seq=1, subject="hi", senders=(Sender(mailbox="bot@corp.test"),))

        text = format_envelope("me@corp.test", envelope)

        assert text.startswith("At: -\n")
        assert "From: bot@corp.test\n" in text

    def test_without_senders(self):
        assert "From: \n" in format_envelope("me@corp.test", MessageEnvelope(seq=1))


def test_truncate():
    assert truncate("short", 10) == "short"
    assert truncate("x" * 20, 10) == "xxxxxxx..."
    assert len(truncate("y" * 5000)) == 4096


class TestTelegramNotifier:
    def test_requires_token(self):
        with pytest.raises(ValueError):
            TelegramNotifier("")

    def test_url(self):
        notifier = TelegramNotifier("123:ABC", api_url="https://bot.example.com/")

        assert notifier.url == "https://bot.example.com/bot123:ABC/sendMessage"

    @pytest.mark.asyncio
    async def test_send_posts_chat_id_and_text(self):
        response = AsyncMock(status=200)
        patcher, session = mock_client_session(response)

        with patcher:
            await TelegramNotifier("123:ABC").send(4242, "hello")

        session.post.assert_called_once()
        args, kwargs = session.post.call_args
        assert args[0] == "https://api.telegram.org/bot123:ABC/sendMessage"
        assert kwargs["json"] == {"chat_id": 4242, "text": "hello"}

    @pytest.mark.asyncio
    async def test_send_truncates_long_messages(self):
        patcher, session = mock_client_session(AsyncMock(status=200))

        with patcher:
            await TelegramNotifier("123:ABC").send(1, "z" * 5000)

        assert len(session.post.call_args[1]["json"]["text"]) == 4096

    @pytest.mark.asyncio
    async def test_http_error_raises_delivery_error(self):
        response = AsyncMock(status=403)
        response.text = AsyncMock(return_value="Forbidden: bot was blocked by the user")
        patcher, _ = mock_client_session(response)

        with patcher, pytest.raises(DeliveryError) as excinfo:
            await TelegramNotifier("123:ABC").send(4242, "hello")

        assert excinfo.value.endpoint == 4242
        assert "HTTP 403" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_client_error_raises_delivery_error(self):
        patcher, _ = mock_client_session(post_error=aiohttp.ClientConnectionError("unreachable"))

        with patcher, pytest.raises(DeliveryError, match="unreachable"):
            await TelegramNotifier("123:ABC").send(4242, "hello")

    @pytest.mark.asyncio
    async def test_session_is_shared_until_closed(self):
        patcher, session = mock_client_session(AsyncMock(status=200))
        notifier = TelegramNotifier("123:ABC")

        with patcher as factory:
            await notifier.send(1, "first")
            await notifier.send(2, "second")
            await notifier.close()

        factory.assert_called_once()
        assert session.post.call_count == 2
        session.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_without_session_is_noop(self):
        await TelegramNotifier("123:ABC").close()


@pytest.mark.asyncio
async def test_log_notifier_writes_single_line():
    lines = []
    logger = types.SimpleNamespace(info=lambda msg, *args: lines.append(msg % args))

    await LogNotifier(logger).send(7, "At: -\nSubject: hi\n")

    assert lines == ["Notification for 7: At: - | Subject: hi | "]
