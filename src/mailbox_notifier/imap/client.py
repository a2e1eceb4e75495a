# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Async IMAP session wrapper used by the mailbox monitor.

The monitor only needs a narrow surface: open a session, log in, select a
mailbox and fetch the envelopes of a sequence range. Every failure is mapped
onto the :mod:`mailbox_notifier.errors` taxonomy so that the monitor can
decide which retry counter it feeds.

Envelope fetches run in a background task that pushes parsed envelopes into
a bounded queue (:class:`EnvelopeStream`). The consumer iterates the stream
and then calls :meth:`EnvelopeStream.join`, which returns only after the
queue has been drained and the background fetch has finished.

Example::

    connection = MailConnection(timeout=30)
    async with await connection.connect("imap.example.com", 993) as session:
        await session.authenticate("me@example.com", "secret")
        status = await session.select_mailbox("INBOX")
        stream = session.fetch_envelopes(status.message_count - 1, status.message_count)
        async for envelope in stream:
            print(envelope.subject)
        await stream.join()
"""

from __future__ import annotations

import asyncio
import re
import ssl
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from email import policy
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime
from typing import TYPE_CHECKING

import aioimaplib

from ..errors import AuthError, ConnectError, ConnectionLost, FetchError, SelectError
from ..models import MessageEnvelope, Sender

if TYPE_CHECKING:
    from logging import Logger

HEADER_FIELDS = "DATE SUBJECT FROM"
FETCH_PARTS = f"(BODY.PEEK[HEADER.FIELDS ({HEADER_FIELDS})])"
DEFAULT_FETCH_QUEUE_SIZE = 100

_TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, aioimaplib.Abort, aioimaplib.CommandTimeout)
_EXISTS_RE = re.compile(r"(\d+)\s+EXISTS", re.IGNORECASE)
_FETCH_RE = re.compile(rb"^\*?\s*(\d+)\s+FETCH\b", re.IGNORECASE)
_END = object()


@dataclass(frozen=True)
class MailboxStatus:
    """Result of selecting a mailbox."""

    name: str
    message_count: int


def _as_text(line: bytes | bytearray | str) -> str:
    if isinstance(line, (bytes, bytearray)):
        return bytes(line).decode("utf-8", errors="replace")
    return line


def parse_exists(lines: list) -> int | None:
    """Extract the ``EXISTS`` count from a SELECT response."""
    for line in lines:
        match = _EXISTS_RE.search(_as_text(line))
        if match:
            return int(match.group(1))
    return None


def parse_header_block(seq: int, raw: bytes) -> MessageEnvelope:
    """Build an envelope from the DATE/SUBJECT/FROM header block of a message."""
    message = BytesParser(policy=policy.default).parsebytes(raw, headersonly=True)
    subject = str(message.get("Subject", "") or "")
    date = None
    date_header = message.get("Date")
    if date_header:
        try:
            date = parsedate_to_datetime(str(date_header))
        except (TypeError, ValueError):
            date = None
    from_values = [str(value) for value in (message.get_all("From") or [])]
    senders = tuple(
        Sender(mailbox=address, name=name)
        for name, address in getaddresses(from_values)
        if address or name
    )
    return MessageEnvelope(seq=seq, date=date, subject=subject, senders=senders)


def parse_fetch_response(lines: list) -> list[MessageEnvelope]:
    """Turn the lines of a header FETCH response into envelopes.

    aioimaplib returns each ``n FETCH (...)`` line as ``bytes`` followed by the
    header literal as a ``bytearray``. Envelopes are returned in ascending
    sequence order.
    """
    envelopes: list[MessageEnvelope] = []
    pending_seq: int | None = None
    for line in lines:
        if isinstance(line, bytearray):
            if pending_seq is not None:
                envelopes.append(parse_header_block(pending_seq, bytes(line)))
                pending_seq = None
            continue
        raw = line.encode("utf-8", errors="replace") if isinstance(line, str) else line
        match = _FETCH_RE.match(raw)
        if match:
            pending_seq = int(match.group(1))
    envelopes.sort(key=lambda envelope: envelope.seq)
    return envelopes


class EnvelopeStream:
    """Finite, single-use stream of envelopes fed by a background task.

    Iterating the stream starts the producer; :meth:`join` drains whatever is
    left in the queue and waits for the producer, re-raising its failure as
    :class:`FetchError`.
    """

    def __init__(
        self,
        producer: Callable[[], AsyncIterator[MessageEnvelope]],
        *,
        maxsize: int = DEFAULT_FETCH_QUEUE_SIZE,
        name: str = "envelope-fetch",
    ):
        self._producer = producer
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=max(1, maxsize))
        self._name = name
        self._task: asyncio.Task[None] | None = None
        self._drained = False
        self._closed = False

    def _start(self) -> asyncio.Task[None]:
        if self._task is not None:
            raise RuntimeError("EnvelopeStream can only be consumed once")
        self._task = asyncio.create_task(self._produce(), name=self._name)
        return self._task

    async def _produce(self) -> None:
        try:
            async for envelope in self._producer():
                await self._queue.put(envelope)
        finally:
            if not self._closed:
                await self._queue.put(_END)

    def close(self) -> None:
        """Abandon the stream, cancelling the background fetch if still running."""
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def __aiter__(self) -> AsyncIterator[MessageEnvelope]:
        self._start()
        return self._consume()

    async def _consume(self) -> AsyncIterator[MessageEnvelope]:
        while True:
            item = await self._queue.get()
            if item is _END:
                self._drained = True
                return
            yield item

    async def join(self) -> None:
        """Wait for the queue drain and the producer completion.

        Raises:
            FetchError: If the background fetch failed.
        """
        task = self._task or self._start()
        while not self._drained:
            if await self._queue.get() is _END:
                self._drained = True
        try:
            await task
        except FetchError:
            raise
        except _TRANSPORT_ERRORS as exc:
            raise ConnectionLost(f"Connection lost during fetch: {exc}") from exc
        except Exception as exc:
            raise FetchError(str(exc) or exc.__class__.__name__) from exc


class MailSession:
    """One authenticated conversation with an IMAP server.

    Use as an async context manager (or call :meth:`close`) so the server
    side session is released on every exit path.
    """

    def __init__(
        self,
        client: aioimaplib.IMAP4,
        host: str,
        *,
        fetch_queue_size: int = DEFAULT_FETCH_QUEUE_SIZE,
        logger: Logger | None = None,
    ):
        self._client = client
        self.host = host
        self._fetch_queue_size = fetch_queue_size
        self._logger = logger
        self._closed = False

    async def __aenter__(self) -> MailSession:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def authenticate(self, login: str, password: str) -> None:
        try:
            response = await self._client.login(login, password)
        except _TRANSPORT_ERRORS as exc:
            raise ConnectError(self.host, exc) from exc
        if response.result != "OK":
            raise AuthError(login, " ".join(_as_text(line) for line in response.lines).strip() or None)
        if self._logger:
            self._logger.debug("IMAP login OK on %s as %s", self.host, login)

    async def select_mailbox(self, name: str = "INBOX") -> MailboxStatus:
        try:
            response = await self._client.select(name)
        except _TRANSPORT_ERRORS as exc:
            raise ConnectionLost(f"Connection lost selecting {name}: {exc}") from exc
        if response.result != "OK":
            raise SelectError(name, " ".join(_as_text(line) for line in response.lines).strip() or None)
        count = parse_exists(response.lines)
        if count is None:
            raise SelectError(name, "missing EXISTS in SELECT response")
        return MailboxStatus(name=name, message_count=count)

    def fetch_envelopes(self, first: int, last: int) -> EnvelopeStream:
        """Stream the envelopes of sequence numbers ``first..last`` inclusive."""
        if first < 1 or last < first:
            raise ValueError(f"Invalid sequence range {first}:{last}")
        message_set = f"{first}:{last}"

        async def produce() -> AsyncIterator[MessageEnvelope]:
            try:
                response = await self._client.fetch(message_set, FETCH_PARTS)
            except _TRANSPORT_ERRORS as exc:
                raise ConnectionLost(f"Connection lost fetching {message_set}: {exc}") from exc
            if response.result != "OK":
                detail = " ".join(_as_text(line) for line in response.lines).strip()
                raise FetchError(f"FETCH {message_set} failed: {detail or response.result}")
            for envelope in parse_fetch_response(response.lines):
                yield envelope

        return EnvelopeStream(produce, maxsize=self._fetch_queue_size, name=f"fetch-{self.host}-{message_set}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._client.logout()
        except _TRANSPORT_ERRORS as exc:
            if self._logger:
                self._logger.debug("IMAP logout on %s failed: %s", self.host, exc)
        if self._logger:
            self._logger.debug("IMAP connection to %s closed", self.host)


class MailConnection:
    """Factory of :class:`MailSession` objects backed by aioimaplib."""

    def __init__(
        self,
        *,
        use_ssl: bool = True,
        timeout: float = 30.0,
        fetch_queue_size: int = DEFAULT_FETCH_QUEUE_SIZE,
        logger: Logger | None = None,
    ):
        self.use_ssl = use_ssl
        self.timeout = timeout
        self.fetch_queue_size = fetch_queue_size
        self._logger = logger

    async def connect(self, host: str, port: int) -> MailSession:
        """Open a session and wait for the server greeting.

        Raises:
            ConnectError: If the server cannot be reached in time.
        """
        address = f"{host}:{port}"
        try:
            if self.use_ssl:
                client = aioimaplib.IMAP4_SSL(
                    host=host, port=port, timeout=self.timeout, ssl_context=ssl.create_default_context()
                )
            else:
                client = aioimaplib.IMAP4(host=host, port=port, timeout=self.timeout)
            await asyncio.wait_for(client.wait_hello_from_server(), timeout=self.timeout)
        except _TRANSPORT_ERRORS as exc:
            raise ConnectError(address, exc) from exc
        if self._logger:
            self._logger.debug("IMAP connected to %s", address)
        return MailSession(client, address, fetch_queue_size=self.fetch_queue_size, logger=self._logger)


__all__ = [
    "EnvelopeStream",
    "FETCH_PARTS",
    "MailConnection",
    "MailSession",
    "MailboxStatus",
    "parse_exists",
    "parse_fetch_response",
    "parse_header_block",
]
