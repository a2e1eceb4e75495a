# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Per-account mailbox monitor.

A :class:`MailboxMonitor` owns the polling lifecycle of one account. Each call
to :meth:`MailboxMonitor.run` is one worker run::

    idle -> connecting -> authenticating -> polling -> stopped

The connection is opened once per run and held across poll ticks. Between
ticks the worker races the poll timer against its single-slot control
channel, so a stop or restart request interrupts a pending wait at once.

Retry counters, the message cursor and the connection health flag live on
the monitor object rather than on the run, so they survive the re-runs the
supervisor schedules after a non-terminal failure. A refused dial, a
transport drop during login and a session lost while polling all count
against ``connection_retries``; only a completed poll tick resets it.

Cursor policy:
    The cursor is the highest sequence number already considered. The first
    successful poll sets it to the current message count, so pre-existing
    mail is never reported. Later polls fetch ``cursor+1..count`` and advance
    the cursor to ``count`` once the fetch completed, whether or not any
    message matched. A failed fetch leaves the cursor untouched so the next
    tick covers the same range again.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from .errors import AuthError, ConnectError, DeliveryError, FetchError, SelectError
from .imap import MailConnection
from .logger import get_logger
from .matcher import matches
from .notifier import format_envelope

if TYPE_CHECKING:
    from logging import Logger

    from .imap.client import MailSession
    from .models import Account, User
    from .notifier import NotificationSink
    from .prometheus import MonitorMetrics

DEFAULT_MAX_RETRIES = 3
DEFAULT_MAILBOX = "INBOX"
DEFAULT_POLL_SCALE = 60.0  # seconds per user-visible minute


class MonitorCommand(str, Enum):
    """Commands accepted on the monitor control channel."""

    STOP = "stop"
    RESTART = "restart"


class MonitorPhase(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    POLLING = "polling"
    STOPPED = "stopped"


class RunOutcome(str, Enum):
    """Why a worker run ended.

    Attributes:
        STOPPED: Explicit stop or external deactivation.
        RESTART: Stopped to be relaunched at once by the supervisor.
        RETRY: Non-terminal failure; the account is still active.
        FAILED: Terminal failure; the account has been deactivated.
    """

    STOPPED = "stopped"
    RESTART = "restart"
    RETRY = "retry"
    FAILED = "failed"


@dataclass
class MonitorState:
    """Mutable state owned by one monitor."""

    cursor: int | None = None
    connection_retries: int = 0
    auth_retries: int = 0
    connection_ok: bool = False
    restart_requested: bool = False
    phase: MonitorPhase = MonitorPhase.IDLE


class MailboxMonitor:
    """Polls one account and notifies its user about matching messages."""

    def __init__(
        self,
        account: Account,
        user: User,
        notifier: NotificationSink,
        *,
        connection: MailConnection | None = None,
        mailbox: str = DEFAULT_MAILBOX,
        max_retries: int = DEFAULT_MAX_RETRIES,
        poll_scale: float = DEFAULT_POLL_SCALE,
        metrics: MonitorMetrics | None = None,
        logger: Logger | None = None,
    ):
        self.account = account
        self.user = user
        self.notifier = notifier
        self.logger = logger or get_logger("MailboxMonitor")
        self.connection = connection or MailConnection(logger=self.logger)
        self.mailbox = mailbox
        self.max_retries = max(1, int(max_retries))
        self.poll_scale = float(poll_scale)
        self.metrics = metrics
        self.state = MonitorState()
        self._control: asyncio.Queue[MonitorCommand] = asyncio.Queue(maxsize=1)
        self._stopping = False

    @property
    def stopping(self) -> bool:
        """True once the current run was asked to stop or restart."""
        return self._stopping

    @property
    def poll_seconds(self) -> float:
        return max(0.0, self.account.poll_interval * self.poll_scale)

    def snapshot(self) -> dict[str, Any]:
        data = asdict(self.state)
        data["phase"] = self.state.phase.value
        return data

    # ---------------------------------------------------------------- control
    def request_stop(self, *, restart: bool = False) -> bool:
        """Post a stop (or restart) command to the worker.

        Returns:
            False when a command is already pending; the worker is stopping.
        """
        command = MonitorCommand.RESTART if restart else MonitorCommand.STOP
        try:
            self._control.put_nowait(command)
        except asyncio.QueueFull:
            self.logger.debug("Account %s is already stopping", self.account.id)
            return False
        self._stopping = True
        return True

    def _drain_control(self) -> None:
        while True:
            try:
                self._control.get_nowait()
            except asyncio.QueueEmpty:
                return

    async def _wait_for_tick(self) -> MonitorCommand | None:
        """Wait for the next poll tick or a control command, whichever is first."""
        get_task = asyncio.ensure_future(self._control.get())
        sleep_task = asyncio.ensure_future(asyncio.sleep(self.poll_seconds))
        try:
            await asyncio.wait({get_task, sleep_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleep_task.cancel()
            if not get_task.done():
                get_task.cancel()
        if get_task.done() and not get_task.cancelled():
            return get_task.result()
        return None

    # ------------------------------------------------------------ notification
    async def notify(self, text: str) -> None:
        try:
            await self.notifier.send(self.user.chat_id, text)
        except DeliveryError as exc:
            self.logger.error("Error sending message to user %s: %s", self.user.chat_id, exc)

    # -------------------------------------------------------------------- run
    async def run(self) -> RunOutcome:
        """Execute one worker run until it stops, fails or must be retried."""
        self._drain_control()
        self._stopping = False
        self.state.restart_requested = False
        account = self.account
        self.state.phase = MonitorPhase.CONNECTING
        self.logger.info("Starting monitor for %s on %s", account.login, account.address)

        try:
            session = await self.connection.connect(account.host, account.port)
        except ConnectError as exc:
            return await self._connect_failed(exc)

        async with session:
            self.state.phase = MonitorPhase.AUTHENTICATING
            try:
                await session.authenticate(account.login, account.password)
            except AuthError as exc:
                return await self._auth_failed(exc)
            except ConnectError as exc:
                return await self._connect_failed(exc)
            self.state.auth_retries = 0

            if not self.state.connection_ok:
                self.state.connection_ok = True
                await self.notify(f"Successfully connected to mailbox for {account.login}")

            self.state.phase = MonitorPhase.POLLING
            try:
                outcome = await self._poll_loop(session)
            except SelectError as exc:
                outcome = await self._select_failed(exc)

        self.state.phase = MonitorPhase.STOPPED
        self.logger.info("Stopped monitor for %s (%s)", account.login, outcome.value)
        return outcome

    async def _poll_loop(self, session: MailSession) -> RunOutcome:
        if not await self.poll(session):
            return await self._connect_failed("connection lost")
        while True:
            command = await self._wait_for_tick()
            if command is not None:
                return await self._handle_command(command)
            if not self.account.is_active:
                self.logger.info("Account %s deactivated, stopping", self.account.login)
                self.request_stop()
                continue
            if not await self.poll(session):
                return await self._connect_failed("connection lost")

    async def _handle_command(self, command: MonitorCommand) -> RunOutcome:
        if command is MonitorCommand.RESTART:
            self.state.restart_requested = True
            self.logger.info("Restarting monitor for %s", self.account.login)
            return RunOutcome.RESTART
        await self.notify(f"Stopped fetching emails for {self.account.login}")
        return RunOutcome.STOPPED

    async def poll(self, session: MailSession) -> bool:
        """Run one poll tick.

        Returns:
            False if the connection was lost and the run must end.

        Raises:
            SelectError: If the mailbox can no longer be opened.
        """
        account = self.account
        try:
            status = await session.select_mailbox(self.mailbox)
        except FetchError as exc:
            return await self._fetch_failed(exc)

        count = status.message_count
        cursor = self.state.cursor
        if cursor is None or count < cursor:
            self.logger.debug("Cursor for %s set to %d", account.login, count)
            self.state.cursor = count
            self._poll_done()
            return True
        if count == cursor:
            self._poll_done()
            return True

        rules = list(self.user.patterns)
        stream = session.fetch_envelopes(cursor + 1, count)
        notified = 0
        try:
            async for envelope in stream:
                if matches(envelope, rules):
                    await self.notify(format_envelope(account.login, envelope))
                    notified += 1
                    if self.metrics:
                        self.metrics.inc_notification(account.id)
            await stream.join()
        except FetchError as exc:
            return await self._fetch_failed(exc)
        finally:
            stream.close()

        self.logger.debug(
            "Polled %s: messages %d..%d, %d notified", account.login, cursor + 1, count, notified
        )
        self.state.cursor = count
        self._poll_done()
        return True

    def _poll_done(self) -> None:
        # connection strikes are cleared by a completed tick, not by login
        self.state.connection_retries = 0
        if self.metrics:
            self.metrics.inc_poll(self.account.id)

    # ---------------------------------------------------------------- failures
    async def _connect_failed(self, exc: object) -> RunOutcome:
        """Count a connection strike: refused dial, drop at login or lost session."""
        self.state.connection_retries += 1
        self.state.connection_ok = False
        if self.metrics:
            self.metrics.inc_connect_failure(self.account.id)
        self.logger.warning("Error connecting to imap server %s. %s", self.account.address, exc)
        if self.state.connection_retries >= self.max_retries:
            retries = self.state.connection_retries
            self.state.connection_retries = 0
            return await self._give_up(
                f"Error connecting to imap server: {self.account.address} after {retries} retries"
            )
        self.state.phase = MonitorPhase.STOPPED
        return RunOutcome.RETRY

    async def _auth_failed(self, exc: AuthError) -> RunOutcome:
        self.state.auth_retries += 1
        self.state.connection_ok = False
        if self.metrics:
            self.metrics.inc_auth_failure(self.account.id)
        self.logger.warning("Error authenticating in account %s. %s", self.account.login, exc)
        if self.state.auth_retries >= self.max_retries:
            retries = self.state.auth_retries
            self.state.auth_retries = 0
            return await self._give_up(
                f"Error authenticating in account: {self.account.login} after {retries} retries"
            )
        self.state.phase = MonitorPhase.STOPPED
        return RunOutcome.RETRY

    async def _select_failed(self, exc: SelectError) -> RunOutcome:
        self.logger.error("Error selecting %s for %s. %s", self.mailbox, self.account.login, exc)
        return await self._give_up(f"Error opening mailbox {self.mailbox} for {self.account.login}: {exc}")

    async def _fetch_failed(self, exc: FetchError) -> bool:
        if self.metrics:
            self.metrics.inc_fetch_error(self.account.id)
        self.logger.warning("Error getting emails for %s. %s", self.account.login, exc)
        await self.notify(f"Error getting emails: {exc}")
        if exc.connection_lost:
            self.state.connection_ok = False
            return False
        return True

    async def _give_up(self, message: str) -> RunOutcome:
        self.account.deactivate()
        await self.notify(message)
        self.state.phase = MonitorPhase.STOPPED
        return RunOutcome.FAILED


__all__ = [
    "DEFAULT_MAILBOX",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_POLL_SCALE",
    "MailboxMonitor",
    "MonitorCommand",
    "MonitorPhase",
    "MonitorState",
    "RunOutcome",
]
