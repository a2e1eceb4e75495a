# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Registry of running mailbox monitors.

The supervisor keeps one :class:`MailboxMonitor` per account id and at most
one worker task per monitor. It is the only place that spawns workers:

- ``start`` activates the account and launches a worker unless a live one
  runs; a worker already told to stop is awaited first.
- ``restart`` signals the running worker with the restart flag, waits for it
  to exit and launches a replacement.
- ``stop`` deactivates the account and signals the worker to stop.
- ``remove`` stops the worker if needed and forgets the monitor.

When a run ends with :attr:`RunOutcome.RETRY` the supervisor re-launches the
monitor after one poll interval, as long as the account is still active.
"""

from __future__ import annotations

import asyncio
from functools import partial
from typing import TYPE_CHECKING, Any

from .logger import get_logger
from .monitor import DEFAULT_MAILBOX, DEFAULT_MAX_RETRIES, DEFAULT_POLL_SCALE, MailboxMonitor, RunOutcome

if TYPE_CHECKING:
    from logging import Logger

    from .imap import MailConnection
    from .models import Account, User
    from .notifier import NotificationSink
    from .prometheus import MonitorMetrics


class MonitorSupervisor:
    """Starts, restarts and stops the per-account monitors."""

    def __init__(
        self,
        notifier: NotificationSink,
        *,
        connection: MailConnection | None = None,
        mailbox: str = DEFAULT_MAILBOX,
        max_retries: int = DEFAULT_MAX_RETRIES,
        poll_scale: float = DEFAULT_POLL_SCALE,
        metrics: MonitorMetrics | None = None,
        logger: Logger | None = None,
    ):
        self.notifier = notifier
        self.connection = connection
        self.mailbox = mailbox
        self.max_retries = max_retries
        self.poll_scale = poll_scale
        self.metrics = metrics
        self.logger = logger or get_logger("MonitorSupervisor")
        self._monitors: dict[int, MailboxMonitor] = {}
        self._tasks: dict[int, asyncio.Task[RunOutcome]] = {}
        self._redials: dict[int, asyncio.Task[None]] = {}
        self._retiring: set[asyncio.Task[RunOutcome]] = set()
        self._closing = False

    # ---------------------------------------------------------------- queries
    def get(self, account_id: int) -> MailboxMonitor | None:
        return self._monitors.get(account_id)

    def is_running(self, account_id: int) -> bool:
        task = self._tasks.get(account_id)
        return task is not None and not task.done()

    def running_ids(self) -> list[int]:
        return sorted(account_id for account_id in self._tasks if self.is_running(account_id))

    def status(self, account_id: int) -> dict[str, Any] | None:
        monitor = self._monitors.get(account_id)
        if monitor is None:
            return None
        data = monitor.snapshot()
        data["running"] = self.is_running(account_id)
        data["retry_pending"] = account_id in self._redials
        return data

    # -------------------------------------------------------------- lifecycle
    def _create_monitor(self, account: Account, user: User) -> MailboxMonitor:
        return MailboxMonitor(
            account,
            user,
            self.notifier,
            connection=self.connection,
            mailbox=self.mailbox,
            max_retries=self.max_retries,
            poll_scale=self.poll_scale,
            metrics=self.metrics,
            logger=self.logger.getChild(str(account.id)),
        )

    def _spawn(self, monitor: MailboxMonitor) -> None:
        account_id = monitor.account.id
        task = asyncio.create_task(monitor.run(), name=f"mailbox-monitor-{account_id}")
        self._tasks[account_id] = task
        task.add_done_callback(partial(self._on_worker_done, account_id))
        self._update_gauge()

    def _update_gauge(self) -> None:
        if self.metrics:
            self.metrics.set_active(len(self.running_ids()))

    def _cancel_redial(self, account_id: int) -> None:
        redial = self._redials.pop(account_id, None)
        if redial is not None and not redial.done():
            redial.cancel()

    def _on_worker_done(self, account_id: int, task: asyncio.Task[RunOutcome]) -> None:
        if self._tasks.get(account_id) is task:
            del self._tasks[account_id]
        self._retiring.discard(task)
        self._update_gauge()
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("Monitor for account %s crashed: %s", account_id, exc, exc_info=exc)
            outcome = RunOutcome.RETRY
        else:
            outcome = task.result()
        if outcome is not RunOutcome.RETRY or self._closing:
            return
        monitor = self._monitors.get(account_id)
        if monitor is None or not monitor.account.is_active or account_id in self._redials:
            return
        self.logger.info("Retrying account %s in %.0f seconds", account_id, monitor.poll_seconds)
        self._redials[account_id] = asyncio.create_task(
            self._redial_later(account_id, monitor.poll_seconds), name=f"mailbox-redial-{account_id}"
        )

    async def _redial_later(self, account_id: int, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        finally:
            if self._redials.get(account_id) is asyncio.current_task():
                del self._redials[account_id]
        monitor = self._monitors.get(account_id)
        if monitor is None or self._closing or self.is_running(account_id):
            return
        if monitor.account.is_active:
            self._spawn(monitor)

    async def start(self, account: Account, user: User) -> MailboxMonitor:
        """Activate ``account`` and launch its worker if none is running.

        A worker that was already told to stop is awaited and replaced.
        """
        monitor = self._monitors.get(account.id)
        if monitor is None:
            monitor = self._create_monitor(account, user)
            self._monitors[account.id] = monitor
        else:
            monitor.account = account
            monitor.user = user
        account.activate()
        self._cancel_redial(account.id)
        task = self._tasks.get(account.id)
        if task is not None and not task.done():
            if not monitor.stopping:
                return monitor
            await asyncio.wait({task})
            if self._monitors.get(account.id) is not monitor:
                return monitor
            self._cancel_redial(account.id)
        if not self.is_running(account.id):
            self._spawn(monitor)
        return monitor

    async def restart(self, account_id: int) -> bool:
        """Replace the running worker of ``account_id`` with a fresh one.

        Returns:
            False if the account has no monitor.
        """
        monitor = self._monitors.get(account_id)
        if monitor is None:
            return False
        self._cancel_redial(account_id)
        task = self._tasks.get(account_id)
        if task is not None and not task.done():
            monitor.request_stop(restart=True)
            await asyncio.wait({task})
        if self._monitors.get(account_id) is not monitor:
            return False
        monitor.account.activate()
        if not self.is_running(account_id):
            self._spawn(monitor)
        return True

    async def stop(self, account_id: int) -> bool:
        """Deactivate ``account_id`` and signal its worker to stop.

        Returns:
            False if the account has no monitor.
        """
        monitor = self._monitors.get(account_id)
        if monitor is None:
            return False
        self._cancel_redial(account_id)
        monitor.account.deactivate()
        if self.is_running(account_id):
            monitor.request_stop()
        return True

    async def remove(self, account_id: int) -> bool:
        """Stop the worker of ``account_id`` if needed and forget its monitor."""
        monitor = self._monitors.pop(account_id, None)
        if monitor is None:
            return False
        self._cancel_redial(account_id)
        monitor.account.deactivate()
        task = self._tasks.pop(account_id, None)
        if task is not None and not task.done():
            monitor.request_stop()
            self._retiring.add(task)
        self._update_gauge()
        return True

    async def shutdown(self) -> None:
        """Cancel every worker and pending re-dial, then wait for them."""
        self._closing = True
        pending: list[asyncio.Task[Any]] = [*self._tasks.values(), *self._redials.values(), *self._retiring]
        for task in pending:
            if not task.done():
                task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
        self._redials.clear()
        self._retiring.clear()
        self._update_gauge()
        self.logger.info("All mailbox monitors stopped")


__all__ = ["MonitorSupervisor"]
