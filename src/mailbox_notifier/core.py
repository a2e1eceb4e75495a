# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Core orchestration for the mailbox notifier.

:class:`MailboxNotifierCore` ties together the in-memory registry, the
monitor supervisor, the notification sink and the metrics. External callers
(the FastAPI app, tests) drive it through :meth:`handle_command`, which
returns ``{"ok": bool, ...}`` dictionaries.

Example:
    Running the notifier::

        core = MailboxNotifierCore(settings=load_settings())
        await core.start()
        await core.handle_command("addUser", {"id": 1, "chat_id": 4242})
        await core.handle_command("addAccount", {
            "user_id": 1,
            "host": "imap.example.com",
            "login": "me@example.com",
            "password": "secret",
            "poll_interval": 5,
        })
        ...
        await core.stop()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from .config_loader import NotifierSettings
from .imap import MailConnection
from .logger import get_logger
from .models import AccountCreate, AccountUpdate, FilterRuleCreate, validation_message
from .notifier import LogNotifier, TelegramNotifier
from .prometheus import MonitorMetrics
from .store import AccountStore, StoreError
from .supervisor import MonitorSupervisor

if TYPE_CHECKING:
    from logging import Logger

    from .models import Account, FilterRule, User
    from .notifier import NotificationSink


def _require_int(payload: dict[str, Any], key: str) -> int:
    value = payload.get(key)
    if value is None or isinstance(value, bool):
        raise ValueError(f"{key} required")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {key}: {value}") from None


class MailboxNotifierCore:
    """Command surface over the account registry and the running monitors."""

    def __init__(
        self,
        settings: NotifierSettings | None = None,
        *,
        notifier: NotificationSink | None = None,
        connection: MailConnection | None = None,
        metrics: MonitorMetrics | None = None,
        logger: Logger | None = None,
    ):
        self.settings = settings or NotifierSettings()
        self.logger = logger or get_logger()
        self.metrics = metrics or MonitorMetrics()
        self.notifier = notifier or self._build_notifier()
        self.connection = connection or MailConnection(
            timeout=self.settings.connect_timeout,
            fetch_queue_size=self.settings.fetch_queue_size,
            logger=self.logger,
        )
        self.store = AccountStore()
        self.supervisor = MonitorSupervisor(
            self.notifier,
            connection=self.connection,
            mailbox=self.settings.mailbox,
            max_retries=self.settings.max_retries,
            poll_scale=self.settings.poll_scale_seconds,
            metrics=self.metrics,
            logger=self.logger.getChild("monitors"),
        )

    def _build_notifier(self) -> NotificationSink:
        if self.settings.telegram_token:
            return TelegramNotifier(
                self.settings.telegram_token,
                api_url=self.settings.telegram_api_url,
                logger=self.logger.getChild("telegram"),
            )
        self.logger.warning("No Telegram token configured, notifications will only be logged")
        return LogNotifier(self.logger.getChild("notifications"))

    async def start(self) -> None:
        """Launch the monitors of every active account."""
        for account in self.store.list_accounts():
            if account.is_active:
                await self.supervisor.start(account, self.store.get_user(account.user_id))
        self.logger.info("Mailbox notifier started")

    async def stop(self) -> None:
        await self.supervisor.shutdown()
        await self.notifier.close()
        self.logger.info("Mailbox notifier stopped")

    def status(self) -> dict[str, Any]:
        return {
            "ok": True,
            "users": len(self.store.list_users()),
            "accounts": len(self.store.list_accounts()),
            "active_monitors": len(self.supervisor.running_ids()),
        }

    # ------------------------------------------------------------- rendering
    def _account_info(self, account: Account) -> dict[str, Any]:
        return {
            "id": account.id,
            "user_id": account.user_id,
            "host": account.host,
            "port": account.port,
            "login": account.login,
            "poll_interval": account.poll_interval,
            "active": account.is_active,
            "summary": account.summary(),
            "monitor": self.supervisor.status(account.id),
        }

    @staticmethod
    def _user_info(user: User) -> dict[str, Any]:
        return {"id": user.id, "login": user.login, "chat_id": user.chat_id, "patterns": len(user.patterns)}

    @staticmethod
    def _rule_info(rule: FilterRule) -> dict[str, Any]:
        return {**rule.model_dump(), "description": rule.describe()}

    # --------------------------------------------------------------- commands
    async def handle_command(self, cmd: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute an external control command.

        Supported commands:
        - ``addUser``: register a chat user (``id``, ``chat_id``, ``login``)
        - ``addAccount``, ``listAccounts``, ``updateAccount``, ``deleteAccount``
        - ``startAccount``, ``stopAccount``, ``restartAccount``
        - ``addPattern``, ``listPatterns``, ``deletePattern``

        Returns:
            dict: ``ok`` status plus command-specific data. Failures carry
            ``error`` and a ``reason`` of ``invalid``, ``not_found`` or
            ``duplicate``.
        """
        payload = dict(payload or {})
        try:
            return await self._dispatch(cmd, payload)
        except ValidationError as exc:
            return {"ok": False, "error": validation_message(exc), "reason": "invalid"}
        except StoreError as exc:
            return {"ok": False, "error": str(exc), "reason": exc.reason}
        except ValueError as exc:
            return {"ok": False, "error": str(exc), "reason": "invalid"}

    async def _dispatch(self, cmd: str, payload: dict[str, Any]) -> dict[str, Any]:
        match cmd:
            case "addUser":
                user = self.store.add_user(
                    _require_int(payload, "id"),
                    payload.get("chat_id") or _require_int(payload, "id"),
                    str(payload.get("login") or ""),
                )
                return {"ok": True, "user": self._user_info(user)}
            case "addAccount":
                data = AccountCreate.model_validate(payload)
                account = self.store.add_account(data)
                user = self.store.get_user(account.user_id)
                await self.supervisor.start(account, user)
                self.logger.info("Account %s added for user %s", account.login, user.id)
                return {"ok": True, "account": self._account_info(account)}
            case "listAccounts":
                user_id = payload.get("user_id")
                accounts = self.store.list_accounts(int(user_id) if user_id is not None else None)
                return {"ok": True, "accounts": [self._account_info(account) for account in accounts]}
            case "updateAccount":
                account_id = _require_int(payload, "id")
                payload.pop("id")
                changes = AccountUpdate.model_validate(payload)
                account = self.store.update_account(account_id, changes)
                restarted = False
                if account.is_active:
                    restarted = await self.supervisor.restart(account_id)
                return {"ok": True, "account": self._account_info(account), "restarted": restarted}
            case "startAccount":
                account = self.store.get_account(_require_int(payload, "id"))
                await self.supervisor.start(account, self.store.get_user(account.user_id))
                return {"ok": True, "account": self._account_info(account)}
            case "stopAccount":
                account = self.store.get_account(_require_int(payload, "id"))
                await self.supervisor.stop(account.id)
                account.deactivate()
                return {"ok": True, "account": self._account_info(account)}
            case "restartAccount":
                account = self.store.get_account(_require_int(payload, "id"))
                if not await self.supervisor.restart(account.id):
                    await self.supervisor.start(account, self.store.get_user(account.user_id))
                return {"ok": True, "account": self._account_info(account)}
            case "deleteAccount":
                account_id = _require_int(payload, "id")
                await self.supervisor.remove(account_id)
                removed = self.store.delete_account(account_id)
                return {"ok": True, "removed": removed}
            case "addPattern":
                user_id = _require_int(payload, "user_id")
                data = FilterRuleCreate.model_validate({k: v for k, v in payload.items() if k != "user_id"})
                rule = self.store.add_pattern(user_id, data)
                return {"ok": True, "pattern": self._rule_info(rule)}
            case "listPatterns":
                rules = self.store.list_patterns(_require_int(payload, "user_id"))
                return {"ok": True, "patterns": [self._rule_info(rule) for rule in rules]}
            case "deletePattern":
                removed = self.store.delete_pattern(_require_int(payload, "user_id"), _require_int(payload, "id"))
                return {"ok": True, "removed": removed}
            case _:
                return {"ok": False, "error": "unknown command", "reason": "invalid"}


__all__ = ["MailboxNotifierCore"]
