# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""In-memory registry of users, accounts and filter rules.

State lives for the lifetime of the process. Rule lists are replaced rather
than mutated in place, so a monitor that took a snapshot of
``user.patterns`` keeps a consistent view while a rule is added or removed.
"""

from __future__ import annotations

import time

from .models import Account, AccountCreate, AccountUpdate, FilterRule, FilterRuleCreate, User


class StoreError(LookupError):
    """Base class for registry failures."""

    reason = "invalid"


class NotFoundError(StoreError):
    reason = "not_found"


class DuplicateAccountError(StoreError):
    reason = "duplicate"

    def __init__(self, message: str = "You already have account with this email for this host"):
        super().__init__(message)


class AccountStore:
    """Holds users and accounts keyed by id."""

    def __init__(self):
        self._users: dict[int, User] = {}
        self._accounts: dict[int, Account] = {}
        self._last_id = 0

    def next_id(self) -> int:
        """Return a new id derived from the wall clock, strictly increasing."""
        candidate = time.time_ns() // 1_000_000
        if candidate <= self._last_id:
            candidate = self._last_id + 1
        self._last_id = candidate
        return candidate

    # ------------------------------------------------------------------ users
    def add_user(self, user_id: int, chat_id: int | str, login: str = "") -> User:
        """Register a user, or refresh the chat id and login of a known one."""
        user = self._users.get(user_id)
        if user is None:
            user = User(id=user_id, login=login, chat_id=chat_id)
            self._users[user_id] = user
        else:
            user.chat_id = chat_id
            if login:
                user.login = login
        return user

    def get_user(self, user_id: int) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def list_users(self) -> list[User]:
        return list(self._users.values())

    # --------------------------------------------------------------- accounts
    def add_account(self, data: AccountCreate) -> Account:
        self.get_user(data.user_id)
        for existing in self._accounts.values():
            if existing.user_id == data.user_id and existing.host == data.host and existing.login == data.login:
                raise DuplicateAccountError()
        account = Account(
            id=self.next_id(),
            user_id=data.user_id,
            host=data.host,
            port=data.port,
            login=data.login,
            password=data.password,
            poll_interval=data.poll_interval,
        )
        self._accounts[account.id] = account
        return account

    def get_account(self, account_id: int) -> Account:
        account = self._accounts.get(account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found")
        return account

    def list_accounts(self, user_id: int | None = None) -> list[Account]:
        accounts = self._accounts.values()
        if user_id is not None:
            accounts = [account for account in accounts if account.user_id == user_id]
        return sorted(accounts, key=lambda account: account.id)

    def update_account(self, account_id: int, changes: AccountUpdate) -> Account:
        account = self.get_account(account_id)
        if changes.password is not None:
            account.password = changes.password
        if changes.poll_interval is not None:
            account.poll_interval = changes.poll_interval
        return account

    def delete_account(self, account_id: int) -> bool:
        return self._accounts.pop(account_id, None) is not None

    # --------------------------------------------------------------- patterns
    def add_pattern(self, user_id: int, data: FilterRuleCreate) -> FilterRule:
        user = self.get_user(user_id)
        rule = data.to_rule(self.next_id())
        user.patterns = [*user.patterns, rule]
        return rule

    def list_patterns(self, user_id: int) -> list[FilterRule]:
        return list(self.get_user(user_id).patterns)

    def delete_pattern(self, user_id: int, rule_id: int) -> bool:
        user = self.get_user(user_id)
        remaining = [rule for rule in user.patterns if rule.id != rule_id]
        if len(remaining) == len(user.patterns):
            return False
        user.patterns = remaining
        return True


__all__ = ["AccountStore", "DuplicateAccountError", "NotFoundError", "StoreError"]
