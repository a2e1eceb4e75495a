# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Data models for monitored accounts, users and filter rules.

Pydantic models validate what the command surface receives; the envelope
types are plain frozen dataclasses since they are produced by the IMAP layer
and never validated from user input.

Models:
    - Account: one monitored mailbox, with a lock-guarded ``active`` flag
    - AccountCreate / AccountUpdate: validated input for the command surface
    - FilterRule / FilterRuleCreate: subject or sender substring rules
    - User: notification endpoint and its rule list
    - Sender / MessageEnvelope: read-only envelope metadata
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator, model_validator

DEFAULT_IMAP_PORT = 993

_HOSTNAME_RE = re.compile(
    r"(([a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9\-]*[a-zA-Z0-9])\.)*"
    r"([A-Za-z0-9]|[A-Za-z0-9][A-Za-z0-9\-]*[A-Za-z0-9])"
)
_IPV4_RE = re.compile(
    r"(([0-9]|[1-9][0-9]|1[0-9]{2}|2[0-4][0-9]|25[0-5])\.){3}"
    r"([0-9]|[1-9][0-9]|1[0-9]{2}|2[0-4][0-9]|25[0-5])"
)
_LOGIN_RE = re.compile(r"^[^@\s]+@[^@\s]+$")
_LOOPBACK_HOSTS = {"localhost", "127.0.0.1"}


def validation_message(exc: ValidationError) -> str:
    """Return the first human readable message of a pydantic error."""
    errors = exc.errors()
    if not errors:
        return str(exc)
    message = str(errors[0].get("msg", ""))
    prefix = "Value error, "
    if message.startswith(prefix):
        message = message[len(prefix):]
    return message


def parse_poll_interval(value: Any) -> int:
    """Coerce a user-supplied update frequency (minutes) to a positive int."""
    try:
        minutes = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value for update frequency {value}") from None
    if minutes <= 0:
        raise ValueError(f"Invalid value for update frequency {value}")
    return minutes


def split_host(value: str, default_port: int = DEFAULT_IMAP_PORT) -> tuple[str, int]:
    """Split ``host[:port]`` and validate both parts.

    Raises:
        ValueError: For a non numeric port, a malformed hostname, a loopback
            host or a host without any dot.
    """
    raw = value.strip()
    host, _, port_text = raw.partition(":")
    port = default_port
    if port_text:
        try:
            port = int(port_text)
        except ValueError:
            raise ValueError(f"Invalid imap port in host {raw}") from None
        if not 0 < port < 65536:
            raise ValueError(f"Invalid imap port in host {raw}")
    valid_name = bool(_HOSTNAME_RE.fullmatch(host) or _IPV4_RE.fullmatch(host))
    if not valid_name or host in _LOOPBACK_HOSTS or "." not in host:
        raise ValueError(f"Invalid hostname for imap server {raw}")
    return host, port


class Account(BaseModel):
    """A monitored mailbox.

    All fields except ``active`` belong to the command surface. ``active`` is
    shared with the account's monitor, so it is only changed through
    :meth:`activate` / :meth:`deactivate`, which serialize on a lock and
    report whether the value actually changed.
    """

    id: int
    user_id: int
    host: str
    port: int = DEFAULT_IMAP_PORT
    login: str
    password: str = Field(repr=False)
    poll_interval: Annotated[int, Field(gt=0, description="Minutes between polls")]
    active: bool = False

    _lock: threading.Lock = PrivateAttr(default_factory=threading.Lock)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self.active

    def activate(self) -> bool:
        """Set ``active`` to True. Returns False if it already was."""
        with self._lock:
            changed = not self.active
            self.active = True
            return changed

    def deactivate(self) -> bool:
        """Set ``active`` to False. Returns False if it already was."""
        with self._lock:
            changed = self.active
            self.active = False
            return changed

    def summary(self) -> str:
        state = "true" if self.is_active else "false"
        return f"Login: {self.login}, timeout: {self.poll_interval} min, active: {state}"


class AccountCreate(BaseModel):
    """Payload accepted by ``addAccount``.

    ``host`` may carry the port (``imap.example.com:993``); an explicit
    ``port`` wins over the one embedded in the host.
    """

    model_config = ConfigDict(extra="forbid")

    user_id: int
    host: str
    port: int | None = None
    login: str
    password: str = Field(min_length=1, repr=False)
    poll_interval: int

    @field_validator("login")
    @classmethod
    def login_is_address(cls, v: str) -> str:
        v = v.strip()
        if not _LOGIN_RE.match(v):
            raise ValueError("Wrong format for login, please set <login>@<domain>")
        return v

    @field_validator("poll_interval", mode="before")
    @classmethod
    def poll_interval_positive(cls, v: Any) -> int:
        return parse_poll_interval(v)

    @model_validator(mode="after")
    def split_host_and_port(self) -> AccountCreate:
        host, port = split_host(self.host)
        self.host = host
        if self.port is None:
            self.port = port
        return self


class AccountUpdate(BaseModel):
    """Fields that may change on an existing account."""

    model_config = ConfigDict(extra="forbid")

    password: str | None = Field(default=None, min_length=1, repr=False)
    poll_interval: int | None = None

    @field_validator("poll_interval", mode="before")
    @classmethod
    def poll_interval_positive(cls, v: Any) -> int | None:
        if v is None:
            return None
        return parse_poll_interval(v)


class FilterRule(BaseModel):
    """A notification rule; any populated field that matches is enough."""

    id: int
    subject: str = ""
    from_email: str = ""
    from_name: str = ""

    @field_validator("subject", "from_email", "from_name")
    @classmethod
    def lower_case(cls, v: str) -> str:
        return v.strip().lower()

    def describe(self) -> str:
        parts = []
        if self.subject:
            parts.append(f"Subject: {self.subject}")
        if self.from_email:
            parts.append(f"From email: {self.from_email}")
        if self.from_name:
            parts.append(f"From person name: {self.from_name}")
        return ", ".join(parts) or "Any message"


RuleKind = Literal["subject", "from_email", "from_name"]


class FilterRuleCreate(BaseModel):
    """Payload accepted by ``addPattern``: one field, one value."""

    model_config = ConfigDict(extra="forbid")

    kind: RuleKind
    value: str = Field(min_length=1)

    @model_validator(mode="after")
    def email_has_at(self) -> FilterRuleCreate:
        if self.kind == "from_email" and "@" not in self.value:
            raise ValueError("Email address is not valid")
        return self

    def to_rule(self, rule_id: int) -> FilterRule:
        return FilterRule(id=rule_id, **{self.kind: self.value})


class User(BaseModel):
    """A chat user receiving notifications for its accounts."""

    id: int
    login: str = ""
    chat_id: int | str
    patterns: list[FilterRule] = Field(default_factory=list)


@dataclass(frozen=True)
class Sender:
    """One envelope sender: mailbox address and display name."""

    mailbox: str
    name: str = ""


@dataclass(frozen=True)
class MessageEnvelope:
    """Envelope metadata of one message, as returned by a fetch."""

    seq: int
    date: datetime | None = None
    subject: str = ""
    senders: tuple[Sender, ...] = field(default_factory=tuple)


__all__ = [
    "Account",
    "AccountCreate",
    "AccountUpdate",
    "DEFAULT_IMAP_PORT",
    "FilterRule",
    "FilterRuleCreate",
    "MessageEnvelope",
    "RuleKind",
    "Sender",
    "User",
    "parse_poll_interval",
    "split_host",
    "validation_message",
]
