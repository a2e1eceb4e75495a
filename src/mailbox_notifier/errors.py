# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Exception hierarchy for mailbox monitoring.

The classes separate the failures that feed the monitor's retry counters
(:class:`ConnectError`, :class:`AuthError`) from the ones that are reported
and survived (:class:`FetchError`) and the ones that end a worker run
(:class:`SelectError`, :class:`ConnectionLost`). Notification transport
failures (:class:`DeliveryError`) are only logged.
"""

from __future__ import annotations


class MailboxError(Exception):
    """Base class for all mailbox-domain errors."""

    code = "mailbox_error"


class ConnectError(MailboxError):
    """The mail host could not be reached or refused the session."""

    code = "connect_failed"

    def __init__(self, host: str, reason: object = None):
        self.host = host
        self.reason = reason
        message = f"Cannot connect to {host}"
        if reason is not None:
            message = f"{message}: {reason}"
        super().__init__(message)


class AuthError(MailboxError):
    """The server rejected the login credentials."""

    code = "auth_failed"

    def __init__(self, login: str, reason: object = None):
        self.login = login
        self.reason = reason
        message = f"Authentication failed for {login}"
        if reason is not None:
            message = f"{message}: {reason}"
        super().__init__(message)


class SelectError(MailboxError):
    """The mailbox could not be opened after a successful login."""

    code = "select_failed"

    def __init__(self, mailbox: str, reason: object = None):
        self.mailbox = mailbox
        self.reason = reason
        message = f"Cannot select mailbox {mailbox}"
        if reason is not None:
            message = f"{message}: {reason}"
        super().__init__(message)


class FetchError(MailboxError):
    """Fetching a range of envelopes failed.

    ``connection_lost`` is set when the session itself is gone, in which case
    the monitor ends its run so that a fresh connection is dialled.
    """

    code = "fetch_failed"

    def __init__(self, message: str, *, connection_lost: bool = False):
        self.connection_lost = connection_lost
        super().__init__(message)


class ConnectionLost(FetchError):
    """The session dropped while talking to the server."""

    code = "connection_lost"

    def __init__(self, message: str):
        super().__init__(message, connection_lost=True)


class DeliveryError(Exception):
    """A notification could not be delivered to the user endpoint."""

    code = "delivery_failed"

    def __init__(self, endpoint: object, reason: object = None):
        self.endpoint = endpoint
        self.reason = reason
        message = f"Cannot deliver notification to {endpoint}"
        if reason is not None:
            message = f"{message}: {reason}"
        super().__init__(message)


__all__ = [
    "AuthError",
    "ConnectError",
    "ConnectionLost",
    "DeliveryError",
    "FetchError",
    "MailboxError",
    "SelectError",
]
