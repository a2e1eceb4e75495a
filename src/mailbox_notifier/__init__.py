# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Mailbox monitor that notifies chat users about new matching email.

Features:
    - One asyncio worker per monitored IMAP account
    - Timer-driven polling with a sequence-number cursor (no backlog replay)
    - Subject / sender substring filter rules per user
    - Three-strike connect and authentication retry policy
    - Telegram Bot API notifications
    - FastAPI command surface and Prometheus metrics

Example::

    from mailbox_notifier.core import MailboxNotifierCore
    from mailbox_notifier.api import create_app

    core = MailboxNotifierCore()
    app = create_app(core, api_token="secret")
"""

__version__ = "0.1.0"
