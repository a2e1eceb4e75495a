# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""IMAP session layer for mailbox monitoring."""

from .client import EnvelopeStream, MailboxStatus, MailConnection, MailSession

__all__ = ["EnvelopeStream", "MailConnection", "MailSession", "MailboxStatus"]
