# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Filter rule evaluation against message envelopes."""

from __future__ import annotations

from collections.abc import Iterable

from .models import FilterRule, MessageEnvelope


def rule_matches(envelope: MessageEnvelope, rule: FilterRule) -> bool:
    """Return True if any populated field of ``rule`` matches ``envelope``.

    Matching is a case-insensitive substring test on both sides. Sender
    fields are checked against every sender of the envelope.
    """
    subject = rule.subject.lower()
    if subject and subject in (envelope.subject or "").lower():
        return True

    from_email = rule.from_email.lower()
    from_name = rule.from_name.lower()
    if not (from_email or from_name):
        return False
    for sender in envelope.senders:
        if from_email and from_email in (sender.mailbox or "").lower():
            return True
        if from_name and from_name in (sender.name or "").lower():
            return True
    return False


def matches(envelope: MessageEnvelope, rules: Iterable[FilterRule]) -> bool:
    """Return True if ``envelope`` deserves a notification.

    An empty rule set lets every message through.
    """
    rules = list(rules)
    if not rules:
        return True
    return any(rule_matches(envelope, rule) for rule in rules)


__all__ = ["matches", "rule_matches"]
