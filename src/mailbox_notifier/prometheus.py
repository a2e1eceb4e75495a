# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for the mailbox monitors.

All metrics use the ``mbn_`` prefix and, except the gauge, are labeled by
``account_id``.

Metrics exposed:
    - ``mbn_polls_total``: Completed poll ticks per account.
    - ``mbn_notifications_total``: Match notifications sent per account.
    - ``mbn_fetch_errors_total``: Failed envelope fetches per account.
    - ``mbn_connect_failures_total``: Failed connection attempts per account.
    - ``mbn_auth_failures_total``: Failed logins per account.
    - ``mbn_active_monitors``: Monitors currently running.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest


class MonitorMetrics:
    """Prometheus metrics collector for the mailbox monitors.

    Attributes:
        registry: The Prometheus CollectorRegistry holding all metrics.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.polls = Counter(
            "mbn_polls_total",
            "Total completed poll ticks",
            ["account_id"],
            registry=self.registry,
        )
        self.notifications = Counter(
            "mbn_notifications_total",
            "Total match notifications sent",
            ["account_id"],
            registry=self.registry,
        )
        self.fetch_errors = Counter(
            "mbn_fetch_errors_total",
            "Total failed envelope fetches",
            ["account_id"],
            registry=self.registry,
        )
        self.connect_failures = Counter(
            "mbn_connect_failures_total",
            "Total failed connection attempts",
            ["account_id"],
            registry=self.registry,
        )
        self.auth_failures = Counter(
            "mbn_auth_failures_total",
            "Total failed logins",
            ["account_id"],
            registry=self.registry,
        )
        self.active = Gauge(
            "mbn_active_monitors",
            "Monitors currently running",
            registry=self.registry,
        )

    def inc_poll(self, account_id: int | str) -> None:
        self.polls.labels(account_id=str(account_id)).inc()

    def inc_notification(self, account_id: int | str) -> None:
        self.notifications.labels(account_id=str(account_id)).inc()

    def inc_fetch_error(self, account_id: int | str) -> None:
        self.fetch_errors.labels(account_id=str(account_id)).inc()

    def inc_connect_failure(self, account_id: int | str) -> None:
        self.connect_failures.labels(account_id=str(account_id)).inc()

    def inc_auth_failure(self, account_id: int | str) -> None:
        self.auth_failures.labels(account_id=str(account_id)).inc()

    def set_active(self, value: int) -> None:
        self.active.set(value)

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)
