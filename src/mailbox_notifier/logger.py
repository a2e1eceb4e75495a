# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Logging utilities for the mailbox notifier.

Modules obtain named loggers through :func:`get_logger`. Handlers and format
are installed once by :func:`configure_logging` from the entry point, so
library code never adds handlers of its own.

Example:
    Typical usage in a module::

        from mailbox_notifier.logger import get_logger

        logger = get_logger("MailboxMonitor")
        logger.info("Polling %s", account.login)
"""

import logging

DEFAULT_LOGGER_NAME = "MailboxNotifier"
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """Retrieve a logger instance bound to ``name``.

    Args:
        name: The logger name. Defaults to "MailboxNotifier".

    Returns:
        A ``logging.Logger`` instance. No handlers are attached here.
    """
    return logging.getLogger(name)


def configure_logging(level: str = "INFO") -> None:
    """Install the root handler used by the service entry points.

    Unknown level names fall back to INFO. ``force=True`` replaces handlers
    installed earlier (for example by uvicorn) to avoid duplicate lines.
    """
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        force=True,
    )
