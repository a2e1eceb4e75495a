# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Settings loader for the mailbox notifier.

Settings come from an INI file with environment variables as fallbacks.

Example:
    Configuration file format (config.ini)::

        [server]
        host = 0.0.0.0
        port = 8000
        api_token = my-secret-token

        [telegram]
        token = 123456:ABC-DEF
        api_url = https://api.telegram.org

        [monitor]
        mailbox = INBOX
        max_retries = 3
        poll_scale_seconds = 60
        fetch_queue_size = 100
        connect_timeout = 30

        [logging]
        level = INFO

Environment variables (all prefixed with MBN_):
    MBN_CONFIG - Path to config.ini file (default: config.ini)
    MBN_HOST, MBN_PORT, MBN_API_TOKEN
    MBN_TELEGRAM_TOKEN, MBN_TELEGRAM_API_URL
    MBN_MAILBOX, MBN_MAX_RETRIES, MBN_POLL_SCALE_SECONDS,
    MBN_FETCH_QUEUE_SIZE, MBN_CONNECT_TIMEOUT
    MBN_LOG_LEVEL

Values in the file win over environment variables.
"""

from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from pathlib import Path

from .logger import get_logger
from .notifier import TELEGRAM_API_URL

ENV_PREFIX = "MBN_"

logger = get_logger("ConfigLoader")


@dataclass
class NotifierSettings:
    """Runtime settings of the notifier service.

    Attributes:
        http_host: Interface the API server binds to.
        http_port: Port the API server listens on.
        api_token: Value expected in the ``X-API-Token`` header, or None.
        telegram_token: Bot token; notifications are only logged without it.
        telegram_api_url: Base URL of the Telegram Bot API.
        mailbox: Mailbox every monitor selects.
        max_retries: Consecutive connect/auth failures before giving up.
        poll_scale_seconds: Seconds per minute of account poll interval.
        fetch_queue_size: Bound of the envelope queue of one fetch.
        connect_timeout: IMAP connect and command timeout in seconds.
        log_level: Root logging level.
    """

    http_host: str = "0.0.0.0"
    http_port: int = 8000
    api_token: str | None = None

    telegram_token: str | None = None
    telegram_api_url: str = TELEGRAM_API_URL

    mailbox: str = "INBOX"
    max_retries: int = 3
    poll_scale_seconds: float = 60.0
    fetch_queue_size: int = 100
    connect_timeout: float = 30.0

    log_level: str = "INFO"


def load_settings(config_path: str | Path | None = None) -> NotifierSettings:
    """Load settings from ``config_path`` (or ``MBN_CONFIG``) and the environment.

    A missing file is not an error; every value then comes from the
    environment or the defaults. Invalid numbers log a warning and fall back
    to the default.
    """
    path = Path(config_path or os.getenv(f"{ENV_PREFIX}CONFIG", "config.ini"))
    parser = configparser.ConfigParser()
    if path.exists():
        parser.read(path)
    else:
        logger.info("Config file %s not found, using environment and defaults", path)

    def get(section: str, option: str, env: str, default: str | None = None) -> str | None:
        if parser.has_option(section, option):
            value = parser.get(section, option).strip()
        else:
            value = os.getenv(f"{ENV_PREFIX}{env}", "").strip()
        return value or default

    def get_int(section: str, option: str, env: str, default: int) -> int:
        value = get(section, option, env)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            logger.warning("Invalid int for %s.%s, using default %s", section, option, default)
            return default

    def get_float(section: str, option: str, env: str, default: float) -> float:
        value = get(section, option, env)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            logger.warning("Invalid float for %s.%s, using default %s", section, option, default)
            return default

    defaults = NotifierSettings()
    return NotifierSettings(
        http_host=get("server", "host", "HOST", defaults.http_host),
        http_port=get_int("server", "port", "PORT", defaults.http_port),
        api_token=get("server", "api_token", "API_TOKEN"),
        telegram_token=get("telegram", "token", "TELEGRAM_TOKEN"),
        telegram_api_url=get("telegram", "api_url", "TELEGRAM_API_URL", defaults.telegram_api_url),
        mailbox=get("monitor", "mailbox", "MAILBOX", defaults.mailbox),
        max_retries=get_int("monitor", "max_retries", "MAX_RETRIES", defaults.max_retries),
        poll_scale_seconds=get_float(
            "monitor", "poll_scale_seconds", "POLL_SCALE_SECONDS", defaults.poll_scale_seconds
        ),
        fetch_queue_size=get_int("monitor", "fetch_queue_size", "FETCH_QUEUE_SIZE", defaults.fetch_queue_size),
        connect_timeout=get_float("monitor", "connect_timeout", "CONNECT_TIMEOUT", defaults.connect_timeout),
        log_level=(get("logging", "level", "LOG_LEVEL", defaults.log_level) or defaults.log_level).upper(),
    )


__all__ = ["ENV_PREFIX", "NotifierSettings", "load_settings"]
