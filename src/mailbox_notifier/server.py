# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""ASGI application entry point for uvicorn.

Usage:
    uvicorn mailbox_notifier.server:app --host 0.0.0.0 --port 8000

Environment variables:
    MBN_CONFIG: Path to the INI configuration file (default: config.ini)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import create_app
from .config_loader import NotifierSettings, load_settings
from .core import MailboxNotifierCore
from .logger import configure_logging


def build_app(settings: NotifierSettings) -> FastAPI:
    """Create the core service and the application serving it."""
    core = MailboxNotifierCore(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        await core.start()
        yield
        await core.stop()

    return create_app(core, api_token=settings.api_token, lifespan=lifespan)


_settings = load_settings()
configure_logging(_settings.log_level)

app = build_app(_settings)
