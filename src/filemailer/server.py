# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""ASGI application entry point for uvicorn.

Wires the delivery pipeline from :class:`~filemailer.config.Settings` and
hands it to :func:`filemailer.api.create_app`.

Usage:
    uvicorn --factory filemailer.server:build_app --host 0.0.0.0 --port 8080

Environment variables:
    FM_CONFIG: Path to config.ini (default: config.ini)
    DB_PATH: Path to SQLite database (default: /data/filemailer.db)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import create_app
from .config import Settings, load_settings
from .credentials import CredentialResolver
from .fetcher import URLFetcher
from .joblog import JobLog
from .logger import get_logger
from .mailer import Mailer
from .persistence import Persistence
from .pipeline import DeliveryPipeline
from .prometheus import DeliveryMetrics

logger = get_logger("Server")


def build_pipeline(settings: Settings, persistence: Persistence | None = None) -> DeliveryPipeline:
    """Assemble a :class:`DeliveryPipeline` from settings."""
    persistence = persistence or Persistence(settings.db_path)
    return DeliveryPipeline(
        CredentialResolver(persistence),
        URLFetcher(max_size=settings.max_file_size),
        Mailer.from_settings(settings),
        JobLog(settings.job_log_path),
        scratch_dir=settings.scratch_dir,
        metrics=DeliveryMetrics(),
    )


def build_app(settings: Settings | None = None) -> FastAPI:
    """Create the configured application.

    The database schema is created at startup and the job log is closed at
    shutdown.
    """
    settings = settings or load_settings()
    persistence = Persistence(settings.db_path)
    pipeline = build_pipeline(settings, persistence)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler - prepares storage and closes the job log."""
        await persistence.init_db()
        settings.warn_incomplete_smtp()
        logger.info("HTTP service ready (db=%s, job log=%s)", settings.db_path, settings.job_log_path)
        yield
        pipeline.job_log.close()

    return create_app(pipeline, api_token=settings.api_token, lifespan=lifespan)
