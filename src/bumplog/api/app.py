# src/bumplog/api/app.py
"""
FastAPI application wiring.

This file creates the `FastAPI` instance and owns the monitoring controller's
lifetime: it is built (and the realtime feed opened) on startup and torn down on
shutdown. Endpoint logic lives in `bumplog.api.routes`.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from bumplog.config.settings import Settings, get_settings
from bumplog.core.logging import configure_logging
from bumplog.geolocation.browser import BrowserGeolocationSource
from bumplog.geolocation.select import select_source
from bumplog.monitoring.controller import MonitoringController
from bumplog.monitoring.runtime import build_controller

from .routes import router

ControllerFactory = Callable[[Settings], Awaitable[MonitoringController]]


async def default_controller_factory(settings: Settings) -> MonitoringController:
    # Reuse one browser hub so watches opened via the API can receive relayed positions.
    source = await select_source(settings.geolocation, web=BrowserGeolocationSource())
    return await build_controller(settings, source=source)


def create_app(controller_factory: ControllerFactory | None = None) -> FastAPI:
    factory = controller_factory or default_controller_factory

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        controller = await factory(get_settings())
        app.state.controller = controller
        try:
            yield
        finally:
            await controller.close()

    app = FastAPI(title="Speed Bump Logger API", version="0.1.0", lifespan=lifespan)

    # CORS (dev-friendly): allow a local frontend to call this API.
    # Configure via env:
    # - BUMPLOG_CORS_ORIGINS="http://localhost:8080,http://127.0.0.1:8080"
    # - BUMPLOG_CORS_ALLOW_LOCAL=0 to disable the default localhost allowance
    cors_origins = [s.strip() for s in os.getenv("BUMPLOG_CORS_ORIGINS", "").split(",") if s.strip()]
    cors_allow_local = os.getenv("BUMPLOG_CORS_ALLOW_LOCAL", "1").strip().lower() in {"1", "true", "yes", "y"}
    cors_origin_regex = (
        r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$" if cors_allow_local and not cors_origins else ""
    )
    if cors_origins or cors_origin_regex:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_origin_regex=cors_origin_regex or None,
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(router)
    return app


configure_logging()

app = create_app()
