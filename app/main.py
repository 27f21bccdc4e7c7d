"""
FastAPI Application Entry Point
"""

import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException

from app.api.v1.router import api_router
from app.core.config import settings
from app.core.deps import get_push_provider
from app.core.errors import (
    AppError,
    app_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from app.core.logging import RequestIDMiddleware, get_logger, setup_logging
from app.infra.db import close_db_connection, get_session_factory
from app.infra.redis import close_redis_pool, get_redis_client, init_redis_pool
from app.realtime.manager import manager
from app.services.notification_service import purge_expired_loop
from app.services.presence import RedisPresence
from app.services.tasks import spawner

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    await init_redis_pool()

    purge_task = asyncio.create_task(
        purge_expired_loop(
            get_session_factory(),
            settings.notification_purge_interval_seconds,
            manager,
            RedisPresence(await get_redis_client()),
            get_push_provider(),
        ),
        name="notification-purge",
    )
    logger.info("Chat backend started")

    yield

    # Shutdown
    purge_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await purge_task
    await spawner.drain()
    await close_redis_pool()
    await close_db_connection()
    logger.info("Chat backend stopped")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Chat Backend",
        description="Conversations, messages and realtime fan-out",
        version="0.1.0",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        lifespan=lifespan,
    )

    # Middleware
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_credentials,
        allow_methods=settings.cors_methods,
        allow_headers=settings.cors_headers,
    )

    # Routes
    app.include_router(api_router, prefix=settings.api_prefix)

    # Exception Handlers
    app.add_exception_handler(AppError, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    return app


app = create_app()
