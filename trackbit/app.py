"""
Trackbit API
FastAPI application factory for the habit and workout tracker
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import Settings, load_settings
from .db import init_db, seed_defaults
from .errors import install_error_handlers
from .ratelimit import RateLimiter
from .routes import auth, config, exercises, habits, invites, tracker

logger = logging.getLogger(__name__)


async def _sweep_periodically(limiter: RateLimiter) -> None:
    while True:
        await asyncio.sleep(limiter.window)
        removed = limiter.sweep()
        if removed:
            logger.debug("Rate limiter evicted %d idle clients", removed)


def create_app(db_path=None, settings: Settings | None = None, seed: bool = True) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        db_path: SQLite database path, overrides settings.db_path
        settings: Runtime settings (default: read from the environment)
        seed: Insert default role limits, muscle groups and system exercises
    """
    settings = settings or load_settings()
    if db_path is not None:
        settings.db_path = str(db_path)

    conn = init_db(settings.db_path)
    try:
        if seed:
            seed_defaults(conn)
    finally:
        conn.close()

    limiter = RateLimiter(settings.rate_limit, settings.rate_window) if settings.rate_limit > 0 else None

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        tasks: list[asyncio.Task[None]] = []
        if limiter is not None:
            tasks.append(asyncio.create_task(_sweep_periodically(limiter)))
        logger.info("Trackbit %s serving %s", __version__, settings.db_path)

        yield

        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    app = FastAPI(title="Trackbit", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.db_path = settings.db_path
    app.state.rate_limiter = limiter

    # CORS wraps the limiter so 429 responses carry CORS headers too.
    if limiter is not None:
        app.middleware("http")(limiter)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    install_error_handlers(app)

    app.include_router(auth.router, prefix='/api/auth', tags=['auth'])
    app.include_router(invites.router, prefix='/api/invites', tags=['invites'])
    app.include_router(habits.router, prefix='/api/habits', tags=['habits'])
    app.include_router(exercises.router, prefix='/api/exercises', tags=['exercises'])
    app.include_router(exercises.muscle_groups_router, prefix='/api/muscle-groups',
                       tags=['exercises'])
    app.include_router(tracker.router, prefix='/api/tracker', tags=['tracker'])
    app.include_router(config.router, prefix='/api/config', tags=['config'])

    @app.get('/health')
    def health():
        return {'status': 'ok', 'version': __version__}

    return app
