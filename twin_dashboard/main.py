"""
=============================================================================
MAIN.PY - FastAPI application factory
=============================================================================

create_app() builds one AgentStore, one UpdateBroadcaster and one
VoiceService and keeps them on app.state; handlers reach them through
dependencies (see api.py) or websocket.app.state (see realtime.py).

STARTUP:
--------
1. Create missing tables
2. Seed the seven digital twins (idempotent, de-duplicates by name)

SHUTDOWN:
---------
Dispose of the database engine.

Run with:
    python -m twin_dashboard serve
    uvicorn twin_dashboard.main:create_app --factory
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from . import api, realtime
from .broadcaster import UpdateBroadcaster
from .config import Settings
from .seed import seed_agents
from .storage import AgentStore
from .voice_service import VoiceService


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    store = AgentStore(settings.database_url)
    broadcaster = UpdateBroadcaster(store)
    voice_service = VoiceService(api_key=settings.elevenlabs_api_key)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Application starting ({settings.environment})...")

        try:
            await store.init_models()
        except Exception as e:
            logger.error(f"Failed to create database tables: {e}")
            raise

        if settings.seed_on_startup:
            try:
                await seed_agents(store)
            except SQLAlchemyError as e:
                logger.error(f"Agent seeding failed, continuing without seed data: {e}")

        yield

        logger.info("Application shutting down, closing database connections...")
        await store.dispose()

    app = FastAPI(title="Digital Twin Dashboard API", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.broadcaster = broadcaster
    app.state.voice_service = voice_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SQLAlchemyError)
    async def store_unavailable(request: Request, exc: SQLAlchemyError):
        logger.opt(exception=exc).error(f"Store error on {request.method} {request.url.path}")
        return JSONResponse(status_code=503, content={"detail": "Store unavailable"})

    app.include_router(api.router)
    app.include_router(realtime.router)

    return app
