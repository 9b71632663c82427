"""FastAPI application entrypoint. No business logic; only wiring, middleware and error mapping."""

from dotenv import load_dotenv

load_dotenv()

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cinecriticas.api import pages
from cinecriticas.api.errors import register_exception_handlers
from cinecriticas.api.middleware import AuthGateMiddleware
from cinecriticas.api.v1 import router as v1_router
from cinecriticas.core.config import Settings, get_settings
from cinecriticas.core.database import session_factory_for
from cinecriticas.services.session_store import SessionStore, build_session_store

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%SZ"

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(level=settings.LOG_LEVEL, format=LOG_FORMAT, datefmt=LOG_DATEFMT)


def create_app(
    settings: Settings | None = None,
    session_store: SessionStore | None = None,
) -> FastAPI:
    """Build the app; tests pass their own settings and session store."""
    settings = settings or get_settings()
    configure_logging(settings)
    db_session_factory = session_factory_for(settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if settings.DB_AUTO_CREATE:
            from cinecriticas.models import Base

            Base.metadata.create_all(bind=db_session_factory.kw["bind"])
            logger.info("Database tables ensured (DB_AUTO_CREATE=true)")
        logger.info(
            "CineCríticas started",
            extra={"environment": settings.APP_ENV, "session_backend": settings.SESSION_BACKEND},
        )
        yield

    app = FastAPI(
        title="CineCríticas",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.db_session_factory = db_session_factory
    app.state.session_store = session_store or build_session_store(settings, db_session_factory)

    app.add_middleware(AuthGateMiddleware)
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_exception_handlers(app)
    app.include_router(v1_router, prefix=settings.API_V1_PREFIX)
    app.include_router(pages.router)
    return app


app = create_app()
