import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import Settings, get_settings
from .database import Database
from .errors import register_exception_handlers
from .routers import api_router
from .schemas import ok

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s :: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = Database(settings.DATABASE_URL, echo=bool(settings.SQL_ECHO))
        await db.create_all()
        app.state.db = db
        logger.info("Database ready")
        try:
            yield
        finally:
            await db.dispose()
            logger.info("Database connections closed")

    app = FastAPI(title="Classifieds API", version=__version__, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app, debug=settings.DEBUG)

    @app.get("/api/health", tags=["health"])
    async def health():
        return ok(
            {"timestamp": datetime.now(timezone.utc).isoformat()},
            "Classifieds API is running",
        )

    @app.get("/api", tags=["health"])
    async def api_index():
        return ok(
            {
                "version": __version__,
                "endpoints": {
                    "authentication": "/api/auth",
                    "ads": "/api/ads",
                    "categories": "/api/categories",
                    "messages": "/api/messages",
                    "users": "/api/users",
                    "health": "/api/health",
                },
            },
            "Welcome to the Classifieds API",
        )

    app.include_router(api_router, prefix="/api")
    return app


app = create_app()
