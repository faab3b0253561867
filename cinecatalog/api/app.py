"""
FastAPI application factory and the `cinecatalog-api` entry point.
"""

import argparse
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from cinecatalog.api.errors import install_error_handlers
from cinecatalog.api.routes import router
from cinecatalog.config.settings import AppSettings, DatabaseSettings
from cinecatalog.persistence.engine import DatabaseManager
from cinecatalog.services.content import ContentService

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


def create_app(
    db_manager: DatabaseManager | None = None,
    app_settings: AppSettings | None = None,
) -> FastAPI:
    """
    Build the catalog API.

    Args:
        db_manager: Database access. Built from DatabaseSettings when omitted;
            an engine built here is disposed on shutdown.
        app_settings: Environment, CORS origins and log level.
    """
    settings = app_settings or AppSettings()
    owns_db = db_manager is None
    db = db_manager or DatabaseManager(DatabaseSettings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("API_START env=%s", settings.app_env)
        yield
        if owns_db:
            db.dispose()
        logger.info("API_STOP")

    app = FastAPI(
        title="Catalog API",
        description="Search and browse the synchronized movie and series catalog",
        version=API_VERSION,
        lifespan=lifespan,
    )
    app.state.db = db
    app.state.content_service = ContentService(db)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    install_error_handlers(app, expose_messages=settings.is_development)
    app.include_router(router)

    @app.get("/", include_in_schema=False)
    def root():
        return {
            "success": True,
            "message": "Movie Search API",
            "version": API_VERSION,
            "endpoints": {
                "search": "/api/search?title=...",
                "quickSearch": "/api/search/quick?query=...",
                "advancedSearch": "/api/advanced-search?title=...&year=2023",
                "getById": "/api/content/{id}",
                "popular": "/api/popular",
                "filter": "/api/filter",
            },
        }

    @app.get("/health")
    def health(request: Request):
        try:
            with request.app.state.db.get_session() as session:
                session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error("API_HEALTH_DB_FAILED error=%s", e)
            return JSONResponse(
                status_code=503,
                content={"success": False, "status": "degraded", "database": "unhealthy"},
            )
        return {
            "success": True,
            "status": "healthy",
            "database": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app


def run(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Serve the catalog API")
    parser.add_argument("--host", type=str, default="0.0.0.0")
    parser.add_argument("--port", type=int, default=3000)
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    args = parser.parse_args(argv)

    settings = AppSettings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Starting catalog API on %s:%d", args.host, args.port)

    uvicorn.run(
        "cinecatalog.api.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
