"""
FastAPI application entry point.

This module initializes the FastAPI application, configures middleware,
and registers the ingestion routers.
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routers import analyze_data, save_data, uploads
from .core.config import settings
from .core.logging_config import configure_logging
from .db.session import check_database_connection
from .integrations.storage import is_storage_configured

# Ensure logging is configured before the application starts serving requests.
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the uploads and target tables on startup."""
    if os.getenv("SKIP_DB_INIT") == "1":
        logger.info("SKIP_DB_INIT=1 detected; skipping database bootstrap during startup")
        yield
        return

    try:
        from .db.target_tables import create_target_tables
        from .domain.uploads.uploads import create_uploads_table

        create_uploads_table()
        logger.info("uploads table ready")
        create_target_tables()
    except Exception:
        logger.exception("Failed to initialize database tables; the service cannot start without them")
        raise

    yield


app = FastAPI(
    title="Property Data Ingestion API",
    version="1.0.0",
    description="Upload property-management spreadsheets, classify and normalize them, and commit the rows",
    lifespan=lifespan,
)

allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
allowed_origins = [origin.strip() for origin in allowed_origins]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(uploads.router)
app.include_router(analyze_data.router)
app.include_router(save_data.router)


@app.get("/")
async def root():
    """Root endpoint returning API information."""
    return {
        "message": "Property Data Ingestion API",
        "version": "1.0.0"
    }


@app.get("/health")
def health_check():
    """Service status plus which external collaborators are configured. Only the database is probed."""
    db_init_skipped = os.getenv("SKIP_DB_INIT") == "1"
    provider = (settings.oracle_provider or "").strip().lower()
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "service": "property-ingest-api",
        "diagnostics": {
            "oracle_provider": provider,
            "oracle_configured": provider == "heuristic" or bool(settings.anthropic_api_key),
            "storage_configured": is_storage_configured(),
            "database_configured": bool(settings.database_url),
            "database_reachable": None if db_init_skipped else check_database_connection(),
            "db_init_skipped": db_init_skipped,
        },
    }
