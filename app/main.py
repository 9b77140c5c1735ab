"""
Build-State Service - Main FastAPI Application

PR validation and build-state reconciliation for student projects.

Services:
- Webhook intake (GitHub, Railway)
- Validation pipeline (stages, AI review, commit status, ledger)
- Direct validation trigger (admin-only)
- Build-state ledger reads (admin-only)
- Stale IN_PROGRESS sweep (scheduled)
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import asyncpg
import logging
import subprocess
import sys

from app.config import get_settings
from app.errors import AuthenticationFailure, ConfigurationMissing
from app.api import auth, build_states, validation, webhooks
from app.services.container import PipelineServices, build_services
from app.services.scheduler import BuildStateScheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

settings = get_settings()


# --- Database Connection Pool ---

db_pool: asyncpg.Pool = None
pipeline_services: PipelineServices = None
build_state_scheduler: BuildStateScheduler = None


def run_migrations():
    """Run alembic migrations on startup."""
    import os

    logger.info("=" * 70)
    logger.info("STARTING DATABASE MIGRATIONS")
    logger.info("=" * 70)
    logger.info(f"Current working directory: {os.getcwd()}")
    logger.info(f"Python executable: {sys.executable}")
    logger.info(f"Alembic config exists: {os.path.exists('alembic.ini')}")
    logger.info("=" * 70)

    try:
        result = subprocess.run(
            ["alembic", "upgrade", "head"],
            capture_output=True,
            text=True,
            check=True,
            cwd=os.getcwd()
        )

        logger.info("MIGRATION OUTPUT:")
        for line in result.stdout.splitlines():
            logger.info(f"  {line}")
        if result.stderr:
            # Alembic logs its progress on stderr
            for line in result.stderr.splitlines():
                logger.info(f"  {line}")

        logger.info("=" * 70)
        logger.info("MIGRATIONS COMPLETED")
        logger.info("=" * 70)

    except subprocess.CalledProcessError as e:
        logger.error("=" * 70)
        logger.error("MIGRATION FAILED")
        logger.error(f"Exit code: {e.returncode}")
        logger.error(f"Command: {e.cmd}")
        logger.error("=" * 70)
        logger.error("STDOUT:")
        for line in (e.stdout or "").splitlines():
            logger.error(f"  {line}")
        logger.error("STDERR:")
        for line in (e.stderr or "").splitlines():
            logger.error(f"  {line}")
        logger.error("=" * 70)
        # Refuse to start without the ledger tables
        raise RuntimeError(f"Database migration failed with exit code {e.returncode}: {e.stderr}")
    except FileNotFoundError as e:
        logger.error(f"Alembic command not found: {e}")
        raise RuntimeError("Alembic command not found - check installation")


async def init_db_pool():
    """Initialize database connection pool."""
    global db_pool

    if not settings.DATABASE_URL:
        raise RuntimeError("DATABASE_URL not configured")

    logger.info("Initializing database connection pool...")

    db_pool = await asyncpg.create_pool(
        settings.DATABASE_URL,
        min_size=settings.DB_POOL_MIN_SIZE,
        max_size=settings.DB_POOL_MAX_SIZE,
        command_timeout=60
    )

    logger.info("Database connection pool ready")


async def close_db_pool():
    """Close database connection pool."""
    global db_pool

    if db_pool:
        logger.info("Closing database connection pool...")
        await db_pool.close()
        logger.info("Database connection pool closed")


# --- FastAPI Lifespan ---

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan context manager.

    Handles startup and shutdown tasks.
    """
    global pipeline_services, build_state_scheduler

    # Startup
    logger.info(f"Build-state service starting (ENV={settings.ENV})...")

    # Run migrations BEFORE initializing connection pool
    if settings.RUN_MIGRATIONS:
        run_migrations()

    await init_db_pool()

    pipeline_services = build_services(db_pool)

    build_state_scheduler = BuildStateScheduler(pipeline_services.ledger)
    build_state_scheduler.start()

    yield

    # Shutdown
    logger.info("Build-state service shutting down...")

    if build_state_scheduler:
        build_state_scheduler.shutdown()

    # In-flight pipelines post their failure status before the pool closes
    if pipeline_services:
        await pipeline_services.close()

    await close_db_pool()


# --- FastAPI App ---

app = FastAPI(
    title="Build-State Service",
    description="PR validation and build-state reconciliation",
    version="1.0.0",
    lifespan=lifespan
)


# --- CORS Middleware ---

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error Handlers ---

@app.exception_handler(AuthenticationFailure)
async def authentication_failure_handler(request: Request, exc: AuthenticationFailure):
    logger.warning(f"Rejected {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=401, content={"ok": False, "error": str(exc)})


@app.exception_handler(ConfigurationMissing)
async def configuration_missing_handler(request: Request, exc: ConfigurationMissing):
    logger.error(f"Configuration missing for {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"ok": False, "error": "Service is not configured"})


# --- Health Check ---

@app.get("/health")
async def health_check():
    """Health check endpoint for Railway."""
    return {
        "status": "healthy",
        "service": "build-state-service",
        "version": "1.0.0",
        "env": settings.ENV,
        "pipelines_in_flight": pipeline_services.runner.pending if pipeline_services else 0
    }


@app.get("/")
async def root():
    """Root endpoint with service information."""
    return {
        "service": "Build-State Service",
        "description": "PR validation and build-state reconciliation",
        "version": "1.0.0",
        "env": settings.ENV,
        "endpoints": {
            "health": "/health",
            "github_webhook": "/webhooks/github",
            "railway_webhook": "/webhooks/railway",
            "validation": "/validation/{project_id}/run (admin-only)",
            "build_states": "/build-states/{project_id} (admin-only)"
        }
    }


# --- API Routers ---

app.include_router(webhooks.router)
app.include_router(validation.router)
app.include_router(build_states.router)


# --- Services Dependency Override ---

async def get_pipeline_services():
    """Return the services built in the lifespan."""
    if not pipeline_services:
        raise RuntimeError("Pipeline services not initialized")

    return pipeline_services


# Override the get_services dependency using FastAPI's dependency_overrides
app.dependency_overrides[auth.get_services] = get_pipeline_services


# --- Development Server ---

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8080,
        reload=(settings.ENV == "development"),
        log_level="info"
    )
