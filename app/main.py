"""Main FastAPI application entry point."""

import logging
import logging.handlers
import os
import subprocess
import sys
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app import database
from app.api import api_router
from app.config import get_settings
from app.database import close_db
from app.services.scheduler import scheduler_service

settings = get_settings()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging() -> None:
    """Log to the console and, when the logs directory is writable, to a rotating file."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_file = settings.logs_dir / "dripped_out.log"
    try:
        settings.logs_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                log_file, maxBytes=10 * 1024 * 1024, backupCount=5
            )
        )
    except OSError as e:
        print(f"Warning: file logging disabled, cannot write {log_file}: {e}", file=sys.stderr)

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, handlers=handlers)


configure_logging()
logger = logging.getLogger(__name__)


def run_migrations() -> None:
    """Bring the schema up to date with ``alembic upgrade head``."""
    if os.getenv("SKIP_ALEMBIC_MIGRATIONS"):
        logger.info("SKIP_ALEMBIC_MIGRATIONS is set, not migrating")
        return

    try:
        result = subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            cwd=str(settings.base_dir),
        )
    except subprocess.CalledProcessError as e:
        logger.error(f"Migration failed: {e.stderr}")
        raise
    logger.info(f"Migrations applied: {result.stdout.strip() or 'up to date'}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.app_name}")
    settings.ensure_directories()
    run_migrations()

    if not settings.admin_delete_token:
        logger.warning("ADMIN_DELETE_TOKEN is not set; admin deletion is disabled")

    # Fails interrupted generations and re-dispatches pending ones
    await scheduler_service.start()
    logger.info(f"{settings.app_name} listening on http://{settings.host}:{settings.port}")

    yield

    await scheduler_service.stop()
    await close_db()
    logger.info(f"{settings.app_name} stopped")


app = FastAPI(
    title=settings.app_name,
    description="Photo to AI-generated image pipeline",
    version="0.1.0",
    lifespan=lifespan,
)


def _error_response(status_code: int, detail: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, **extra})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}")
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", type=type(exc).__name__
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return _error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        errors=jsonable_encoder(exc.errors()),
    )


@app.exception_handler(ValueError)
async def bad_value_handler(request: Request, exc: ValueError):
    """Invalid values that slipped past validation become a 400."""
    logger.warning(f"Bad request on {request.url.path}: {exc}")
    return _error_response(status.HTTP_400_BAD_REQUEST, str(exc))


app.include_router(api_router)


async def _database_status() -> str:
    try:
        async with database.async_session_maker() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return f"unhealthy: {type(e).__name__}"
    return "healthy"


@app.get("/health")
async def health_check():
    """Report database, scheduler and provider status.

    Returns 503 unless the database answers and the scheduler is running,
    since generations cannot progress otherwise.
    """
    components = {
        "database": await _database_status(),
        "scheduler": "running" if scheduler_service.scheduler.running else "stopped",
        "provider": "configured" if settings.gemini_api_key else "not configured",
    }
    healthy = components["database"] == "healthy" and components["scheduler"] == "running"

    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if healthy else "degraded",
            "app": settings.app_name,
            "version": "0.1.0",
            "timestamp": datetime.now(UTC).isoformat(),
            "components": components,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.host, port=settings.port, reload=settings.debug)
