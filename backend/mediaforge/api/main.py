"""
FastAPI Main Application
"""

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
import structlog

from mediaforge.config.settings import settings
from mediaforge.models import get_db


logger = structlog.get_logger(__name__)

API_VERSION = "1.0.0"


app = FastAPI(
    title="MediaForge - Async Media Generation Pipeline",
    description="Style-transfer and story jobs run against an external generation provider",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(status_code: int, code: str, message: str, **extra) -> JSONResponse:
    error = {"code": code, "message": message}
    error.update(extra)
    return JSONResponse(status_code=status_code, content={"error": error})


def _serialize_validation_errors(errors):
    """Make pydantic error dicts JSON-safe (ctx may hold exception objects)"""
    cleaned = []
    for err in errors:
        err_copy = dict(err)
        ctx = err_copy.get("ctx")
        if ctx:
            err_copy["ctx"] = {
                key: (str(value) if isinstance(value, Exception) else value)
                for key, value in ctx.items()
            }
        cleaned.append(err_copy)
    return cleaned


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies answer 400, not FastAPI's default 422"""
    details = _serialize_validation_errors(exc.errors())
    logger.warning(
        "request_validation_failed",
        path=request.url.path,
        error_count=len(details),
        fields=[".".join(str(part) for part in err.get("loc", ())) for err in details],
    )
    return _error_response(
        status.HTTP_400_BAD_REQUEST,
        "VALIDATION_ERROR",
        "Request validation failed",
        details=details,
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    logger.warning("value_error", path=request.url.path, error=str(exc))
    return _error_response(status.HTTP_400_BAD_REQUEST, "INVALID_VALUE", str(exc))


@app.exception_handler(OperationalError)
async def store_unavailable_handler(request: Request, exc: OperationalError):
    """Job store unreachable or not migrated"""
    logger.error("job_store_unavailable", path=request.url.path, error=str(exc.orig))
    return _error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "STORE_UNAVAILABLE",
        "Job store is unavailable",
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.error(
        "unexpected_error",
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_ERROR",
        "An unexpected error occurred",
    )


@app.on_event("startup")
async def startup_event():
    """Create job and asset tables if missing"""
    from mediaforge.models import init_db

    init_db()
    logger.info(
        "application_started",
        log_level=settings.log_level,
        dispatch_mode=settings.worker_dispatch_mode,
        callback_url=settings.callback_url or None,
    )


@app.on_event("shutdown")
async def shutdown_event():
    from mediaforge.api.deps import close_clients

    await close_clients()
    logger.info("application_stopped")


@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """
    Liveness plus a job store probe

    Returns:
        "healthy" when the job store answers, "degraded" otherwise
    """
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except OperationalError as e:
        logger.warning("health_database_unavailable", error=str(e.orig))
        database = "unavailable"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "version": API_VERSION,
        "service": "mediaforge-backend",
        "database": database,
        "dispatch_mode": settings.worker_dispatch_mode,
    }


from mediaforge.api.routes import jobs, passthrough, webhooks, worker  # noqa: E402

for _router, _tag in (
    (jobs.router, "jobs"),
    (webhooks.router, "webhooks"),
    (worker.router, "worker"),
    (passthrough.router, "passthrough"),
):
    app.include_router(_router, prefix="/v1", tags=[_tag])


@app.get("/")
async def root():
    return {
        "name": "MediaForge Async Media Generation API",
        "version": API_VERSION,
        "docs": "/docs",
        "health": "/health",
    }
