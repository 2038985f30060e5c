"""
File Vault Service - Main Application
FastAPI app coordinating multipart uploads to an S3-compatible store.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from shared_schemas.common import ErrorKind, ErrorResponse
from shared_schemas.file_service import HealthCheckResponse
from app.core.config import settings
from app.core.database import async_session, create_tables, engine
from app.core.dependencies import close_redis, get_redis
from app.core.errors import VaultError
from app.core.manager.session_registry import session_registry
from app.core.rate_limit import RateLimitExceeded
from app.s3.client import s3_client
from app.api import admin, auth, files, uploads

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Runs on startup and shutdown.
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME}...")

    await create_tables()
    logger.info("Database tables ready")

    try:
        s3_client.ensure_bucket_exists()
    except Exception as e:
        logger.error(f"Failed to initialize bucket {settings.S3_BUCKET}: {e}")
        # Continue anyway - health check reports the store as failed

    await session_registry.initialize()

    logger.info(f"{settings.APP_NAME} started successfully")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}...")
    await session_registry.shutdown()
    await close_redis()
    await engine.dispose()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Corporate file vault: multipart uploads, downloads and admin console",
    version=settings.APP_VERSION,
    lifespan=lifespan
)


# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
)


# Include API routers
app.include_router(auth.router)
app.include_router(uploads.router)
app.include_router(files.router)
app.include_router(admin.router)


@app.get("/", tags=["root"])
async def root():
    """Root endpoint with service information."""
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "endpoints": {
            "auth": "/api/auth/*",
            "uploads": "/api/files/{init,upload,complete,abort}-multipart",
            "files": "/api/files/*",
            "admin": "/api/admin/*",
            "health": "/health"
        },
        "documentation": {
            "swagger": "/docs",
            "redoc": "/redoc"
        }
    }


@app.get("/health", tags=["health"], response_model=HealthCheckResponse)
async def health_check():
    """Health check endpoint."""
    checks = {"s3_connection": "ok", "database": "ok", "redis": "ok"}

    try:
        s3_client.check_connection()
    except Exception as e:
        logger.error(f"Health check: S3 failed: {e}")
        checks["s3_connection"] = "failed"

    try:
        async with async_session() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check: database failed: {e}")
        checks["database"] = "failed"

    try:
        redis = await get_redis()
        await redis.ping()
    except Exception as e:
        logger.error(f"Health check: redis failed: {e}")
        checks["redis"] = "failed"

    healthy = all(v == "ok" for v in checks.values())
    body = HealthCheckResponse(status="healthy" if healthy else "unhealthy", **checks)
    if healthy:
        return body
    return JSONResponse(status_code=503, content=body.model_dump(by_alias=True))


@app.exception_handler(VaultError)
async def vault_error_handler(request: Request, exc: VaultError):
    """Render pipeline errors as ErrorResponse with their kind and status."""
    headers = None
    if isinstance(exc, RateLimitExceeded):
        headers = exc.decision.headers()
    elif exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.detail}")

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(mode="json", exclude_none=True),
        headers=headers
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Missing or malformed fields are client_input errors."""
    fields = [".".join(str(p) for p in err["loc"] if p != "body") for err in exc.errors()]
    fields = [f for f in fields if f]
    detail = f"Invalid request: {', '.join(fields)}" if fields else "Invalid request"
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            kind=ErrorKind.CLIENT_INPUT,
            detail=detail,
            error_code="invalid_request"
        ).model_dump(mode="json", exclude_none=True)
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "kind": ErrorKind.INTERNAL.value,
            "detail": "Internal server error",
            "error_code": "internal_error"
        }
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.LOG_LEVEL.lower(),
        timeout_keep_alive=300,
        limit_concurrency=100
    )
