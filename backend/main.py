"""
Camera streaming backend - FastAPI entry point

Builds the app: JSON logging, request correlation middleware, the
/api/v1/streaming router and a liveness route. Run with
``uvicorn main:app`` from the backend directory.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.api.v1.streaming import router as streaming_router
from app.core.config import settings
from app.core.logging_config import get_logger, setup_logging
from app.core.validators import InputValidationError
from app.middleware import RequestLoggingMiddleware

APP_VERSION = "1.0.0"

setup_logging(log_level=settings.LOG_LEVEL, log_dir=settings.LOG_DIR, app_version=APP_VERSION)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"Camera Streaming API {APP_VERSION} starting",
        extra={
            "event_type": "app_startup",
            "version": APP_VERSION,
            "log_level": settings.LOG_LEVEL,
            "onvif_timeout_ms": settings.ONVIF_TIMEOUT_MS,
            "onvif_concurrency": settings.ONVIF_CONCURRENCY,
            "mediamtx_deploy_enabled": settings.MEDIAMTX_DEPLOY_ENABLED,
            "restart_commands_allowed": settings.MEDIAMTX_DEPLOY_ALLOW_RESTART_COMMANDS,
        },
    )
    yield
    logger.info("Camera Streaming API shutting down", extra={"event_type": "app_shutdown"})


app = FastAPI(
    title="Camera Streaming API",
    description="NVR discovery, health probing and MediaMTX config deployment",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)
app.include_router(streaming_router, prefix=settings.API_V1_PREFIX)


@app.exception_handler(InputValidationError)
async def input_validation_error_handler(request: Request, exc: InputValidationError) -> JSONResponse:
    """Validation failures that escape an endpoint become 400 with the offending field"""
    logger.warning(
        f"Rejected {request.url.path}: {exc.field}: {exc}",
        extra={"event_type": "input_rejected", "field": exc.field},
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": str(exc), "field": exc.field},
    )


@app.get("/")
async def root():
    return {"name": "Camera Streaming API", "version": APP_VERSION, "status": "running"}


@app.get("/health")
async def health_check():
    """Liveness probe; does not touch any device"""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
