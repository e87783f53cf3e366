"""
FastAPI application entry point
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from mediascribe.config import Settings, settings
from mediascribe.exceptions import MediaScribeError, TranscriptionUnavailableError
from mediascribe.integrations.gemini import GeminiTranscriptionClient
from mediascribe.log_config import setup_logging
from mediascribe.services import TempStorage, TranscriptionService, UploadService
from mediascribe.utils.ffmpeg import FFmpegHelper


def init_components(app: FastAPI, settings: Settings) -> None:
    """Build every shared component once and attach it to app.state"""
    storage = TempStorage.from_settings(settings)
    storage.ensure_dir()

    ffmpeg = FFmpegHelper.from_settings(settings)
    if settings.require_ffmpeg:
        ffmpeg.resolve_binary()
    elif not ffmpeg.check_ffmpeg():
        logger.warning(f"FFmpeg not available: {settings.ffmpeg_binary}")

    try:
        client = GeminiTranscriptionClient.from_settings(settings)
    except TranscriptionUnavailableError as e:
        logger.warning(f"Transcription disabled: {e}")
        client = None

    upload_service = UploadService.from_settings(storage, settings)

    app.state.storage = storage
    app.state.ffmpeg = ffmpeg
    app.state.upload_service = upload_service
    app.state.transcription_service = TranscriptionService.from_settings(
        storage, upload_service, ffmpeg, client, settings
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle"""
    setup_logging(settings)
    logger.info(f"Starting {settings.app_name} v{settings.app_version}...")

    init_components(app, settings)

    removed = app.state.upload_service.sweep_stale_uploads(settings.stale_upload_max_age)
    removed += app.state.transcription_service.sweep_scratch(settings.stale_upload_max_age)
    if removed:
        logger.info(f"Removed {removed} stale scratch entries")

    yield

    logger.info("Shutting down...")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Media transcription service - chunked uploads, FFmpeg segmentation, Gemini",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    openapi_url=f"{settings.api_prefix}/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)


# ==================== Routers ====================
from mediascribe.api import monitoring_router, transcriptions_router, uploads_router

app.include_router(uploads_router, prefix=settings.api_prefix)
app.include_router(transcriptions_router, prefix=settings.api_prefix)
app.include_router(monitoring_router, prefix=settings.api_prefix)


# ==================== Basic routes ====================
@app.get("/")
async def root():
    return {
        "message": settings.app_name,
        "version": settings.app_version,
        "docs": f"{settings.api_prefix}/docs",
    }


@app.get("/health")
async def health_check():
    return JSONResponse(
        content={
            "status": "healthy",
            "version": settings.app_version,
        }
    )


# ==================== Error handling ====================
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    return JSONResponse(
        status_code=400,
        content={
            "error": "invalid_input",
            "message": "Request validation failed",
            "details": {"errors": jsonable_errors(exc)},
        },
    )


@app.exception_handler(MediaScribeError)
async def pipeline_error_handler(request: Request, exc: MediaScribeError):
    """Render pipeline errors as {error, message, details}."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.error_code}: {exc}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.error_code}: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": str(exc) if settings.debug else "An error occurred",
            "details": {},
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mediascribe.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
