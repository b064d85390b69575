"""
ClipChain - Multi-clip AI Video Generation Service
Main FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .config import get_settings
from .routers import credits_router, jobs_router, videos_router
from .routers.jobs import configure_job_queue, initialize_job_state
from .services.credit_ledger import get_credit_ledger
from .services.job_queue import get_job_queue
from .utils.exceptions import ClipChainError
from .utils.logger import setup_logger

# Set up logging
logger = setup_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    settings = get_settings()

    Path(settings.output_dir).mkdir(parents=True, exist_ok=True)
    Path(settings.temp_dir).mkdir(parents=True, exist_ok=True)
    Path(settings.data_dir).mkdir(parents=True, exist_ok=True)

    await get_credit_ledger().initialize()
    await initialize_job_state()
    configure_job_queue()

    job_queue = get_job_queue()
    await job_queue.start()

    logger.info("=" * 60)
    logger.info(f"{settings.app_name} {settings.app_version}")
    logger.info("=" * 60)
    logger.info(f"Output directory: {settings.output_dir}")
    logger.info(f"Temp directory: {settings.temp_dir}")
    logger.info(f"Database: {settings.database_path}")
    logger.info(f"Video model: {settings.veo_model} ({settings.clip_max_duration}s clips, max {settings.max_clips})")
    logger.info(f"Crossfade: {settings.crossfade_seconds}s")
    logger.info(f"Queue workers: {settings.job_worker_concurrency}")

    if settings.veo_api_key:
        logger.info("[OK] Veo API configured")
    else:
        logger.warning("[!] Veo API key not set (generation disabled)")

    if settings.storage_configured:
        logger.info("[OK] Object storage configured")
    else:
        logger.info("[-] Object storage not configured (serving from /output)")

    if settings.api_key:
        logger.info("[OK] API key authentication enabled")
    else:
        logger.warning("[!] API key authentication disabled")
    logger.info("=" * 60)

    yield

    await job_queue.stop()
    logger.info(f"Shutting down {settings.app_name}...")


app = FastAPI(
    title="ClipChain",
    description="Chained multi-clip AI video generation with crossfade stitching",
    version=get_settings().app_version,
    lifespan=lifespan
)

settings = get_settings()
cors_origins = settings.cors_allowed_origins or ["http://localhost:8000", "http://127.0.0.1:8000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials="*" not in cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# API key middleware
# ============================================================================

PUBLIC_PATHS = {"/", "/health", "/docs", "/redoc", "/openapi.json", "/favicon.ico"}
PUBLIC_PREFIXES = ("/output",)


def _extract_api_key(request: Request) -> str:
    api_key = request.headers.get("x-api-key", "").strip()
    if api_key:
        return api_key

    auth_header = request.headers.get("authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip()
    return ""


@app.middleware("http")
async def api_key_auth_middleware(request: Request, call_next):
    settings = get_settings()
    if not settings.api_key:
        return await call_next(request)

    path = request.url.path
    if path in PUBLIC_PATHS or any(path.startswith(prefix) for prefix in PUBLIC_PREFIXES):
        return await call_next(request)

    if _extract_api_key(request) != settings.api_key:
        return JSONResponse(
            status_code=401,
            content={"detail": "Unauthorized: invalid or missing API key"},
        )

    return await call_next(request)


# ============================================================================
# Global Exception Handlers
# ============================================================================

@app.exception_handler(ClipChainError)
async def clipchain_exception_handler(request: Request, exc: ClipChainError):
    """Map domain errors onto their HTTP status"""
    if exc.http_status >= 500:
        logger.error(f"ClipChainError [{exc.code}]: {exc.message}")
    else:
        logger.warning(f"ClipChainError [{exc.code}]: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    logger.warning(f"Request validation failed: {field or 'body'}: {first.get('msg')}")
    return JSONResponse(
        status_code=400,
        content={
            "error": "VALIDATION_ERROR",
            "message": first.get("msg", "Invalid request"),
            "recoverable": True,
            "recovery_hint": "Check your input parameters and try again.",
            "details": {"field": field or None},
        }
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    logger.warning(f"Validation error: {exc}")
    return JSONResponse(
        status_code=400,
        content={
            "error": "VALIDATION_ERROR",
            "message": str(exc),
            "recoverable": True,
            "recovery_hint": "Check your input parameters and try again."
        }
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again.",
            "recoverable": True,
            "recovery_hint": "If this persists, check the server logs for details."
        }
    )


app.include_router(videos_router)
app.include_router(credits_router)
app.include_router(jobs_router)

# Locally hosted final videos when object storage is not configured
output_path = Path(settings.output_dir)
output_path.mkdir(parents=True, exist_ok=True)
app.mount("/output", StaticFiles(directory=str(output_path)), name="output")


@app.get("/")
async def root():
    return {"message": "ClipChain API", "docs": "/docs"}


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "generation_configured": bool(settings.veo_api_key),
        "storage": "object-storage" if settings.storage_configured else "local",
        "queue": get_job_queue().stats(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "clipchain.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
