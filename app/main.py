"""
Main FastAPI application for the document writer backend.
Handles CORS, request logging middleware, lifespan events, and router registration.
"""
import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import AsyncSessionLocal, close_db, init_db
from app.exceptions import DocWriterError
from app.routers import documents, generation, health
from app.services.document_store import DocumentStore
from app.services.generation import DocumentGenerationService
from app.services.image_resolver import UploadDirImageResolver
from app.services.llm_client import AzureOpenAIClient
from app.services.template_registry import load_template_registry
from app.services.template_renderer import TemplateRenderer

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Startup / shutdown helpers
# ---------------------------------------------------------------------------

async def _check_database() -> bool:
    """Initialise DB tables and verify the connection.  Returns True on success."""
    try:
        await init_db()
        logger.info("✓ Database connection OK")
        return True
    except Exception as exc:
        logger.error("✗ Database connection failed: %s", exc)
        raise


def build_services(app: FastAPI) -> None:
    """Create the long-lived services and attach them to ``app.state``."""
    registry = load_template_registry()
    llm = AzureOpenAIClient()
    renderer = TemplateRenderer(settings.TEMPLATES_DIR, UploadDirImageResolver(settings.UPLOAD_DIR))
    store = DocumentStore(AsyncSessionLocal, settings.STORAGE_DIR)

    app.state.registry = registry
    app.state.llm = llm
    app.state.renderer = renderer
    app.state.document_store = store
    app.state.generation_service = DocumentGenerationService(registry, llm, renderer, store)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown event handler."""
    logger.info("=" * 60)
    logger.info("  Starting document writer backend …")
    logger.info("=" * 60)

    # 1: Database (required; raises on failure)
    await _check_database()

    # 2: Language model (optional; generation answers 503 until configured)
    if settings.llm_configured:
        logger.info("✓ Azure OpenAI deployment: %s", settings.AZURE_OPENAI_DEPLOYMENT_NAME)
    else:
        logger.warning(
            "⚠ Azure OpenAI not configured: set AZURE_OPENAI_ENDPOINT and AZURE_OPENAI_API_KEY"
        )

    # 3: Storage and upload directories
    for directory in (settings.STORAGE_DIR, settings.UPLOAD_DIR):
        os.makedirs(directory, exist_ok=True)
        logger.info("✓ Directory ready: %s", os.path.abspath(directory))

    # 4: Services
    build_services(app)
    logger.info("✓ Template kinds: %s", ", ".join(app.state.registry))

    logger.info("=" * 60)
    logger.info("  Document writer ready on http://%s:%d", settings.HOST, settings.PORT)
    logger.info("  Swagger UI : http://%s:%d/docs", settings.HOST, settings.PORT)
    logger.info("  Health     : http://%s:%d/api/health", settings.HOST, settings.PORT)
    logger.info("=" * 60)

    yield  # ← server is running

    logger.info("Shutting down document writer backend …")
    await close_db()
    logger.info("✓ Shutdown complete.")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AI Document Writer API",
    description=(
        "Turns short structured inputs into formatted Word documents.\n\n"
        "Key endpoints:\n"
        "- `GET  /api/templates`  available document kinds\n"
        "- `POST /api/generate-document`  preview generated content\n"
        "- `POST /api/download-document`  render content to .docx\n"
        "- `POST /api/user/generate-document`  generate and store\n"
        "- `GET  /api/user/documents`  browse stored documents\n"
        "- `GET  /api/user/analytics`  usage summary\n"
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / response logging middleware
# ---------------------------------------------------------------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with method, path, status code, and elapsed time.
    Attaches an ``X-Process-Time`` header (milliseconds) to every response.
    """
    t0 = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - t0) * 1000, 2)

    # Skip noisy health-check polling from the frontend
    if request.url.path not in ("/api/health", "/api/health/", "/"):
        logger.info(
            "%s %s → %d  (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )

    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

def _error_body(request: Request, detail: str, error: str) -> dict:
    return {
        "detail": detail,
        "error": error,
        "path": str(request.url.path),
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.exception_handler(DocWriterError)
async def docwriter_exception_handler(request: Request, exc: DocWriterError):
    """Map domain errors to their HTTP status with the standard error body."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)

    content = _error_body(request, exc.message, type(exc).__name__)
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return a structured JSON error for any unhandled exception."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(request, "Internal server error", str(exc)),
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router,      prefix="/api/health", tags=["Health"])
app.include_router(generation.router,  prefix="/api",        tags=["Generation"])
app.include_router(documents.router,   prefix="/api/user",   tags=["User Documents"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root: returns basic service info."""
    return {
        "name": "AI Document Writer API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "templates": "/api/templates",
            "generate": "/api/generate-document",
            "download": "/api/download-document",
            "documents": "/api/user/documents",
            "analytics": "/api/user/analytics",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level="info",
    )
