"""
FastAPI application entry point for the RAG chat backend.

This module builds the FastAPI app with middleware, CORS, logging and error
handlers, wires the database and outbound clients onto ``app.state``, and
registers all API routers.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from ragchat.config import Settings, settings as default_settings
from ragchat.core.errors import AppError
from ragchat.core.rate_limit import limiter
from ragchat.database import Database
from ragchat.routers import account, admin, auth, chat
from ragchat.services.credential_store import credential_store
from ragchat.services.email_service import EmailSender, build_email_sender
from ragchat.services.google_oauth import GoogleOAuthClient
from ragchat.services.rag_client import RagClient

# Configure logging
logging.basicConfig(
    level=getattr(logging, default_settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    """
    database: Database = app.state.database

    # Startup
    logger.info("Initializing database...")
    database.create_all()
    with database.session() as db:
        credential_store.ensure_default_roles(db)
    logger.info("Database initialized successfully")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    database.dispose()


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "error": code, "message": message},
    )


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    rag_client: Optional[RagClient] = None,
    email_sender: Optional[EmailSender] = None,
    google_client: Optional[GoogleOAuthClient] = None,
) -> FastAPI:
    settings = settings or default_settings

    app = FastAPI(
        title="RAG Chat API",
        description="Authentication, conversations and RAG-backed answers",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database or Database.from_settings(settings)
    app.state.rag_client = rag_client or RagClient.from_settings(settings)
    app.state.email_sender = email_sender or build_email_sender(settings)
    app.state.google_client = google_client or GoogleOAuthClient(settings)
    app.state.limiter = limiter

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else "Invalid request"
        return _error_response(status.HTTP_400_BAD_REQUEST, "invalid_request", message)

    @app.exception_handler(RateLimitExceeded)
    async def custom_rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return _error_response(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "rate_limited",
            "Rate limit exceeded. Please try again later.",
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Global exception: {exc}", exc_info=True)
        return _error_response(500, "internal_error", "Internal Server Error")

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add GZip compression
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Register routers
    app.include_router(auth.router, prefix="/auth", tags=["auth"])
    app.include_router(account.me_router, tags=["account"])
    app.include_router(account.router, prefix="/api/account", tags=["account"])
    app.include_router(chat.router, prefix="/api/chat", tags=["chat"])
    app.include_router(admin.router, prefix="/api/admin", tags=["admin"])

    @app.get("/")
    async def root():
        """Root endpoint for health check."""
        return {"message": "RAG Chat API", "status": "running"}

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ragchat.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
