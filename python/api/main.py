"""
FastAPI Main Application

Entry point for the statement import API.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from statement_import.assistant import ClassificationAssistant, ClaudeAssistant
from statement_import.config import ImportSettings
from statement_import.exceptions import (
    AssistantError,
    InvalidTransitionError,
    NothingToCommitError,
    ParseError,
    RowNotFoundError,
    StatementImportError,
)

from .database import Stores, build_engine, sql_stores
from .routes import imports_router, tag_rules_router
from .sessions import SessionRegistry

logger = logging.getLogger(__name__)

ERROR_STATUS = [
    (RowNotFoundError, 404),
    (InvalidTransitionError, 409),
    (AssistantError, 502),
    (ParseError, 400),
    (NothingToCommitError, 400),
]


def _status_for(error: StatementImportError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 400


async def import_error_handler(request: Request, exc: StatementImportError) -> JSONResponse:
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


def create_app(
    settings: ImportSettings | None = None,
    stores: Stores | None = None,
    assistant: ClassificationAssistant | None = None,
) -> FastAPI:
    """Build the API application.

    Args:
        settings: Import settings; loaded from config and environment if omitted
        stores: Persistence collaborators; SQL stores are built at startup if omitted
        assistant: Classification assistant; a Claude assistant is built at
            startup if omitted and enabled in the settings

    Returns:
        Configured FastAPI application
    """
    settings = settings or ImportSettings.load()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        engine = None
        if app.state.stores is None:
            engine = build_engine(settings.database_url)
            app.state.stores = sql_stores(engine)

        if app.state.assistant is None and settings.use_assistant:
            if settings.anthropic_api_key:
                app.state.assistant = ClaudeAssistant(
                    api_key=settings.anthropic_api_key,
                    model=settings.assistant_model,
                    max_tokens=settings.assistant_max_tokens,
                )
            else:
                logger.warning("ANTHROPIC_API_KEY not set, assisted mapping and classification disabled")

        logger.info("Starting Statement Import API...")
        yield
        logger.info("Shutting down Statement Import API...")

        if engine is not None:
            engine.dispose()

    app = FastAPI(
        title="Statement Import API",
        description="Staged CSV import of bank statements with assisted mapping and tagging",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.stores = stores
    app.state.assistant = assistant
    app.state.sessions = SessionRegistry()

    # CORS configuration
    cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StatementImportError, import_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)

    app.include_router(imports_router, prefix="/api")
    app.include_router(tag_rules_router, prefix="/api")

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "Statement Import API",
            "version": "1.0.0",
            "status": "running",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


if __name__ == "__main__":
    import uvicorn

    settings = ImportSettings.load()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    uvicorn.run(
        create_app(settings),
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
    )
