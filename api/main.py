"""FastAPI main application for TableDM."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tabledm.config import Config
from tabledm.core.errors import TableDMError
from tabledm.db.session import init_db
from tabledm.logging_config import setup_logging

from .routes import combat, narration, sessions

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle."""
    setup_logging(Config.LOG_LEVEL)
    for issue in Config.validate():
        logger.warning(issue)
    init_db()
    logger.info("TableDM starting up")
    yield
    logger.info("TableDM shut down cleanly")


app = FastAPI(
    title="TableDM API",
    description="Multiplayer tabletop campaign manager - combat state service",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for web frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict this
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TableDMError)
async def tabledm_error_handler(request: Request, exc: TableDMError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies are plain 400s with a readable message."""
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else error.get("msg", "invalid"))
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "; ".join(problems) or "Invalid request"},
    )


# Include routers
app.include_router(sessions.router, prefix="/api/sessions", tags=["Sessions"])
app.include_router(narration.router, prefix="/api/sessions", tags=["Narration"])
app.include_router(combat.router, prefix="/api/combat", tags=["Combat"])


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "version": "0.1.0"}
