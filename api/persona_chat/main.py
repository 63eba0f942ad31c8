"""
FastAPI application entrypoint.

Registers routers, configures CORS, initializes telemetry,
and creates the pipeline clients on startup.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from persona_chat.core.config import get_settings
from persona_chat.core.telemetry import setup_telemetry
from persona_chat.routers import chat, health
from persona_chat.services.pipeline import build_pipeline_with_retry

logger = logging.getLogger(__name__)


def _log_unhandled_task_error(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    """Log failures from background tasks instead of letting them go unnoticed."""
    exc = context.get("exception")
    logger.error(
        "Unhandled error in background task: %s",
        context.get("message", "unknown"),
        exc_info=exc,
    )


@asynccontextmanager
async def lifespan(application: FastAPI):
    """
    Application lifespan handler.
    Initializes service clients on startup, cleans up on shutdown.
    """
    settings = get_settings()

    # Configure logging
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.get_running_loop().set_exception_handler(_log_unhandled_task_error)

    # Initialize telemetry
    setup_telemetry(settings.otel_console_export)

    # Initialize service clients
    pipeline = await build_pipeline_with_retry(settings)

    # Store in app state for dependency injection
    application.state.pipeline = pipeline
    application.state.rag_orchestrator = pipeline.orchestrator

    logger.info("Persona Chat API started (%s).", settings.environment)
    yield
    await pipeline.aclose()
    logger.info("Persona Chat API shutting down.")


app = FastAPI(
    title="Persona Chat API",
    description="RAG-powered persona chat for a personal portfolio.",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)

# Register routers
app.include_router(health.router)
app.include_router(chat.router)
