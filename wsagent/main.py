"""Main FastAPI application."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from wsagent import __version__
from wsagent.api.endpoints import router
from wsagent.config import get_settings
from wsagent.utils.logging import LogConfig, get_logger, setup_logging
from wsagent.utils.tracing import TracingConfig, setup_tracing, shutdown_tracing

settings = get_settings()
setup_logging(LogConfig(level=settings.log_level))
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    logger.info(f"Starting {app.title} {__version__}")
    yield
    shutdown_tracing()
    logger.info("Application shutting down")


# Create FastAPI application
app = FastAPI(
    title="Bedrock WebSocket Agent",
    description=(
        "A streaming tool-calling agent on Claude via AWS Bedrock. Each WebSocket "
        "connection holds one conversation; text and tool events are pushed as they happen."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    tags_metadata=[
        {
            "name": "Agent",
            "description": (
                "Run single agent turns over HTTP as JSON or Server-Sent Events. "
                "Conversations with history use the /ws WebSocket endpoint."
            ),
        },
        {
            "name": "Health",
            "description": "Service health monitoring and status checks.",
        },
    ],
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(router)

setup_tracing(
    TracingConfig(
        enabled=settings.tracing_enabled,
        service_name=settings.otel_service_name,
        otlp_endpoint=settings.otlp_endpoint,
        aws_region=settings.aws_region,
    ),
    app,
)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("wsagent.main:app", host="0.0.0.0", port=8080, log_level="info")
