"""
Campool Chat - FastAPI Application

Main application entry point with middleware, routers, and OpenAPI
documentation.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from campool_chat import __version__, state
from campool_chat.config import settings
from campool_chat.database import init_db, close_db, get_db, get_redis
from campool_chat.middleware.rate_limit import RateLimitMiddleware
from campool_chat.routers import chat, websocket
from campool_chat.errors import ChatError
from campool_chat.utils.logging_config import setup_logging


setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    Handles startup and shutdown events:
    - Initialize MongoDB (and Redis when fan-out uses it)
    - Verify connections and log the outcome
    - Start and stop the room fan-out broker
    """
    await init_db()

    try:
        await get_db().client.admin.command("ping")
        logger.info("Connected to MongoDB")
    except Exception as e:
        logger.error(f"FAILED to connect to MongoDB: {e}")

    if settings.chat_pubsub_backend == "redis":
        try:
            await get_redis().ping()
            logger.info("Connected to Redis")
        except Exception as e:
            logger.error(f"FAILED to connect to Redis: {e}")

    await state.start_fanout()
    logger.info(f"Campool chat started (auth={settings.auth_provider})")

    yield

    await state.stop_fanout()
    await close_db()
    logger.info("Campool chat stopped")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="Campool Chat API",
    description="""
    Campool - Per-ride chat for carpool coordination

    ## Features
    - Real-time ride rooms over WebSocket (`/ws`)
    - Paginated chat history and read receipts
    - Conversation inbox with unread counts

    ## Authentication
    All endpoints require a bearer credential in the Authorization header:
    `Authorization: Bearer <token>`. The WebSocket also accepts `?token=`.
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)


# =============================================================================
# Middleware
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RateLimitMiddleware)


# =============================================================================
# Exception Handlers
# =============================================================================


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    """Render domain failures with their status, code and retry hint."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code, "retryable": exc.retryable},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed path, query or body parameters are client errors (400)."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": jsonable_encoder(exc.errors()),
            "code": "validation_error",
            "retryable": False,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unhandled errors.

    SECURITY: Do not leak internal error details.
    """
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# =============================================================================
# Routers
# =============================================================================

# Chat REST gateway
app.include_router(chat.router, prefix="/chat", tags=["Chat"])

# WebSocket routes
app.include_router(websocket.router, prefix="/ws", tags=["WebSocket"])


# =============================================================================
# Health Check
# =============================================================================


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for load balancers and monitoring."""
    return {
        "status": "healthy",
        "version": __version__,
        "fanout": settings.chat_pubsub_backend,
        **state.room_registry.stats(),
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Campool Chat API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "websocket": "/ws",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("campool_chat.main:app", host="0.0.0.0", port=8000)
