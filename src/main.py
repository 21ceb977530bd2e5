"""FastAPI application entry point.

Rehearsal - voice practice calls against AI client personas.

Run with ``uvicorn src.main:create_app --factory``.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes import calls, health, phone
from src.api.websocket.browser_call import browser_call_endpoint
from src.api.websocket.plivo_stream import plivo_stream_endpoint
from src.api.websocket.registry import CallRegistry
from src.config import get_settings
from src.db.repositories.calls import CallLogRepository
from src.logging_config import get_logger, setup_logging
from src.services.factory import build_call_services
from src.services.telephony.plivo import PhoneCallTracker, PlivoCallControl

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Startup:
    - Initialize logging
    - Build call services, registry and in-memory stores

    Shutdown:
    - End active calls
    - Close provider clients
    """
    settings = get_settings()

    # Startup
    setup_logging(
        level=settings.log_level,
        enable_file=settings.is_production,
    )

    app.state.settings = settings
    app.state.services = build_call_services(settings)
    app.state.registry = CallRegistry(max_calls=settings.max_concurrent_calls)
    app.state.call_logs = CallLogRepository()
    app.state.phone_calls = PhoneCallTracker()
    app.state.call_control = PlivoCallControl(settings)
    logger.info(
        f"Rehearsal ready: stt={settings.stt_provider}, tts={settings.tts_provider}, "
        f"max_calls={settings.max_concurrent_calls}"
    )

    yield

    # Shutdown
    await app.state.registry.end_all()
    await app.state.services.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Rehearsal API",
        description="Voice practice calls against AI client personas",
        version=health.VERSION,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check and metrics routes
    app.include_router(health.router, tags=["Health"])

    # Scenario catalog and call history
    app.include_router(calls.router, prefix="/api")

    # Phone calls and Plivo webhooks
    app.include_router(phone.router, prefix="/api")

    # Browser practice calls
    @app.websocket("/ws/call")
    async def call_ws(websocket: WebSocket):
        """WebSocket endpoint for browser practice calls."""
        await browser_call_endpoint(websocket)

    # Plivo media stream
    @app.websocket("/ws/plivo/{call_id}")
    async def plivo_ws(websocket: WebSocket, call_id: str):
        """WebSocket endpoint for Plivo audio streaming."""
        await plivo_stream_endpoint(websocket, call_id)

    return app
