"""
FastAPI server for the telephony to speech-model media stream bridge.

This module initializes and configures the FastAPI application that accepts
telephony media-stream WebSocket connections and bridges each call to the Gemini
Live speech model. Settings are loaded during application startup; a missing
credential raises ConfigError and the server never starts accepting calls.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket

from voice_bridge.config.constants import SERVICE_NAME
from voice_bridge.config.logging_config import configure_logging
from voice_bridge.config.settings import BridgeSettings, load_env_file
from voice_bridge.services.tool_dispatcher import ToolDispatcher
from voice_bridge.websocket_manager import WebSocketManager

# Load environment variables from .env file if it exists
load_env_file()

# Configure logging
logger = configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load settings and shared clients before serving, release them after."""
    settings = BridgeSettings.from_env()
    dispatcher = ToolDispatcher(
        settings.backend_url,
        token=settings.backend_token,
        timeout=settings.backend_timeout_s,
    )
    app.state.settings = settings
    app.state.dispatcher = dispatcher
    app.state.websocket_manager = WebSocketManager(settings, dispatcher)
    logger.info(
        f"Bridge ready | model={settings.model} | auth={'on' if settings.auth_required else 'open'} "
        f"| tools={'on' if settings.tools_enabled else 'off'} | inbound buffer={settings.inbound_buffer_ms}ms"
    )
    try:
        yield
    finally:
        await dispatcher.aclose()
        logger.info("Bridge shut down")


# Create FastAPI application
app = FastAPI(
    title="Sarah Media Stream Bridge",
    description="Bridge between telephony media streams and the Gemini Live speech model",
    version="1.0.0",
    lifespan=lifespan,
)


@app.websocket("/")
@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for telephony media streams.

    Handles the complete lifecycle of one call: ``connected``, ``start``
    (authentication and model connection), ``media`` (caller audio) and ``stop``.
    """
    await websocket.app.state.websocket_manager.handle_websocket(websocket)


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint for monitoring system status.

    Returns:
        dict: Status information indicating the server is operational and how
        many calls are currently bridged.
    """
    manager = request.app.state.websocket_manager
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "active_sessions": manager.active_sessions,
        "tools_enabled": request.app.state.settings.tools_enabled,
    }


@app.get("/")
async def root():
    """Root endpoint to display basic information about the API."""
    return {
        "name": "Sarah Media Stream Bridge",
        "description": "Bridge between telephony media streams and the Gemini Live speech model",
        "version": "1.0.0",
        "endpoints": {
            "/": "WebSocket endpoint for telephony media streams (also /ws)",
            "/health": "Health check endpoint",
        },
    }


if __name__ == "__main__":
    import uvicorn

    settings = BridgeSettings.from_env()
    logger.info(f"Starting server on http://{settings.host}:{settings.port}")
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        websocket_ping_interval=5,
        websocket_ping_timeout=20,
        http="h11",
    )
