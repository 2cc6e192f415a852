"""
WebSocket connection manager for telephony media streams.

This module implements the server side of the media-stream WebSocket protocol,
providing the infrastructure to:
- Accept telephony connections and bind each one to a TelephonySession
- Parse incoming JSON frames and route them by ``event`` to handler functions
- Tear the session down exactly once when the socket closes

The WebSocketManager is shared by all connections; everything call-specific
lives in the TelephonySession it creates per socket.
"""

import json
import logging
import socket
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect

from voice_bridge.bot.telephony_session import TelephonySession
from voice_bridge.config.constants import (
    EVENT_CONNECTED,
    EVENT_MEDIA,
    EVENT_START,
    EVENT_STOP,
    LOGGER_NAME,
)
from voice_bridge.config.settings import BridgeSettings
from voice_bridge.exceptions import ProtocolError
from voice_bridge.handlers.session_handlers import handle_connected, handle_start, handle_stop
from voice_bridge.handlers.stream_handlers import handle_media
from voice_bridge.models.session import SessionRegistry
from voice_bridge.services.tool_dispatcher import ToolDispatcher

logger = logging.getLogger(LOGGER_NAME)

# Type hint for handler functions
HandlerFunc = Callable[[Dict[str, Any], TelephonySession], Awaitable[None]]


def parse_message(data: str) -> Dict[str, Any]:
    """
    Decode one telephony frame.

    Raises:
        ProtocolError: If the frame is not a JSON object with an ``event`` field
    """
    try:
        message = json.loads(data)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e
    if not isinstance(message, dict) or not isinstance(message.get("event"), str):
        raise ProtocolError("Frame is not an object with an 'event' field")
    return message


class WebSocketManager:
    """Accepts telephony media streams and routes their frames to handlers.

    Each frame is routed to a handler function based on its ``event`` field:
    - connected: stream socket opened
    - start: authenticate and connect the speech model
    - media: caller audio
    - stop: call ended
    """

    def __init__(self, settings: BridgeSettings, dispatcher: Optional[ToolDispatcher] = None):
        self.settings = settings
        self.dispatcher = dispatcher
        self.registry = SessionRegistry()

        self.handlers: Dict[str, HandlerFunc] = {
            EVENT_CONNECTED: handle_connected,
            EVENT_START: handle_start,
            EVENT_MEDIA: handle_media,
            EVENT_STOP: handle_stop,
        }

    @property
    def active_sessions(self) -> int:
        return len(self.registry)

    def _optimize_socket(self, websocket: WebSocket) -> None:
        """Disable Nagle's algorithm on the underlying TCP socket when reachable."""
        try:
            transport = websocket.scope.get("transport") if hasattr(websocket, "scope") else None
            sock = transport.get_extra_info("socket") if transport is not None else None
            if sock is not None:
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
                logger.debug("Optimized socket: TCP_NODELAY enabled for low latency")
        except (OSError, AttributeError) as e:
            logger.debug(f"Could not optimize socket: {e}")

    def create_session(self, websocket: WebSocket) -> TelephonySession:
        return TelephonySession(
            websocket,
            self.settings,
            dispatcher=self.dispatcher,
            registry=self.registry,
        )

    async def handle_websocket(self, websocket: WebSocket) -> None:
        """Handle a telephony WebSocket connection throughout its lifecycle.

        Args:
            websocket (WebSocket): The FastAPI WebSocket connection object

        This method:
        1. Accepts the WebSocket connection and creates its session
        2. Processes incoming frames in a loop until the socket closes or the
           session ends
        3. Tears the session down on the way out
        """
        await websocket.accept()
        self._optimize_socket(websocket)
        session = self.create_session(websocket)
        logger.info(f"New WebSocket connection (waiting for start event...) | active sessions: {self.active_sessions}")

        try:
            while not session.closed:
                data = await websocket.receive_text()
                await self.handle_message(data, session)
        except WebSocketDisconnect as e:
            logger.info(f"Telephony socket disconnected (code {e.code})")
        except Exception as e:
            logger.error(f"Error in WebSocket connection: {e}", exc_info=True)
        finally:
            await session.teardown("telephony socket closed")
            logger.info(f"WebSocket connection closed | active sessions: {self.active_sessions}")

    async def handle_message(self, data: str, session: TelephonySession) -> None:
        """
        Route one raw frame to its handler. Malformed or unknown frames are
        logged and ignored.
        """
        try:
            message = parse_message(data)
        except ProtocolError as e:
            logger.error(f"Parse error: {e}")
            return

        event = message["event"]
        handler = self.handlers.get(event)
        if handler is None:
            logger.warning(f"Unhandled event received: {event}")
            return
        await handler(message, session)
