"""
Bridge controller for one telephony media stream.

This module pairs one inbound telephony WebSocket with exactly one ModelLink. It
authenticates the stream, converts caller audio to the model's format, holds
audio while the model link is connecting, relays model audio back to the caller,
propagates barge-in as a ``clear`` event, and tears everything down exactly once.
"""

import asyncio
import hmac
import logging
from typing import Any, Callable, Optional

from pydantic import BaseModel

from voice_bridge.audio.codec import (
    AudioEncoding,
    AudioFrame,
    decode_base64_audio,
    encode_base64_audio,
    mulaw8k_to_pcm16k,
)
from voice_bridge.bot.model_link import ModelLink
from voice_bridge.config.constants import (
    CLOSE_INTERNAL_ERROR,
    CLOSE_NORMAL,
    CLOSE_POLICY_VIOLATION,
    DEFAULT_COMPANY_NAME,
    LOGGER_NAME,
)
from voice_bridge.config.logging_config import mask_secret
from voice_bridge.config.settings import BridgeSettings
from voice_bridge.exceptions import AuthError, CodecError, ProtocolError, TransportError
from voice_bridge.models.session import (
    OutboundQueue,
    Session,
    SessionContext,
    SessionRegistry,
    SessionState,
)
from voice_bridge.models.telephony_schemas import (
    StartEvent,
    clear_event,
    mark_event,
    media_event,
)
from voice_bridge.services.tool_dispatcher import ToolDispatcher

logger = logging.getLogger(LOGGER_NAME)


class TelephonySession:
    """
    One bridged phone call.

    This class handles:
    - The shared-secret check and immutable call parameters from ``start``
    - Coalescing caller audio over a fixed window before conversion
    - Creating the ModelLink and holding audio in the OutboundQueue until it is ready
    - Relaying model audio, ``clear`` on barge-in and ``mark`` on turn boundaries
    - A single idempotent teardown for stop events and either socket closing
    """

    def __init__(
        self,
        websocket: Any,
        settings: BridgeSettings,
        dispatcher: Optional[ToolDispatcher] = None,
        registry: Optional[SessionRegistry] = None,
        link_factory: Callable[..., ModelLink] = ModelLink,
    ):
        self.websocket = websocket
        self.settings = settings
        self.dispatcher = dispatcher
        self.registry = registry
        self.link_factory = link_factory
        self.session = Session()
        self.outbound_queue = OutboundQueue(settings.outbound_queue_frames)
        self.link: Optional[ModelLink] = None
        self._inbound_buffer = bytearray()
        self._flush_task: Optional[asyncio.Task] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._teardown_started = False
        self._marks_sent = 0
        self.closed_event = asyncio.Event()
        if registry is not None:
            registry.add(self)

    @property
    def stream_sid(self) -> Optional[str]:
        return self.session.stream_sid

    @property
    def closed(self) -> bool:
        return self._teardown_started

    # Telephony events

    async def start(self, event: StartEvent) -> None:
        """
        Handle the ``start`` event: authenticate, freeze call parameters and
        begin connecting the model link in the background.
        """
        if self.session.started:
            logger.warning(f"Ignoring duplicate start event for stream {self.stream_sid}")
            return

        self.session.transition(SessionState.AUTHENTICATING)
        self.session.stream_sid = event.start.streamSid
        params = event.start.customParameters

        try:
            self._authenticate(params.get("secret", ""))
        except AuthError as e:
            logger.error(f"{e} Received: {mask_secret(params.get('secret', ''))}")
            await self.teardown("Unauthorized", close_code=CLOSE_POLICY_VIOLATION)
            return

        self.session.authenticated = True
        self.session.context = SessionContext(
            company_name=params.get("companyName") or DEFAULT_COMPANY_NAME,
            voice=params.get("voice") or self.settings.default_voice,
            system_prompt=params.get("systemPrompt", ""),
            scenario=params.get("scenario") or None,
            context_id=params.get("contextId") or self.stream_sid,
        )
        context = self.session.context
        logger.info(
            f"Authenticated | Stream: {self.stream_sid} | company={context.company_name} "
            f"| voice={context.voice} | scenario={context.scenario}"
        )

        self.session.transition(SessionState.CONNECTING_MODEL)
        self.link = self.link_factory(
            self.settings,
            context,
            self,
            self.outbound_queue,
            self.dispatcher,
        )
        self._connect_task = asyncio.create_task(self._connect_model())

    def _authenticate(self, secret: str) -> None:
        if not self.settings.auth_required:
            return
        if not hmac.compare_digest(secret.encode(), self.settings.bridge_secret.encode()):
            raise AuthError("Invalid secret.")

    async def _connect_model(self) -> None:
        try:
            await self.link.connect()
        except (TransportError, ProtocolError) as e:
            logger.error(f"Model link setup failed for stream {self.stream_sid}: {e}")
            await self.teardown("model setup failed", close_code=CLOSE_INTERNAL_ERROR)
            return
        except Exception as e:
            logger.error(f"Unexpected error connecting model link: {e}", exc_info=True)
            await self.teardown("model setup failed", close_code=CLOSE_INTERNAL_ERROR)
            return

        if not self.closed:
            self.session.transition(SessionState.ACTIVE)
            logger.info(f"Session active for stream {self.stream_sid}")

    async def receive_audio(self, payload: str) -> None:
        """
        Handle one ``media`` payload from the caller.

        Audio before ``start`` or after teardown is ignored. A malformed payload
        is dropped and the call continues.
        """
        if self.session.state not in (SessionState.CONNECTING_MODEL, SessionState.ACTIVE):
            logger.debug(f"Ignoring media in state {self.session.state.value}")
            return

        try:
            mulaw = decode_base64_audio(payload)
        except CodecError as e:
            logger.warning(f"Dropping caller audio frame: {e}")
            return

        if self.settings.inbound_buffer_ms == 0:
            await self._forward(mulaw)
            return

        self._inbound_buffer.extend(mulaw)
        if self._flush_task is None:
            self._flush_task = asyncio.create_task(self._flush_after_window())

    async def _flush_after_window(self) -> None:
        try:
            await asyncio.sleep(self.settings.inbound_buffer_ms / 1000)
            await self._flush_inbound()
        finally:
            self._flush_task = None
        # Audio that arrived during the send starts the next window
        if self._inbound_buffer and not self.closed:
            self._flush_task = asyncio.create_task(self._flush_after_window())

    async def _flush_inbound(self) -> None:
        if not self._inbound_buffer:
            return
        mulaw = bytes(self._inbound_buffer)
        self._inbound_buffer.clear()
        await self._forward(mulaw)

    async def _forward(self, mulaw: bytes) -> None:
        if self.link is None or self.closed:
            return
        frame = AudioFrame(AudioEncoding.PCM_16K, mulaw8k_to_pcm16k(mulaw))
        await self.link.send_audio(frame)

    async def stop(self) -> None:
        """Handle the ``stop`` event. A stop before ``start`` is a no-op."""
        if not self.session.started:
            logger.info("Ignoring stop event before start")
            return
        logger.info(f"Stream stopped: {self.stream_sid}")
        await self.teardown("stop event")

    # Model link events

    async def on_model_audio(self, mulaw: bytes) -> None:
        if self.closed or not self.stream_sid:
            return
        await self._send_event(media_event(self.stream_sid, encode_base64_audio(mulaw)))

    async def on_interrupted(self) -> None:
        """Barge-in: tell the telephony side to drop queued playback."""
        if self.closed or not self.stream_sid:
            return
        logger.info(f"Clearing caller playback for stream {self.stream_sid}")
        await self._send_event(clear_event(self.stream_sid))

    async def on_turn_complete(self) -> None:
        if self.closed or not self.stream_sid or not self.settings.turn_marks_enabled:
            return
        self._marks_sent += 1
        await self._send_event(mark_event(self.stream_sid, f"turn-{self._marks_sent}"))

    async def on_model_closed(self, reason: str) -> None:
        logger.warning(f"Model link ended for stream {self.stream_sid}: {reason}")
        await self.teardown(f"model link {reason}")

    async def _send_event(self, event: BaseModel) -> None:
        try:
            await self.websocket.send_text(event.model_dump_json())
        except Exception as e:
            logger.debug(f"Could not send {event.event} to telephony socket: {e}")

    # Teardown

    async def teardown(self, reason: str, close_code: int = CLOSE_NORMAL) -> None:
        """
        Release every resource of this session. Runs once; later calls return
        immediately.
        """
        if self._teardown_started:
            return
        self._teardown_started = True
        self.session.transition(SessionState.DRAINING)
        logger.info(f"Tearing down session {self.stream_sid}: {reason}")

        current = asyncio.current_task()
        for task in (self._flush_task, self._connect_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._flush_task = None
        self._inbound_buffer.clear()

        if self.link is not None:
            await self.link.close()

        if self.registry is not None:
            self.registry.remove(self)

        try:
            await self.websocket.close(code=close_code, reason=reason[:120])
        except Exception as e:
            logger.debug(f"Telephony socket already closed: {e}")

        self.session.transition(SessionState.CLOSED)
        self.closed_event.set()
        logger.info(f"Session {self.stream_sid} closed after {self.session.age:.1f}s")
