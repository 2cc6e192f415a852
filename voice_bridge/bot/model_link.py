import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Set

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from voice_bridge.audio.codec import (
    AudioEncoding,
    AudioFrame,
    decode_base64_audio,
    encode_base64_audio,
    pcm24k_to_mulaw8k,
    silence,
)
from voice_bridge.config.constants import (
    DEFAULT_PERSONA,
    GREETING_PROMPT,
    KEEPALIVE_SILENCE_MS,
    LOGGER_NAME,
    MODEL_INPUT_MIME_TYPE,
    SUPPORTED_VOICES,
    VOICE_CALL_RULES,
)
from voice_bridge.config.settings import BridgeSettings
from voice_bridge.exceptions import CodecError, ProtocolError, TransportError
from voice_bridge.models.gemini_schemas import (
    FunctionResponse,
    ServerContent,
    ServerMessage,
    ToolCall,
    build_realtime_input,
    build_setup_message,
    build_tool_response,
    build_user_turn,
)
from voice_bridge.models.session import OutboundQueue, PendingToolCall, SessionContext
from voice_bridge.services.tool_dispatcher import ToolDispatcher

logger = logging.getLogger(LOGGER_NAME)

CONNECTION_TIMEOUT = 10  # seconds

# WebSocket configuration for low latency
WS_MAX_SIZE = 16 * 1024 * 1024  # 16MB - large enough for audio chunks
WS_PING_INTERVAL = 20


class LinkState(str, Enum):
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    AWAITING_SETUP_ACK = "AwaitingSetupAck"
    READY = "Ready"
    CLOSING = "Closing"
    CLOSED = "Closed"


LINK_TRANSITIONS = {
    LinkState.DISCONNECTED: {LinkState.CONNECTING, LinkState.CLOSING},
    LinkState.CONNECTING: {LinkState.AWAITING_SETUP_ACK, LinkState.CLOSING, LinkState.CLOSED},
    LinkState.AWAITING_SETUP_ACK: {LinkState.READY, LinkState.CLOSING, LinkState.CLOSED},
    LinkState.READY: {LinkState.CLOSING, LinkState.CLOSED},
    LinkState.CLOSING: {LinkState.CLOSED},
    LinkState.CLOSED: set(),
}

PENDING_STATES = (LinkState.DISCONNECTED, LinkState.CONNECTING, LinkState.AWAITING_SETUP_ACK)


def resolve_voice(requested: Optional[str], default: str) -> str:
    """Return the requested voice if the model supports it, else the default."""
    if requested and requested in SUPPORTED_VOICES:
        return requested
    if requested:
        logger.warning(f"Unsupported voice '{requested}', falling back to '{default}'")
    return default


def build_system_instruction(context: SessionContext, base_prompt: str = "") -> str:
    """Session prompt override, else the deployment prompt, else the default persona, plus call rules."""
    text = context.system_prompt or base_prompt or DEFAULT_PERSONA.format(company=context.company_name)
    return f"{text}\n\n{VOICE_CALL_RULES}"


class ModelLink:
    """
    Connection from one call session to the Gemini Live speech model.

    The link owns the model WebSocket, the receive task, the keep-alive task and
    any in-flight tool call batches. Events for the caller are reported to the
    ``listener`` (the telephony session) through these coroutines:

    - ``on_model_audio(mulaw: bytes)``
    - ``on_interrupted()``
    - ``on_turn_complete()``
    - ``on_model_closed(reason: str)``, only for closes after the link was ready
    """

    def __init__(
        self,
        settings: BridgeSettings,
        context: SessionContext,
        listener: Any,
        outbound_queue: OutboundQueue,
        dispatcher: Optional[ToolDispatcher] = None,
    ):
        self.settings = settings
        self.context = context
        self.listener = listener
        self.outbound_queue = outbound_queue
        self.dispatcher = dispatcher
        self.state = LinkState.DISCONNECTED
        self.ws = None
        self._recv_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._tool_tasks: Set[asyncio.Task] = set()
        self._ready: Optional[asyncio.Future] = None
        self._send_lock = asyncio.Lock()
        self._greeting_sent = False
        self.frames_sent = 0

    @property
    def tools_enabled(self) -> bool:
        return self.settings.tools_enabled and self.dispatcher is not None

    @property
    def ready(self) -> bool:
        return self.state is LinkState.READY

    def _transition(self, new_state: LinkState) -> None:
        if new_state not in LINK_TRANSITIONS[self.state]:
            raise ProtocolError(f"Invalid link transition {self.state.value} -> {new_state.value}")
        logger.debug(f"Model link [{self.context.context_id}]: {self.state.value} -> {new_state.value}")
        self.state = new_state

    async def connect(self) -> None:
        """
        Open the model socket, send the setup message and wait for the
        acknowledgement.

        Raises:
            TransportError: If the socket cannot be opened or closes before setup completes
            ProtocolError: If the model sends a malformed or unexpected message during setup
        """
        self._transition(LinkState.CONNECTING)
        url = f"{self.settings.model_ws_url}?key={self.settings.api_key}"

        try:
            logger.info(f"Connecting to speech model {self.settings.model}")
            connection_start = time.time()
            self.ws = await asyncio.wait_for(
                websockets.connect(
                    url,
                    max_size=WS_MAX_SIZE,
                    ping_interval=WS_PING_INTERVAL,
                    compression=None,  # Disable compression for lower latency
                ),
                timeout=CONNECTION_TIMEOUT,
            )
            logger.debug(f"Model WebSocket connected in {time.time() - connection_start:.2f} seconds")
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            self._transition(LinkState.CLOSED)
            raise TransportError(f"Failed to connect to speech model: {e!r}") from e

        self._ready = asyncio.get_running_loop().create_future()
        self._transition(LinkState.AWAITING_SETUP_ACK)

        # Start listening before sending setup so setupComplete cannot be missed
        self._recv_task = asyncio.create_task(self._recv_loop())

        voice = resolve_voice(self.context.voice, self.settings.default_voice)
        setup = build_setup_message(
            model=self.settings.model,
            voice=voice,
            system_instruction=build_system_instruction(self.context, self.settings.system_prompt),
            tools=self.settings.tools if self.tools_enabled else None,
        )
        logger.info(
            f"Sending model setup: model={self.settings.model} voice={voice} "
            f"tools={len(self.settings.tools) if self.tools_enabled else 0}"
        )
        try:
            await self._send_json(setup)
            await asyncio.wait_for(asyncio.shield(self._ready), timeout=self.settings.setup_timeout_s)
        except asyncio.TimeoutError as e:
            await self.close()
            raise TransportError(
                f"No setupComplete within {self.settings.setup_timeout_s}s"
            ) from e
        except (TransportError, ProtocolError):
            await self.close()
            raise

    async def send_audio(self, frame: AudioFrame) -> None:
        """
        Send one PCM 16 kHz frame to the model.

        Frames arriving before the link is ready are held in the outbound queue
        and flushed in order once setup completes. Frames arriving after the link
        started closing are dropped.
        """
        if frame.encoding is not AudioEncoding.PCM_16K:
            raise CodecError(f"Model input must be {AudioEncoding.PCM_16K.value}, got {frame.encoding.value}")

        if self.state is LinkState.READY:
            try:
                await self._send_frame(frame)
            except TransportError as e:
                logger.debug(f"Dropping audio frame, model socket unavailable: {e}")
        elif self.state in PENDING_STATES:
            self.outbound_queue.push(frame)
        else:
            logger.debug(f"Dropping audio frame, model link is {self.state.value}")

    async def _send_frame(self, frame: AudioFrame) -> None:
        await self._send_json(build_realtime_input(encode_base64_audio(frame.data), MODEL_INPUT_MIME_TYPE))
        self.frames_sent += 1

    async def _send_json(self, message: Dict[str, Any]) -> None:
        if self.ws is None:
            raise TransportError("Model socket is not connected")
        async with self._send_lock:
            try:
                await self.ws.send(json.dumps(message))
            except ConnectionClosed as e:
                raise TransportError(f"Model socket closed while sending: {e}") from e

    async def _recv_loop(self) -> None:
        """Read model messages until the socket closes, then shut the link down."""
        reason = "closed"
        try:
            async for message in self.ws:
                try:
                    await self.handle(message)
                except ProtocolError:
                    raise
                except Exception as e:
                    logger.error(f"Error handling model message: {e}", exc_info=True)
        except ConnectionClosedOK as e:
            reason = f"closed normally ({e.code})" if e.code else "closed normally"
            logger.info(f"Model socket {reason}")
        except ConnectionClosed as e:
            reason = f"closed unexpectedly ({e.code} {e.reason})"
            logger.warning(f"Model socket {reason}")
        except ProtocolError as e:
            reason = f"protocol error: {e}"
            logger.error(f"Model link {reason}")
            if self._ready is not None and not self._ready.done():
                self._ready.set_exception(e)

        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(TransportError(f"Model socket {reason} before setup completed"))

        if self.state in (LinkState.CLOSING, LinkState.CLOSED):
            return

        was_ready = self.state is LinkState.READY
        await self.close()
        if was_ready:
            await self.listener.on_model_closed(reason)

    async def handle(self, raw) -> None:
        """
        Process one message from the model.

        Before the link is ready only ``setupComplete`` is accepted; anything
        else, including malformed JSON, raises ProtocolError. Once ready,
        malformed messages are logged and ignored.
        """
        try:
            message = ServerMessage.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            if self.state is not LinkState.READY:
                raise ProtocolError(f"Malformed message during setup: {e}") from e
            logger.warning(f"Ignoring malformed model message: {e}")
            return

        if message.setupComplete is not None:
            if self.state is LinkState.AWAITING_SETUP_ACK:
                await self._on_setup_complete()
            else:
                logger.warning(f"Ignoring setupComplete in state {self.state.value}")
            return

        if self.state is not LinkState.READY:
            raise ProtocolError(f"Unexpected model message before setupComplete: {list(message.model_fields_set)}")

        if message.serverContent is not None:
            await self._on_server_content(message.serverContent)
        if message.toolCall is not None:
            self._on_tool_call(message.toolCall)
        if message.goAway is not None:
            logger.warning(f"Model server sent goAway: {message.goAway}")

    async def _on_setup_complete(self) -> None:
        logger.info("Model setup complete - LIVE")

        flushed = 0
        for frame in self.outbound_queue.drain():
            await self._send_frame(frame)
            flushed += 1
        if flushed:
            logger.info(f"Flushed {flushed} queued audio frames to model")

        self._transition(LinkState.READY)
        if not self._ready.done():
            self._ready.set_result(True)

        if self.settings.greeting_enabled and not self._greeting_sent:
            self._greeting_sent = True
            await self._send_json(build_user_turn(GREETING_PROMPT.format(company=self.context.company_name)))
            logger.info("Greeting turn sent to model")

        self._keepalive_task = asyncio.create_task(self._keepalive_loop())

    async def _on_server_content(self, content: ServerContent) -> None:
        if content.interrupted:
            logger.info("Model reported interruption (barge-in)")
            await self.listener.on_interrupted()

        if content.modelTurn is not None:
            for part in content.modelTurn.parts:
                if part.inlineData is not None and part.inlineData.mimeType.startswith("audio/"):
                    try:
                        mulaw = pcm24k_to_mulaw8k(decode_base64_audio(part.inlineData.data))
                    except CodecError as e:
                        logger.warning(f"Dropping model audio chunk: {e}")
                        continue
                    if mulaw:
                        await self.listener.on_model_audio(mulaw)
                if part.text:
                    logger.info(f"Model: {part.text[:80]}")

        if content.userTurn is not None:
            for part in content.userTurn.parts:
                if part.text:
                    logger.info(f"Caller: \"{part.text}\"")

        if content.turnComplete:
            logger.debug("Model turn complete")
            await self.listener.on_turn_complete()

    def _on_tool_call(self, tool_call: ToolCall) -> None:
        pending = [PendingToolCall(call.id, call.name, call.args) for call in tool_call.functionCalls]
        if not pending:
            logger.warning("Received toolCall without functionCalls")
            return
        logger.info(f"Model requested {len(pending)} tool call(s): {[call.name for call in pending]}")
        # Run the batch in the background so audio keeps flowing
        task = asyncio.create_task(self._run_tool_calls(pending))
        self._tool_tasks.add(task)
        task.add_done_callback(self._tool_tasks.discard)

    async def _run_tool_calls(self, pending: List[PendingToolCall]) -> None:
        results = await asyncio.gather(*(self._dispatch_one(call) for call in pending))
        responses = [
            FunctionResponse(id=call.call_id, name=call.name, response=result)
            for call, result in zip(pending, results)
        ]
        try:
            await self._send_json(build_tool_response(responses))
            logger.info(f"Sent tool response for {len(responses)} call(s)")
        except TransportError as e:
            logger.warning(f"Could not deliver tool response: {e}")

    async def _dispatch_one(self, call: PendingToolCall) -> Dict[str, Any]:
        if not self.tools_enabled:
            return {"error": f"Tool '{call.name}' is not available"}
        try:
            result = await self.dispatcher.dispatch(call.name, self.context.context_id, call.args)
        except Exception as e:
            logger.error(f"Unexpected error dispatching '{call.name}': {e}", exc_info=True)
            result = {"error": str(e)}
        logger.debug(f"Tool call '{call.name}' resolved after {time.time() - call.issued_at:.2f}s")
        return result

    async def _keepalive_loop(self) -> None:
        """Send a short burst of silence at a fixed interval while ready."""
        frame = silence(AudioEncoding.PCM_16K, KEEPALIVE_SILENCE_MS)
        while self.state is LinkState.READY:
            await asyncio.sleep(self.settings.keepalive_interval_s)
            if self.state is not LinkState.READY:
                break
            try:
                await self._send_json(build_realtime_input(encode_base64_audio(frame.data), MODEL_INPUT_MIME_TYPE))
                logger.debug("Model keep-alive sent")
            except TransportError as e:
                logger.debug(f"Keep-alive stopped: {e}")
                break

    async def close(self) -> None:
        """Close the model socket and cancel all link tasks. Safe to call repeatedly."""
        if self.state in (LinkState.CLOSING, LinkState.CLOSED):
            return
        self._transition(LinkState.CLOSING)
        logger.info(f"Closing model link for context {self.context.context_id}")

        current = asyncio.current_task()
        tasks = [
            task
            for task in (self._keepalive_task, self._recv_task, *self._tool_tasks)
            if task is not None and task is not current and not task.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._ready is not None and not self._ready.done():
            self._ready.cancel()

        if self.ws is not None:
            try:
                await self.ws.close()
            except Exception as e:
                logger.warning(f"Error closing model socket: {e}")

        self.outbound_queue.clear()
        self._transition(LinkState.CLOSED)
        logger.info(f"Model link closed ({self.frames_sent} audio frames sent)")
