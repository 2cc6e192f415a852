import asyncio
import base64
from unittest.mock import AsyncMock, patch

import httpx
import numpy as np
import pytest

from conftest import eventually
from voice_bridge.audio.codec import AudioEncoding, AudioFrame
from voice_bridge.bot.model_link import LinkState, ModelLink, build_system_instruction, resolve_voice
from voice_bridge.exceptions import CodecError, ProtocolError, TransportError
from voice_bridge.models.gemini_schemas import ToolDeclaration
from voice_bridge.models.session import OutboundQueue, SessionContext
from voice_bridge.services.tool_dispatcher import ToolDispatcher

CONNECT = "voice_bridge.bot.model_link.websockets.connect"


def make_context(**overrides):
    values = {"company_name": "Acme Roofing", "voice": "Puck", "context_id": "acme-1"}
    values.update(overrides)
    return SessionContext(**values)


def pcm_frame(value=0, samples=320):
    return AudioFrame(AudioEncoding.PCM_16K, np.full(samples, value, dtype="<i2").tobytes())


def audio_chunk(samples):
    data = np.asarray(samples, dtype="<i2").tobytes()
    return {"inlineData": {"mimeType": "audio/pcm;rate=24000", "data": base64.b64encode(data).decode()}}


async def open_link(link, model_socket):
    """Run the handshake against the fake model socket"""
    task = asyncio.create_task(link.connect())
    await eventually(lambda: model_socket.sent)
    model_socket.push({"setupComplete": {}})
    await task


def test_resolve_voice():
    assert resolve_voice("Puck", "Kore") == "Puck"
    assert resolve_voice("Robot", "Kore") == "Kore"
    assert resolve_voice(None, "Kore") == "Kore"


def test_system_instruction_precedence():
    with_override = build_system_instruction(make_context(system_prompt="Custom prompt."), "Base prompt.")
    assert with_override.startswith("Custom prompt.")
    assert build_system_instruction(make_context(), "Base prompt.").startswith("Base prompt.")
    persona = build_system_instruction(make_context())
    assert "Acme Roofing" in persona
    assert "RULES (VOICE CALL)" in persona


@pytest.mark.asyncio
class TestModelLinkHandshake:

    async def test_setup_then_greeting(self, make_settings, model_socket):
        listener = AsyncMock()
        link = ModelLink(make_settings(), make_context(), listener, OutboundQueue(10))

        with patch(CONNECT, AsyncMock(return_value=model_socket)) as connect:
            await open_link(link, model_socket)

        assert link.state is LinkState.READY
        assert "key=test-api-key" in connect.call_args[0][0]
        setup, greeting = model_socket.messages()
        voice = setup["setup"]["generation_config"]["speech_config"]["voice_config"]
        assert voice["prebuilt_voice_config"]["voice_name"] == "Puck"
        assert "tools" not in setup["setup"]
        assert "Acme Roofing" in greeting["client_content"]["turns"][0]["parts"][0]["text"]
        await link.close()
        assert link.state is LinkState.CLOSED
        assert model_socket.closed

    async def test_queued_audio_is_flushed_in_order_before_greeting(self, make_settings, model_socket):
        queue = OutboundQueue(10)
        link = ModelLink(make_settings(), make_context(), AsyncMock(), queue)

        await link.send_audio(pcm_frame(1))
        await link.send_audio(pcm_frame(2))
        assert len(queue) == 2

        with patch(CONNECT, AsyncMock(return_value=model_socket)):
            await open_link(link, model_socket)

        messages = model_socket.messages()
        assert [next(iter(m)) for m in messages] == ["setup", "realtime_input", "realtime_input", "client_content"]
        first = base64.b64decode(messages[1]["realtime_input"]["media_chunks"][0]["data"])
        second = base64.b64decode(messages[2]["realtime_input"]["media_chunks"][0]["data"])
        assert first[0] == 1 and second[0] == 2
        assert len(queue) == 0
        await link.close()

    async def test_no_greeting_when_disabled(self, make_settings, model_socket):
        link = ModelLink(make_settings(greeting_enabled=False), make_context(), AsyncMock(), OutboundQueue(10))
        with patch(CONNECT, AsyncMock(return_value=model_socket)):
            await open_link(link, model_socket)
        assert [next(iter(m)) for m in model_socket.messages()] == ["setup"]
        await link.close()

    async def test_connect_failure(self, make_settings):
        link = ModelLink(make_settings(), make_context(), AsyncMock(), OutboundQueue(10))
        with patch(CONNECT, AsyncMock(side_effect=OSError("connection refused"))):
            with pytest.raises(TransportError):
                await link.connect()
        assert link.state is LinkState.CLOSED

    async def test_unexpected_message_during_setup_is_fatal(self, make_settings, model_socket):
        listener = AsyncMock()
        link = ModelLink(make_settings(), make_context(), listener, OutboundQueue(10))
        with patch(CONNECT, AsyncMock(return_value=model_socket)):
            task = asyncio.create_task(link.connect())
            await eventually(lambda: model_socket.sent)
            model_socket.push({"serverContent": {"turnComplete": True}})
            with pytest.raises(ProtocolError):
                await task
        assert link.state is LinkState.CLOSED
        listener.on_model_closed.assert_not_awaited()

    async def test_malformed_message_during_setup_is_fatal(self, make_settings, model_socket):
        link = ModelLink(make_settings(), make_context(), AsyncMock(), OutboundQueue(10))
        with patch(CONNECT, AsyncMock(return_value=model_socket)):
            task = asyncio.create_task(link.connect())
            await eventually(lambda: model_socket.sent)
            model_socket.push_raw("{not json")
            with pytest.raises(ProtocolError):
                await task
        assert link.state is LinkState.CLOSED

    async def test_setup_timeout(self, make_settings, model_socket):
        link = ModelLink(make_settings(setup_timeout_s=0.05), make_context(), AsyncMock(), OutboundQueue(10))
        with patch(CONNECT, AsyncMock(return_value=model_socket)):
            with pytest.raises(TransportError):
                await link.connect()
        assert link.state is LinkState.CLOSED
        assert model_socket.closed

    async def test_socket_closed_before_setup_complete(self, make_settings, model_socket):
        link = ModelLink(make_settings(), make_context(), AsyncMock(), OutboundQueue(10))
        with patch(CONNECT, AsyncMock(return_value=model_socket)):
            task = asyncio.create_task(link.connect())
            await eventually(lambda: model_socket.sent)
            model_socket.hang_up()
            with pytest.raises(TransportError):
                await task
        assert link.state is LinkState.CLOSED


@pytest.mark.asyncio
class TestModelLinkStreaming:

    async def test_audio_is_converted_for_the_caller(self, make_settings, model_socket):
        listener = AsyncMock()
        link = ModelLink(make_settings(), make_context(), listener, OutboundQueue(10))
        with patch(CONNECT, AsyncMock(return_value=model_socket)):
            await open_link(link, model_socket)

        model_socket.push({"serverContent": {"modelTurn": {"parts": [audio_chunk([0] * 6)]}}})
        await eventually(lambda: listener.on_model_audio.await_count)
        listener.on_model_audio.assert_awaited_once_with(b"\xff\xff")
        await link.close()

    async def test_bad_audio_chunk_is_dropped(self, make_settings, model_socket):
        listener = AsyncMock()
        link = ModelLink(make_settings(), make_context(), listener, OutboundQueue(10))
        with patch(CONNECT, AsyncMock(return_value=model_socket)):
            await open_link(link, model_socket)

        bad = {"inlineData": {"mimeType": "audio/pcm;rate=24000", "data": base64.b64encode(b"\x00").decode()}}
        model_socket.push({"serverContent": {"modelTurn": {"parts": [bad]}, "turnComplete": True}})
        await eventually(lambda: listener.on_turn_complete.await_count)
        listener.on_model_audio.assert_not_awaited()
        assert link.ready
        await link.close()

    async def test_interrupted_is_reported_before_turn_complete(self, make_settings, model_socket):
        listener = AsyncMock()
        link = ModelLink(make_settings(), make_context(), listener, OutboundQueue(10))
        with patch(CONNECT, AsyncMock(return_value=model_socket)):
            await open_link(link, model_socket)

        model_socket.push({"serverContent": {"interrupted": True}})
        model_socket.push({"serverContent": {"turnComplete": True}})
        await eventually(lambda: listener.on_turn_complete.await_count)

        names = [c[0] for c in listener.mock_calls]
        assert names.index("on_interrupted") < names.index("on_turn_complete")
        await link.close()

    async def test_malformed_message_after_ready_is_ignored(self, make_settings, model_socket):
        listener = AsyncMock()
        link = ModelLink(make_settings(), make_context(), listener, OutboundQueue(10))
        with patch(CONNECT, AsyncMock(return_value=model_socket)):
            await open_link(link, model_socket)

        model_socket.push_raw("{not json")
        model_socket.push({"serverContent": {"turnComplete": True}})
        await eventually(lambda: listener.on_turn_complete.await_count)
        assert link.ready
        await link.close()

    async def test_live_audio_is_sent_directly(self, make_settings, model_socket):
        link = ModelLink(make_settings(greeting_enabled=False), make_context(), AsyncMock(), OutboundQueue(10))
        with patch(CONNECT, AsyncMock(return_value=model_socket)):
            await open_link(link, model_socket)

        await link.send_audio(pcm_frame(5))
        chunk = model_socket.messages()[-1]["realtime_input"]["media_chunks"][0]
        assert chunk["mime_type"] == "audio/pcm;rate=16000"
        assert link.frames_sent == 1
        await link.close()

    async def test_wrong_encoding_is_rejected(self, make_settings):
        link = ModelLink(make_settings(), make_context(), AsyncMock(), OutboundQueue(10))
        with pytest.raises(CodecError):
            await link.send_audio(AudioFrame(AudioEncoding.MULAW_8K, b"\xff" * 160))

    async def test_audio_after_close_is_dropped(self, make_settings, model_socket):
        queue = OutboundQueue(10)
        link = ModelLink(make_settings(greeting_enabled=False), make_context(), AsyncMock(), queue)
        with patch(CONNECT, AsyncMock(return_value=model_socket)):
            await open_link(link, model_socket)
        await link.close()
        sent = len(model_socket.sent)

        await link.send_audio(pcm_frame(1))
        assert len(model_socket.sent) == sent
        assert len(queue) == 0

    async def test_keepalive_sends_silence(self, make_settings, model_socket):
        settings = make_settings(greeting_enabled=False, keepalive_interval_s=0.01)
        link = ModelLink(settings, make_context(), AsyncMock(), OutboundQueue(10))
        with patch(CONNECT, AsyncMock(return_value=model_socket)):
            await open_link(link, model_socket)

        await eventually(lambda: len(model_socket.sent) >= 2)
        chunk = model_socket.messages()[1]["realtime_input"]["media_chunks"][0]
        assert base64.b64decode(chunk["data"]) == b"\x00" * 640
        await link.close()

    async def test_remote_close_after_ready_notifies_listener(self, make_settings, model_socket):
        listener = AsyncMock()
        link = ModelLink(make_settings(), make_context(), listener, OutboundQueue(10))
        with patch(CONNECT, AsyncMock(return_value=model_socket)):
            await open_link(link, model_socket)

        model_socket.hang_up()
        await eventually(lambda: listener.on_model_closed.await_count)
        assert link.state is LinkState.CLOSED

    async def test_close_is_idempotent(self, make_settings, model_socket):
        link = ModelLink(make_settings(), make_context(), AsyncMock(), OutboundQueue(10))
        with patch(CONNECT, AsyncMock(return_value=model_socket)):
            await open_link(link, model_socket)
        await link.close()
        await link.close()
        assert link.state is LinkState.CLOSED


@pytest.mark.asyncio
class TestModelLinkTools:

    def tool_settings(self, make_settings):
        return make_settings(
            greeting_enabled=False,
            backend_url="https://backend.test/tools",
            tools=[ToolDeclaration(name="book_slot", description="Book a slot")],
        )

    async def test_tools_are_declared_in_setup(self, make_settings, model_socket):
        dispatcher = ToolDispatcher("https://backend.test/tools")
        link = ModelLink(self.tool_settings(make_settings), make_context(), AsyncMock(), OutboundQueue(10), dispatcher)
        with patch(CONNECT, AsyncMock(return_value=model_socket)):
            await open_link(link, model_socket)

        setup = model_socket.messages()[0]["setup"]
        assert setup["tools"][0]["function_declarations"][0]["name"] == "book_slot"
        await link.close()

    async def test_backend_failure_yields_exactly_one_tool_response(self, make_settings, model_socket):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        dispatcher = ToolDispatcher("https://backend.test/tools", client=client)
        link = ModelLink(self.tool_settings(make_settings), make_context(), AsyncMock(), OutboundQueue(10), dispatcher)
        with patch(CONNECT, AsyncMock(return_value=model_socket)):
            await open_link(link, model_socket)

        model_socket.push({
            "toolCall": {
                "functionCalls": [
                    {"id": "call-1", "name": "book_slot", "args": {"time": "09:00"}},
                    {"id": "call-2", "name": "book_slot", "args": {"time": "10:00"}},
                ]
            }
        })
        await eventually(lambda: any("tool_response" in m for m in model_socket.messages()))
        await asyncio.sleep(0.02)

        responses = [m for m in model_socket.messages() if "tool_response" in m]
        assert len(responses) == 1
        results = responses[0]["tool_response"]["function_responses"]
        assert [r["id"] for r in results] == ["call-1", "call-2"]
        assert all(r["response"] == {"error": "Backend returned 500"} for r in results)
        await link.close()
        await dispatcher.aclose()

    async def test_audio_keeps_flowing_while_tool_call_is_outstanding(self, make_settings, model_socket):
        backend_called = asyncio.Event()
        release_backend = asyncio.Event()

        async def slow_backend(request):
            backend_called.set()
            await release_backend.wait()
            return httpx.Response(200, json={"booked": True})

        client = httpx.AsyncClient(transport=httpx.MockTransport(slow_backend))
        dispatcher = ToolDispatcher("https://backend.test/tools", client=client)
        listener = AsyncMock()
        link = ModelLink(self.tool_settings(make_settings), make_context(), listener, OutboundQueue(10), dispatcher)
        with patch(CONNECT, AsyncMock(return_value=model_socket)):
            await open_link(link, model_socket)

        model_socket.push({"toolCall": {"functionCalls": [{"id": "call-1", "name": "book_slot"}]}})
        await eventually(backend_called.is_set)
        model_socket.push({"serverContent": {"modelTurn": {"parts": [audio_chunk([0] * 6)]}, "interrupted": True}})
        await eventually(lambda: listener.on_model_audio.await_count)

        listener.on_interrupted.assert_awaited_once()
        assert not any("tool_response" in m for m in model_socket.messages())

        release_backend.set()
        await eventually(lambda: any("tool_response" in m for m in model_socket.messages()))
        await asyncio.sleep(0.02)
        responses = [m for m in model_socket.messages() if "tool_response" in m]
        assert len(responses) == 1
        assert responses[0]["tool_response"]["function_responses"][0]["response"] == {"booked": True}
        await link.close()
        await dispatcher.aclose()

    async def test_tool_call_without_backend(self, make_settings, model_socket):
        link = ModelLink(make_settings(greeting_enabled=False), make_context(), AsyncMock(), OutboundQueue(10))
        with patch(CONNECT, AsyncMock(return_value=model_socket)):
            await open_link(link, model_socket)

        model_socket.push({"toolCall": {"functionCalls": [{"id": "c1", "name": "book_slot"}]}})
        await eventually(lambda: any("tool_response" in m for m in model_socket.messages()))

        response = model_socket.messages()[-1]["tool_response"]["function_responses"][0]
        assert response == {"id": "c1", "name": "book_slot", "response": {"error": "Tool 'book_slot' is not available"}}
        await link.close()
