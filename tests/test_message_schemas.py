import json

import pytest
from pydantic import ValidationError

from voice_bridge.models.gemini_schemas import (
    FunctionResponse,
    ServerMessage,
    ToolDeclaration,
    build_realtime_input,
    build_setup_message,
    build_tool_response,
    build_user_turn,
)
from voice_bridge.models.telephony_schemas import (
    ConnectedEvent,
    MediaEvent,
    StartEvent,
    StopEvent,
    clear_event,
    mark_event,
    media_event,
)


class TestTelephonySchemas:

    def test_start_event(self):
        event = StartEvent(**{
            "event": "start",
            "start": {
                "streamSid": "MZ123",
                "callSid": "CA1",
                "customParameters": {"secret": "s3cret", "companyName": "Acme", "retries": 2},
            },
        })
        assert event.start.streamSid == "MZ123"
        assert event.start.customParameters == {"secret": "s3cret", "companyName": "Acme", "retries": "2"}

    def test_start_event_without_parameters(self):
        event = StartEvent(event="start", start={"streamSid": "MZ1", "customParameters": None})
        assert event.start.customParameters == {}

    def test_start_event_requires_stream_sid(self):
        with pytest.raises(ValidationError):
            StartEvent(event="start", start={"streamSid": "  "})
        with pytest.raises(ValidationError):
            StartEvent(event="start", start={})

    def test_media_event_requires_payload(self):
        assert MediaEvent(event="media", media={"payload": "AAAA"}).media.payload == "AAAA"
        with pytest.raises(ValidationError):
            MediaEvent(event="media", media={})

    def test_connected_and_stop_ignore_extra_fields(self):
        assert ConnectedEvent(event="connected", protocol="Call", extra=1).protocol == "Call"
        assert StopEvent(event="stop", streamSid="MZ1", stop={"callSid": "CA1"}).streamSid == "MZ1"

    def test_wrong_event_name_is_rejected(self):
        with pytest.raises(ValidationError):
            StopEvent(event="start")

    def test_outgoing_events(self):
        assert json.loads(media_event("MZ1", "AAAA").model_dump_json()) == {
            "event": "media", "streamSid": "MZ1", "media": {"payload": "AAAA"}
        }
        assert json.loads(clear_event("MZ1").model_dump_json()) == {"event": "clear", "streamSid": "MZ1"}
        assert json.loads(mark_event("MZ1", "turn-1").model_dump_json()) == {
            "event": "mark", "streamSid": "MZ1", "mark": {"name": "turn-1"}
        }


class TestGeminiSchemas:

    def test_setup_message_without_tools(self):
        message = build_setup_message("models/test", "Puck", "Be nice.")
        setup = message["setup"]
        assert setup["model"] == "models/test"
        assert setup["generation_config"]["response_modalities"] == ["AUDIO"]
        voice = setup["generation_config"]["speech_config"]["voice_config"]["prebuilt_voice_config"]
        assert voice == {"voice_name": "Puck"}
        assert setup["system_instruction"] == {"parts": [{"text": "Be nice."}]}
        assert "tools" not in setup

    def test_setup_message_with_tools(self):
        tools = [ToolDeclaration(name="book_slot", description="Book a slot")]
        setup = build_setup_message("models/test", "Kore", "x", tools=tools)["setup"]
        declarations = setup["tools"][0]["function_declarations"]
        assert declarations[0]["name"] == "book_slot"
        assert declarations[0]["parameters"] == {"type": "object", "properties": {}}

    def test_tool_declaration_name_validation(self):
        with pytest.raises(ValidationError):
            ToolDeclaration(name="bad name")

    def test_realtime_input(self):
        assert build_realtime_input("AAAA", "audio/pcm;rate=16000") == {
            "realtime_input": {"media_chunks": [{"mime_type": "audio/pcm;rate=16000", "data": "AAAA"}]}
        }

    def test_user_turn(self):
        assert build_user_turn("Hello") == {
            "client_content": {
                "turns": [{"role": "user", "parts": [{"text": "Hello"}]}],
                "turn_complete": True,
            }
        }

    def test_tool_response(self):
        message = build_tool_response([
            FunctionResponse(id="c1", name="lookup", response={"ok": True}),
            FunctionResponse(name="other", response={"error": "boom"}),
        ])
        assert message == {
            "tool_response": {
                "function_responses": [
                    {"id": "c1", "name": "lookup", "response": {"ok": True}},
                    {"name": "other", "response": {"error": "boom"}},
                ]
            }
        }

    def test_parse_server_content(self):
        message = ServerMessage.model_validate({
            "serverContent": {
                "modelTurn": {"parts": [{"inlineData": {"mimeType": "audio/pcm;rate=24000", "data": "AAAA"}}]},
                "interrupted": True,
                "usageMetadata": {},
            }
        })
        assert message.setupComplete is None
        assert message.serverContent.interrupted
        assert not message.serverContent.turnComplete
        assert message.serverContent.modelTurn.parts[0].inlineData.data == "AAAA"

    def test_parse_tool_call(self):
        message = ServerMessage.model_validate({
            "toolCall": {"functionCalls": [{"id": "c1", "name": "lookup", "args": {"q": "x"}}]}
        })
        call = message.toolCall.functionCalls[0]
        assert (call.id, call.name, call.args) == ("c1", "lookup", {"q": "x"})

    def test_parse_setup_complete(self):
        assert ServerMessage.model_validate({"setupComplete": {}}).setupComplete == {}
