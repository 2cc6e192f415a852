"""
Pydantic models for the Gemini Live BidiGenerateContent message structures.

This module provides type-safe builders for the messages the bridge sends to the
speech model (setup, realtime input, scripted turns, tool responses) and parsers
for the server messages it receives.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MessageRole(str, Enum):
    """Role of a participant in a conversation turn."""
    USER = "user"
    MODEL = "model"


# Tool declarations

class ToolDeclaration(BaseModel):
    """A callable function the model may invoke."""
    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    @field_validator("name")
    def validate_name(cls, v):
        """Function names must be non-empty identifiers."""
        if not v or not v.replace("_", "").isalnum():
            raise ValueError(f"Invalid function name: {v!r}")
        return v


# Outgoing messages

class TextPart(BaseModel):
    text: str


class Content(BaseModel):
    role: Optional[MessageRole] = None
    parts: List[TextPart]


class PrebuiltVoiceConfig(BaseModel):
    voice_name: str


class VoiceConfig(BaseModel):
    prebuilt_voice_config: PrebuiltVoiceConfig


class SpeechConfig(BaseModel):
    voice_config: VoiceConfig


class GenerationConfig(BaseModel):
    response_modalities: List[str] = Field(default_factory=lambda: ["AUDIO"])
    speech_config: SpeechConfig


class FunctionDeclarations(BaseModel):
    function_declarations: List[ToolDeclaration]


class Setup(BaseModel):
    model: str
    generation_config: GenerationConfig
    system_instruction: Content
    tools: Optional[List[FunctionDeclarations]] = None


class SetupMessage(BaseModel):
    """First and only setup message sent on a new model connection."""
    setup: Setup


class MediaChunk(BaseModel):
    mime_type: str
    data: str


class RealtimeInput(BaseModel):
    media_chunks: List[MediaChunk]


class RealtimeInputMessage(BaseModel):
    """One chunk of caller audio streamed to the model."""
    realtime_input: RealtimeInput


class ClientContent(BaseModel):
    turns: List[Content]
    turn_complete: bool = True


class ClientContentMessage(BaseModel):
    """A scripted conversation turn, used for the opening greeting."""
    client_content: ClientContent


class FunctionResponse(BaseModel):
    id: Optional[str] = None
    name: str
    response: Dict[str, Any]


class ToolResponse(BaseModel):
    function_responses: List[FunctionResponse]


class ToolResponseMessage(BaseModel):
    """Results for one batch of model function calls."""
    tool_response: ToolResponse


# Incoming messages

class InlineData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mimeType: str = ""
    data: str = ""


class Part(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: Optional[str] = None
    inlineData: Optional[InlineData] = None


class Turn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    parts: List[Part] = Field(default_factory=list)


class ServerContent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    modelTurn: Optional[Turn] = None
    userTurn: Optional[Turn] = None
    turnComplete: bool = False
    interrupted: bool = False


class FunctionCall(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ToolCall(BaseModel):
    model_config = ConfigDict(extra="ignore")

    functionCalls: List[FunctionCall] = Field(default_factory=list)


class ServerMessage(BaseModel):
    """Any message received from the model endpoint."""
    model_config = ConfigDict(extra="ignore")

    setupComplete: Optional[Dict[str, Any]] = None
    serverContent: Optional[ServerContent] = None
    toolCall: Optional[ToolCall] = None
    goAway: Optional[Dict[str, Any]] = None


# Builders

def build_setup_message(
    model: str,
    voice: str,
    system_instruction: str,
    tools: Optional[List[ToolDeclaration]] = None,
) -> Dict[str, Any]:
    """Build the setup message as a JSON-ready dict."""
    setup = Setup(
        model=model,
        generation_config=GenerationConfig(
            speech_config=SpeechConfig(
                voice_config=VoiceConfig(
                    prebuilt_voice_config=PrebuiltVoiceConfig(voice_name=voice)
                )
            )
        ),
        system_instruction=Content(parts=[TextPart(text=system_instruction)]),
        tools=[FunctionDeclarations(function_declarations=tools)] if tools else None,
    )
    return SetupMessage(setup=setup).model_dump(mode="json", exclude_none=True)


def build_realtime_input(data_b64: str, mime_type: str) -> Dict[str, Any]:
    return RealtimeInputMessage(
        realtime_input=RealtimeInput(
            media_chunks=[MediaChunk(mime_type=mime_type, data=data_b64)]
        )
    ).model_dump(mode="json")


def build_user_turn(text: str) -> Dict[str, Any]:
    """Build a complete user turn carrying a single text part."""
    return ClientContentMessage(
        client_content=ClientContent(
            turns=[Content(role=MessageRole.USER, parts=[TextPart(text=text)])],
            turn_complete=True,
        )
    ).model_dump(mode="json", exclude_none=True)


def build_tool_response(responses: List[FunctionResponse]) -> Dict[str, Any]:
    return ToolResponseMessage(
        tool_response=ToolResponse(function_responses=responses)
    ).model_dump(mode="json", exclude_none=True)
