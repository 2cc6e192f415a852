"""
Pydantic models for the telephony media-stream WebSocket protocol.

This module defines structured data models for the JSON frames exchanged with the
telephony media-streaming client. Every frame is keyed by its ``event`` field:
``connected``, ``start``, ``media`` and ``stop`` arrive from the client;
``media``, ``clear`` and ``mark`` are sent back to it.
"""

from typing import Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from voice_bridge.config.constants import EVENT_CLEAR, EVENT_MARK, EVENT_MEDIA


class BaseEvent(BaseModel):
    """Base model for all telephony frames."""

    model_config = ConfigDict(extra="ignore")

    event: str = Field(..., description="Event name")


# Incoming events
class ConnectedEvent(BaseEvent):
    """Sent once when the media stream socket opens."""

    event: Literal["connected"]
    protocol: Optional[str] = None
    version: Optional[str] = None


class StartMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    streamSid: str = Field(..., description="Stream identifier")
    callSid: Optional[str] = None
    customParameters: Dict[str, str] = Field(default_factory=dict)

    @field_validator("streamSid")
    def validate_stream_sid(cls, v):
        """Stream identifier must not be blank."""
        if not v.strip():
            raise ValueError("streamSid cannot be empty")
        return v

    @field_validator("customParameters", mode="before")
    def coerce_parameters(cls, v):
        """Treat a null parameter map as empty and stringify values."""
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("customParameters must be an object")
        return {str(key): "" if value is None else str(value) for key, value in v.items()}


class StartEvent(BaseEvent):
    """Sent once with the stream identifier and call parameters."""

    event: Literal["start"]
    streamSid: Optional[str] = None
    start: StartMetadata


class MediaPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payload: str = Field(..., description="Base64-encoded mu-law 8 kHz audio")
    track: Optional[str] = None
    chunk: Optional[str] = None
    timestamp: Optional[str] = None


class MediaEvent(BaseEvent):
    """One chunk of caller audio."""

    event: Literal["media"]
    streamSid: Optional[str] = None
    media: MediaPayload


class StopEvent(BaseEvent):
    """Sent when the call ends."""

    event: Literal["stop"]
    streamSid: Optional[str] = None


# Outgoing events
class OutboundMediaPayload(BaseModel):
    payload: str


class OutboundMediaEvent(BaseModel):
    """Audio for the caller to hear."""

    event: Literal["media"] = EVENT_MEDIA
    streamSid: str
    media: OutboundMediaPayload


class ClearEvent(BaseModel):
    """Discard any audio queued for playback."""

    event: Literal["clear"] = EVENT_CLEAR
    streamSid: str


class MarkName(BaseModel):
    name: str


class MarkEvent(BaseModel):
    """A named marker placed in the playback stream."""

    event: Literal["mark"] = EVENT_MARK
    streamSid: str
    mark: MarkName


IncomingEvent = Union[ConnectedEvent, StartEvent, MediaEvent, StopEvent]

OutgoingEvent = Union[OutboundMediaEvent, ClearEvent, MarkEvent]


def media_event(stream_sid: str, payload_b64: str) -> OutboundMediaEvent:
    return OutboundMediaEvent(streamSid=stream_sid, media=OutboundMediaPayload(payload=payload_b64))


def clear_event(stream_sid: str) -> ClearEvent:
    return ClearEvent(streamSid=stream_sid)


def mark_event(stream_sid: str, name: str) -> MarkEvent:
    return MarkEvent(streamSid=stream_sid, mark=MarkName(name=name))
