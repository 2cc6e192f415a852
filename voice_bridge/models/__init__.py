"""
Models module for message schemas and call state.

Key components:
- telephony_schemas: Pydantic models for the telephony media-stream frames
  (connected, start, media, stop in; media, clear, mark out).
- gemini_schemas: Pydantic models and builders for Gemini Live messages (setup,
  realtime input, scripted turns, tool responses, server messages).
- session: Session state machine, OutboundQueue, PendingToolCall and the
  SessionRegistry behind the health endpoint.
"""

from voice_bridge.models.session import (
    OutboundQueue,
    PendingToolCall,
    Session,
    SessionContext,
    SessionRegistry,
    SessionState,
)
from voice_bridge.models.telephony_schemas import (
    ClearEvent,
    ConnectedEvent,
    IncomingEvent,
    MarkEvent,
    MediaEvent,
    OutboundMediaEvent,
    OutgoingEvent,
    StartEvent,
    StopEvent,
)
