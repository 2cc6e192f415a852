"""
Call session state for the media stream bridge.

This module provides the Session record with its validated state machine, the
bounded OutboundQueue used while the model link is still connecting, the
PendingToolCall record, and the SessionRegistry that tracks live sessions for the
health endpoint.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict

from voice_bridge.audio.codec import AudioFrame
from voice_bridge.config.constants import LOGGER_NAME
from voice_bridge.exceptions import ProtocolError

logger = logging.getLogger(LOGGER_NAME)


class SessionState(str, Enum):
    AWAITING_START = "AwaitingStart"
    AUTHENTICATING = "Authenticating"
    CONNECTING_MODEL = "ConnectingModel"
    ACTIVE = "Active"
    DRAINING = "Draining"
    CLOSED = "Closed"


# Allowed forward transitions. Any live state may also move to DRAINING.
SESSION_TRANSITIONS = {
    SessionState.AWAITING_START: {SessionState.AUTHENTICATING},
    SessionState.AUTHENTICATING: {SessionState.CONNECTING_MODEL},
    SessionState.CONNECTING_MODEL: {SessionState.ACTIVE},
    SessionState.ACTIVE: set(),
    SessionState.DRAINING: {SessionState.CLOSED},
    SessionState.CLOSED: set(),
}


class SessionContext(BaseModel):
    """Per-call parameters taken from the start event. Immutable."""

    model_config = ConfigDict(frozen=True)

    company_name: str
    voice: str
    system_prompt: str = ""
    scenario: Optional[str] = None
    context_id: str


@dataclass
class Session:
    """One bridged phone call."""

    stream_sid: Optional[str] = None
    authenticated: bool = False
    context: Optional[SessionContext] = None
    state: SessionState = SessionState.AWAITING_START
    created_at: float = field(default_factory=time.time)

    def transition(self, new_state: SessionState) -> None:
        """
        Move to a new state.

        Raises:
            ProtocolError: If the transition is not allowed from the current state
        """
        allowed = SESSION_TRANSITIONS[self.state]
        if new_state is SessionState.DRAINING and self.state not in (
            SessionState.DRAINING,
            SessionState.CLOSED,
        ):
            allowed = allowed | {SessionState.DRAINING}
        if new_state not in allowed:
            raise ProtocolError(f"Invalid session transition {self.state.value} -> {new_state.value}")
        logger.debug(f"Session {self.stream_sid}: {self.state.value} -> {new_state.value}")
        self.state = new_state

    @property
    def started(self) -> bool:
        return self.state is not SessionState.AWAITING_START

    @property
    def closed(self) -> bool:
        return self.state in (SessionState.DRAINING, SessionState.CLOSED)

    @property
    def age(self) -> float:
        return time.time() - self.created_at


@dataclass
class PendingToolCall:
    """A function call issued by the model and not yet answered."""

    call_id: Optional[str]
    name: str
    args: Dict[str, Any]
    issued_at: float = field(default_factory=time.time)


class OutboundQueue:
    """
    Bounded FIFO of audio frames waiting for the model link to become ready.

    When full, the oldest frame is dropped to make room for the new one, so the
    freshest audio is kept and relative order is preserved.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.capacity = capacity
        self._frames: Deque[AudioFrame] = deque()
        self.dropped = 0

    def push(self, frame: AudioFrame) -> None:
        if len(self._frames) >= self.capacity:
            self._frames.popleft()
            self.dropped += 1
            logger.warning(f"Outbound queue full, dropped oldest frame (total dropped: {self.dropped})")
        self._frames.append(frame)

    def pop(self) -> Optional[AudioFrame]:
        if not self._frames:
            return None
        return self._frames.popleft()

    def drain(self) -> Iterator[AudioFrame]:
        """Yield queued frames oldest first, removing them as they go."""
        while self._frames:
            yield self._frames.popleft()

    def clear(self) -> None:
        self._frames.clear()

    def __len__(self) -> int:
        return len(self._frames)

    def __bool__(self) -> bool:
        return bool(self._frames)


class SessionRegistry:
    """
    Tracks live sessions for observability.

    Nothing in the relay path reads from the registry; it only backs the
    active session count reported by the health endpoint.
    """

    def __init__(self):
        self.active_sessions: Dict[int, Any] = {}

    def add(self, session: Any) -> None:
        self.active_sessions[id(session)] = session

    def remove(self, session: Any) -> None:
        self.active_sessions.pop(id(session), None)

    def get_all(self) -> List[Any]:
        return list(self.active_sessions.values())

    def __len__(self) -> int:
        return len(self.active_sessions)
