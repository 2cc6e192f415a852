"""
Environment-driven settings for the bridge.

Settings are read once at startup from the process environment (and a ``.env``
file when present) and validated with pydantic. A missing model credential or an
invalid value raises ConfigError so the server never starts half-configured.
"""

import json
import logging
import os
from pathlib import Path
from typing import List, Mapping, Optional

import dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from voice_bridge.config.constants import (
    DEFAULT_BACKEND_TIMEOUT_S,
    DEFAULT_INBOUND_BUFFER_MS,
    DEFAULT_KEEPALIVE_INTERVAL_S,
    DEFAULT_MODEL,
    DEFAULT_MODEL_WS_URL,
    DEFAULT_OUTBOUND_QUEUE_FRAMES,
    DEFAULT_SETUP_TIMEOUT_S,
    DEFAULT_VOICE,
    LOGGER_NAME,
    SUPPORTED_VOICES,
)
from voice_bridge.exceptions import ConfigError
from voice_bridge.models.gemini_schemas import ToolDeclaration

logger = logging.getLogger(LOGGER_NAME)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def load_env_file(path: Path = Path(".") / ".env") -> None:
    """Load environment variables from a .env file if it exists."""
    if path.exists():
        dotenv.load_dotenv(path)


class BridgeSettings(BaseModel):
    """Validated deployment profile for one bridge process."""

    api_key: str = Field(..., min_length=1)
    bridge_secret: Optional[str] = None
    model: str = DEFAULT_MODEL
    model_ws_url: str = DEFAULT_MODEL_WS_URL
    system_prompt: str = ""
    default_voice: str = DEFAULT_VOICE
    greeting_enabled: bool = True
    turn_marks_enabled: bool = True
    inbound_buffer_ms: int = Field(DEFAULT_INBOUND_BUFFER_MS, ge=0, le=1000)
    outbound_queue_frames: int = Field(DEFAULT_OUTBOUND_QUEUE_FRAMES, ge=1)
    keepalive_interval_s: float = Field(DEFAULT_KEEPALIVE_INTERVAL_S, gt=0)
    setup_timeout_s: float = Field(DEFAULT_SETUP_TIMEOUT_S, gt=0)
    backend_url: Optional[str] = None
    backend_token: str = ""
    backend_timeout_s: float = Field(DEFAULT_BACKEND_TIMEOUT_S, gt=0)
    tools: List[ToolDeclaration] = Field(default_factory=list)
    host: str = "0.0.0.0"
    port: int = 8080

    @field_validator("default_voice")
    def validate_default_voice(cls, v):
        """The fallback voice itself must be one the model knows."""
        if v not in SUPPORTED_VOICES:
            raise ValueError(f"Unsupported voice {v!r}, expected one of {SUPPORTED_VOICES}")
        return v

    @property
    def auth_required(self) -> bool:
        return bool(self.bridge_secret)

    @property
    def tools_enabled(self) -> bool:
        return bool(self.backend_url and self.tools)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "BridgeSettings":
        """
        Build settings from environment variables.

        Args:
            env: Mapping to read from, defaults to os.environ

        Returns:
            BridgeSettings: The validated settings

        Raises:
            ConfigError: If a required value is missing or a value is invalid
        """
        if env is None:
            env = os.environ

        api_key = env.get("GOOGLE_GEMINI_API_KEY", "")
        if not api_key:
            raise ConfigError("GOOGLE_GEMINI_API_KEY environment variable not set")

        values = {
            "api_key": api_key,
            "bridge_secret": env.get("SARAH_BRIDGE_SECRET") or None,
            "model": env.get("GEMINI_MODEL", DEFAULT_MODEL),
            "model_ws_url": env.get("GEMINI_WS_URL", DEFAULT_MODEL_WS_URL),
            "system_prompt": env.get("SYSTEM_PROMPT", ""),
            "default_voice": env.get("DEFAULT_VOICE", DEFAULT_VOICE),
            "greeting_enabled": env.get("GREETING_ENABLED", "true").lower() in _TRUE_VALUES,
            "turn_marks_enabled": env.get("TURN_MARKS_ENABLED", "true").lower() in _TRUE_VALUES,
            "inbound_buffer_ms": env.get("INBOUND_BUFFER_MS", DEFAULT_INBOUND_BUFFER_MS),
            "outbound_queue_frames": env.get("OUTBOUND_QUEUE_FRAMES", DEFAULT_OUTBOUND_QUEUE_FRAMES),
            "keepalive_interval_s": env.get("KEEPALIVE_INTERVAL_S", DEFAULT_KEEPALIVE_INTERVAL_S),
            "setup_timeout_s": env.get("SETUP_TIMEOUT_S", DEFAULT_SETUP_TIMEOUT_S),
            "backend_url": env.get("TOOL_BACKEND_URL") or None,
            "backend_token": env.get("TOOL_BACKEND_TOKEN", ""),
            "tools": load_tool_declarations(env.get("TOOL_DECLARATIONS_FILE")),
            "host": env.get("HOST", "0.0.0.0"),
            "port": env.get("PORT", 8080),
        }

        try:
            settings = cls(**values)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

        if not settings.auth_required:
            logger.warning("SARAH_BRIDGE_SECRET not set - accepting unauthenticated streams")
        if settings.tools and not settings.backend_url:
            logger.warning("Tool declarations loaded but TOOL_BACKEND_URL not set - tools disabled")
        return settings


def load_tool_declarations(path: Optional[str]) -> List[ToolDeclaration]:
    """
    Read tool declarations from a JSON file holding a list of
    ``{"name", "description", "parameters"}`` objects.
    """
    if not path:
        return []
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not read tool declarations from {path}: {e}") from e
    if not isinstance(raw, list):
        raise ConfigError(f"Tool declarations in {path} must be a JSON list")
    try:
        return [ToolDeclaration(**item) for item in raw]
    except (TypeError, ValidationError) as e:
        raise ConfigError(f"Invalid tool declaration in {path}: {e}") from e
