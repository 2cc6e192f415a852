"""
Constants and configuration values used throughout the application.

This module defines constants that are used across different parts of the application,
providing a centralized location for protocol names, audio formats and model defaults
so both sockets of the bridge agree on them.
"""

# Logger name used throughout the application
LOGGER_NAME = "voice_bridge"

SERVICE_NAME = "sarah-media-stream-bridge"

# Default Gemini Live model and endpoint
DEFAULT_MODEL = "models/gemini-2.0-flash-exp"
DEFAULT_MODEL_WS_URL = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1alpha.GenerativeService.BidiGenerateContent"
)

# Prebuilt voices accepted by the model endpoint
SUPPORTED_VOICES = ("Puck", "Charon", "Kore", "Fenrir", "Aoede", "Leda", "Orus", "Zephyr")
DEFAULT_VOICE = "Kore"

DEFAULT_COMPANY_NAME = "CompanySync"
DEFAULT_PERSONA = "You are Sarah, a friendly and professional receptionist for {company}."
VOICE_CALL_RULES = """RULES (VOICE CALL):
- Answer directly in 2-3 sentences max. Be natural and warm.
- Never say you're an AI. You are Sarah, a real person.
- After answering, suggest one logical next step.
- Keep responses SHORT - this is a phone call."""
GREETING_PROMPT = (
    'Say exactly this in a warm, friendly tone: '
    '"Hi! This is Sarah from {company}. How can I help you today?"'
)

# Audio format constants
TELEPHONY_SAMPLE_RATE = 8000
MODEL_INPUT_SAMPLE_RATE = 16000
MODEL_OUTPUT_SAMPLE_RATE = 24000
MODEL_INPUT_MIME_TYPE = f"audio/pcm;rate={MODEL_INPUT_SAMPLE_RATE}"

# Timing defaults
DEFAULT_INBOUND_BUFFER_MS = 100
DEFAULT_OUTBOUND_QUEUE_FRAMES = 50
DEFAULT_KEEPALIVE_INTERVAL_S = 15.0
DEFAULT_SETUP_TIMEOUT_S = 10.0
DEFAULT_BACKEND_TIMEOUT_S = 10.0
KEEPALIVE_SILENCE_MS = 20

# Telephony event names
EVENT_CONNECTED = "connected"
EVENT_START = "start"
EVENT_MEDIA = "media"
EVENT_STOP = "stop"
EVENT_CLEAR = "clear"
EVENT_MARK = "mark"

# WebSocket close codes
CLOSE_NORMAL = 1000
CLOSE_POLICY_VIOLATION = 1008
CLOSE_INTERNAL_ERROR = 1011
