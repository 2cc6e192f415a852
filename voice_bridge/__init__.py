"""
Sarah Media Stream Bridge - telephony media streams to Gemini Live

This application connects a telephony media-streaming client (mu-law 8 kHz audio in
JSON frames over WebSocket) to the Gemini Live speech model (PCM 16 kHz in, 24 kHz
out, over its own JSON WebSocket protocol) so a phone caller can talk to a remote
AI voice agent.

Architecture Overview:
- FastAPI server exposing the telephony WebSocket endpoint and a health check
- One TelephonySession per call, paired with exactly one ModelLink
- mu-law codec and sample-rate conversion between the two sides
- Tool calls from the model forwarded to a business backend over HTTP

Key Components:
- audio: mu-law codec and 8k/16k/24k resampling
- bot: ModelLink (speech model connection) and TelephonySession (per-call bridge)
- config: constants, settings and logging setup
- handlers: handlers for telephony stream events
- models: telephony and model message schemas, session state
- services: the tool dispatcher for the business backend
- websocket_manager: accepts telephony sockets and routes their frames

Getting Started:
1. Set up environment variables:
   - GOOGLE_GEMINI_API_KEY: Gemini API key (required)
   - SARAH_BRIDGE_SECRET: shared secret expected in the start event (optional)
   - TOOL_BACKEND_URL / TOOL_BACKEND_TOKEN / TOOL_DECLARATIONS_FILE: tool calling (optional)
   - PORT / HOST / LOG_LEVEL

2. Start the server:
   ```bash
   python run.py
   ```

3. Point the telephony media stream at ws://your-server:8080/ and pass the
   secret, companyName, systemPrompt, voice and scenario as custom parameters.
"""
