"""
Bot module bridging telephony calls to the Gemini Live speech model.

Key components:
- ModelLink: one WebSocket connection to the speech model per call. Sends the
  setup message, streams caller audio, demultiplexes model events, answers tool
  calls and keeps the connection alive.
- TelephonySession: the per-call controller. Authenticates the stream, converts
  and buffers caller audio, relays model audio and barge-in, and tears both
  sockets down exactly once.

Usage examples:
```python
from voice_bridge.bot import TelephonySession

session = TelephonySession(websocket, settings, dispatcher=dispatcher)
await session.start(start_event)      # connects the model link in the background
await session.receive_audio(payload)  # base64 mu-law from a media frame
await session.stop()
```
"""

from voice_bridge.bot.model_link import LinkState, ModelLink
from voice_bridge.bot.telephony_session import TelephonySession
