"""
Handles caller audio frames from the telephony media stream.

Audio arrives as ``media`` frames carrying base64 mu-law 8 kHz payloads. This is
the hot path, so validation is kept to the fields that are actually used.
"""

import logging
import time
from typing import Any, Dict

from voice_bridge.bot.telephony_session import TelephonySession
from voice_bridge.config.constants import LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)


async def handle_media(message: Dict[str, Any], session: TelephonySession) -> None:
    """
    Handle one ``media`` frame from the caller.

    Args:
        message: The media frame with ``media.payload``
        session: The call session bound to this socket
    """
    media = message.get("media")
    payload = media.get("payload") if isinstance(media, dict) else None
    if not payload:
        logger.warning("Missing payload in media message")
        return

    start_time = time.time_ns() // 1_000_000  # ms
    await session.receive_audio(payload)

    processing_time = (time.time_ns() // 1_000_000) - start_time
    if processing_time > 10:  # Only log if processing took more than 10ms
        logger.debug(f"Caller audio handling took {processing_time}ms for stream: {session.stream_sid}")
