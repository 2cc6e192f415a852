"""
Handles the telephony stream lifecycle events.

This module processes the ``connected``, ``start`` and ``stop`` frames sent by the
telephony media-streaming client and hands them to the call's TelephonySession.
"""

import logging
from typing import Any, Dict

from pydantic import ValidationError

from voice_bridge.bot.telephony_session import TelephonySession
from voice_bridge.config.constants import LOGGER_NAME
from voice_bridge.models.telephony_schemas import ConnectedEvent, StartEvent, StopEvent

logger = logging.getLogger(LOGGER_NAME)


async def handle_connected(message: Dict[str, Any], session: TelephonySession) -> None:
    """
    Handle the ``connected`` frame, sent once when the stream socket opens.

    Nothing is set up yet; the call parameters arrive with ``start``.
    """
    try:
        connected = ConnectedEvent(**message)
        logger.info(f"Telephony stream connected (protocol={connected.protocol}, version={connected.version})")
    except ValidationError as e:
        logger.warning(f"Invalid connected message: {e}")


async def handle_start(message: Dict[str, Any], session: TelephonySession) -> None:
    """
    Handle the ``start`` frame carrying the stream id and custom parameters.

    Args:
        message: The start frame
        session: The call session bound to this socket
    """
    try:
        start = StartEvent(**message)
    except ValidationError as e:
        logger.error(f"Invalid start message: {e}")
        return

    logger.info(f"Stream starting: {start.start.streamSid}")
    await session.start(start)


async def handle_stop(message: Dict[str, Any], session: TelephonySession) -> None:
    """
    Handle the ``stop`` frame. The session is torn down; a stop that arrives
    before ``start`` does nothing.
    """
    try:
        StopEvent(**message)
    except ValidationError as e:
        logger.warning(f"Invalid stop message, stopping anyway: {e}")

    await session.stop()
