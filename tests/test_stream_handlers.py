from unittest.mock import AsyncMock

import pytest

from voice_bridge.handlers.stream_handlers import handle_media


@pytest.mark.asyncio
class TestStreamHandlers:

    async def test_handle_media(self):
        session = AsyncMock()
        await handle_media({"event": "media", "media": {"payload": "/////w=="}}, session)
        session.receive_audio.assert_awaited_once_with("/////w==")

    @pytest.mark.parametrize("message", [
        {"event": "media"},
        {"event": "media", "media": {}},
        {"event": "media", "media": "oops"},
    ])
    async def test_handle_media_without_payload(self, message):
        session = AsyncMock()
        await handle_media(message, session)
        session.receive_audio.assert_not_awaited()
