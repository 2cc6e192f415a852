import asyncio
import json
import logging

import pytest

from voice_bridge.config.settings import BridgeSettings


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration before each test"""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    logging.basicConfig(level=logging.NOTSET)
    yield


@pytest.fixture
def make_settings():
    """Factory for settings with test-friendly timings"""
    def _make(**overrides):
        values = {
            "api_key": "test-api-key",
            "inbound_buffer_ms": 0,
            "keepalive_interval_s": 60,
            "setup_timeout_s": 1,
        }
        values.update(overrides)
        return BridgeSettings(**values)
    return _make


class FakeModelSocket:
    """Stands in for the speech model WebSocket: records sends, replays pushed messages."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self._incoming = asyncio.Queue()

    async def send(self, data):
        self.sent.append(data)

    def push(self, message):
        self._incoming.put_nowait(json.dumps(message))

    def push_raw(self, data):
        self._incoming.put_nowait(data)

    def hang_up(self):
        self._incoming.put_nowait(None)

    async def close(self):
        if not self.closed:
            self.closed = True
            self.hang_up()

    def messages(self):
        return [json.loads(data) for data in self.sent]

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


class FakeTelephonySocket:
    """Stands in for the FastAPI telephony WebSocket."""

    def __init__(self):
        self.sent = []
        self.close_code = None
        self.close_reason = None
        self.close_calls = 0

    async def send_text(self, data):
        self.sent.append(data)

    async def close(self, code=1000, reason=None):
        self.close_calls += 1
        self.close_code = code
        self.close_reason = reason

    def events(self):
        return [json.loads(data) for data in self.sent]


@pytest.fixture
def model_socket():
    return FakeModelSocket()


@pytest.fixture
def telephony_socket():
    return FakeTelephonySocket()


async def eventually(predicate, timeout=1.0):
    """Poll until predicate() is truthy or fail after timeout seconds"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until():
    return eventually
