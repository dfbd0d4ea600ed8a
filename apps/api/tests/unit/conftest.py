import asyncio
import json
import random
from collections.abc import Callable

import httpx
import pytest

from app.core.config import Settings
from app.core.exceptions import ClientDisconnectedError

OLLAMA_URL = "http://ollama.test/api"


def _ndjson(*records: dict) -> list[bytes]:
    return [(json.dumps(r) + "\n").encode() for r in records]


def _ollama_transport(
    chunks: list[bytes] | None = None,
    *,
    status_code: int = 200,
    models: tuple[str, ...] = ("llama3:latest",),
    pause: bool = False,
    hang_after: int | None = None,
    requests: list | None = None,
) -> httpx.MockTransport:
    """Scripted Ollama: /tags lists ``models``; /generate streams ``chunks``.

    ``pause`` yields to the event loop between chunks. ``hang_after`` stops
    after that many chunks and waits forever, like a stalled generation.
    """

    async def body():
        for i, chunk in enumerate(chunks or []):
            if hang_after is not None and i >= hang_after:
                await asyncio.Event().wait()
            if pause:
                await asyncio.sleep(0)
            yield chunk
        if hang_after is not None and hang_after >= len(chunks or []):
            await asyncio.Event().wait()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/tags"):
            return httpx.Response(200, json={"models": [{"name": m} for m in models]})
        if requests is not None:
            requests.append(json.loads(request.content))
        if status_code >= 400:
            return httpx.Response(status_code, json={"error": "failed"})
        return httpx.Response(200, content=body())

    return httpx.MockTransport(handler)


class _RecordingChannel:
    """Collects ``(event, data)`` pairs the way a client socket would see them."""

    def __init__(self, fail_on: Callable[[str, dict], bool] | None = None):
        self.events: list[tuple[str, dict]] = []
        self.received = asyncio.Event()
        self._fail_on = fail_on

    async def send(self, event: str, data: dict) -> None:
        if self._fail_on is not None and self._fail_on(event, data):
            raise ClientDisconnectedError("socket closed")
        self.events.append((event, data))
        if event == "messageChunk":
            self.received.set()

    def of(self, event: str) -> list[dict]:
        return [data for name, data in self.events if name == event]


@pytest.fixture
def memory_settings() -> Settings:
    return Settings(
        ENVIRONMENT="test",
        STORE_BACKEND="memory",
        OLLAMA_BASE_URL=OLLAMA_URL,
        OLLAMA_MODEL="llama3",
        OLLAMA_SYSTEM_PROMPT=None,
        CORS_ORIGINS=["http://testserver"],
    )


@pytest.fixture
def rng() -> random.Random:
    return random.Random(0)


@pytest.fixture
def ndjson():
    return _ndjson


@pytest.fixture
def make_transport():
    return _ollama_transport


@pytest.fixture
def channel_factory():
    return _RecordingChannel
