"""Shared fixtures for webchat tests."""

import asyncio
from typing import Any, Dict, List, Optional

import httpx
import pytest

from webchat.config import ServiceSettings, Settings, StorageSettings
from webchat.engine import ChatEngine
from webchat.service import MemoryStorage, SessionClient

ENDPOINT = "http://chat.test/api"


def info_response(
    history: List[Dict[str, Any]],
    running: bool = False,
    offsets: Optional[Dict[str, int]] = None,
    status_code: int = 200,
) -> httpx.Response:
    """Build an info endpoint response."""
    body: Dict[str, Any] = {"id": "ignored", "history": history, "running": running}
    if offsets is not None:
        body["offsets"] = offsets
    return httpx.Response(status_code, json=body)


class ScriptedBackend:
    """Chat service stand-in for httpx.MockTransport.

    Responses are consumed in order; once a queue is empty the endpoint
    answers with an empty success. Info requests wait on ``info_gate`` when it
    is set, which keeps a fetch in flight until the test releases it.
    """

    def __init__(self) -> None:
        self.session_ids = ["s1", "s2", "s3"]
        self.init_responses: List[httpx.Response] = []
        self.chat_responses: List[httpx.Response] = []
        self.info_responses: List[httpx.Response] = []
        self.requests: List[httpx.Request] = []
        self.info_gate: Optional[asyncio.Event] = None

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/init"):
            if self.init_responses:
                return self.init_responses.pop(0)
            return httpx.Response(200, json={"id": self.session_ids.pop(0)})
        if path.endswith("/chat"):
            if self.chat_responses:
                return self.chat_responses.pop(0)
            return httpx.Response(200, json={})
        if "/info/" in path:
            if self.info_gate is not None:
                await self.info_gate.wait()
            if self.info_responses:
                return self.info_responses.pop(0)
            return info_response([], running=False)
        return httpx.Response(404, json={"detail": "Not found"})

    def calls(self, kind: str) -> List[httpx.Request]:
        """Requests made to one endpoint: "init", "chat" or "info"."""
        if kind == "info":
            return [r for r in self.requests if "/info/" in r.url.path]
        return [r for r in self.requests if r.url.path.endswith(f"/{kind}")]


@pytest.fixture
def settings():
    """Settings with a poll interval long enough that timers never fire in tests."""
    return Settings(
        service=ServiceSettings(endpoint=ENDPOINT, preset="support", poll_interval_ms=60_000),
        storage=StorageSettings(backend="memory"),
    )


@pytest.fixture
def backend():
    return ScriptedBackend()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def session_client(settings, backend, storage):
    """SessionClient wired to the scripted backend."""
    client = SessionClient(settings.service, storage)
    client._client = httpx.AsyncClient(
        base_url=ENDPOINT,
        transport=httpx.MockTransport(backend.handler),
    )
    return client


@pytest.fixture
def engine(settings, session_client):
    engine = ChatEngine(settings, client=session_client)
    yield engine
    engine.scheduler.stop()


@pytest.fixture
def events(engine):
    """Events emitted by the engine, with the message status captured at emit time."""
    received = []

    def on_event(event):
        message = getattr(event, "message", None)
        received.append((event, message.status if message is not None else None))

    engine.add_listener(on_event)
    return received
