"""Shared fixtures: test settings, a scripted language backend and mocked HTTP collaborators."""

from __future__ import annotations

import json
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Sequence,
    Tuple,
)

import httpx
import pytest

from agriconnect.agent.backends import BaseBackend
from agriconnect.agent.conversation import Conversation
from agriconnect.config import Settings
from agriconnect.core.schema import (
    BackendReply,
    Message,
    ToolCall,
    ToolDeclaration,
)
from agriconnect.datastore import SupabaseStore
from agriconnect.tools import (
    ToolRegistry,
    load_default_tools,
)


class ScriptedBackend(BaseBackend):
    """Backend stub that replays a script of replies (or raises scripted errors)."""

    name = "scripted"

    def __init__(self, script: Sequence[Any] | Callable[[int], Any], settings: Settings) -> None:
        super().__init__(settings)
        self._script = script if callable(script) else list(script)
        self.calls = 0
        self.seen: List[Tuple[Message, ...]] = []
        self.tools_seen: List[str] = []

    def ensure_configured(self) -> None:
        return None

    async def complete(
        self, conversation: Conversation, tools: Sequence[ToolDeclaration]
    ) -> BackendReply:
        self.calls += 1
        self.seen.append(conversation.messages)
        self.tools_seen = [t.name for t in tools]
        if callable(self._script):
            step = self._script(self.calls)
        else:
            step = self._script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


def text_reply(text: str) -> BackendReply:
    return BackendReply(text=text, finish_reason="STOP")


def tool_reply(*calls: Tuple[str, Dict[str, Any]]) -> BackendReply:
    return BackendReply(tool_calls=[ToolCall(name=name, args=args) for name, args in calls])


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        BACKEND="gemini",
        GEMINI_API_KEY="test-key",
        MAX_ITERATIONS=5,
        RUN_TIMEOUT=5.0,
        TOOL_TIMEOUT=1.0,
        SUPABASE_URL="https://db.example.supabase.co",
        SUPABASE_SERVICE_ROLE_KEY="service-key",
        SERPER_API_KEY="serper-key",
    )


@pytest.fixture
def registry() -> ToolRegistry:
    return load_default_tools()


@pytest.fixture
def requests_log() -> List[httpx.Request]:
    return []


def fake_services(request: httpx.Request) -> httpx.Response:
    """Canned answers for Open-Meteo, Serper and the Supabase REST/auth endpoints."""
    host, path = request.url.host, request.url.path
    if host == "geocoding-api.open-meteo.com":
        if request.url.params.get("name") == "Atlantis":
            return httpx.Response(200, json={"generationtime_ms": 0.1})
        return httpx.Response(
            200,
            json={
                "results": [
                    {"name": "Delhi", "admin1": "Delhi", "country": "India", "latitude": 28.65, "longitude": 77.23}
                ]
            },
        )
    if host == "api.open-meteo.com":
        return httpx.Response(
            200,
            json={
                "current": {
                    "temperature_2m": 28.0,
                    "relative_humidity_2m": 40,
                    "precipitation": 0.0,
                    "wind_speed_10m": 7.2,
                    "weather_code": 1,
                },
                "daily": {
                    "time": ["2026-10-19", "2026-10-20"],
                    "temperature_2m_max": [31.0, 30.5],
                    "temperature_2m_min": [19.0, 18.4],
                    "precipitation_sum": [0.0, 1.2],
                    "precipitation_probability_max": [5, 35],
                },
            },
        )
    if host == "google.serper.dev":
        return httpx.Response(
            200,
            json={
                "organic": [
                    {"title": f"Result {i}", "snippet": f"Onion price snippet {i}", "link": f"https://example.com/{i}"}
                    for i in range(5)
                ]
            },
        )
    if host == "db.example.supabase.co":
        if path == "/auth/v1/user":
            if request.headers.get("authorization") == "Bearer good-token":
                return httpx.Response(200, json={"id": "user-42", "email": "farmer@example.com"})
            return httpx.Response(401, json={"message": "invalid JWT"})
        if request.method == "HEAD" and path == "/rest/v1/products":
            return httpx.Response(200, headers={"content-range": "0-9/128"})
        if path == "/rest/v1/products":
            return httpx.Response(
                200,
                json=[
                    {"id": 1, "name": "Basmati Rice", "category": "grains", "price": 95},
                    {"id": 2, "name": "Brown Rice", "category": "grains", "price": 80},
                ],
            )
        if path == "/rest/v1/orders":
            return httpx.Response(
                200, json=[{"id": 7, "customer_id": "user-42", "status": "shipped"}]
            )
        if path == "/rest/v1/profiles":
            return httpx.Response(200, json=[{"id": "user-42", "full_name": "Asha", "user_type": "farmer"}])
        return httpx.Response(404, json={"message": f"relation {path} does not exist"})
    return httpx.Response(404, text=json.dumps({"error": "unexpected host"}))


@pytest.fixture
def http_factory(requests_log: List[httpx.Request]) -> Callable[[], httpx.AsyncClient]:
    """Build AsyncClients (inside the running loop) that answer from :func:`fake_services`."""

    def handler(request: httpx.Request) -> httpx.Response:
        requests_log.append(request)
        return fake_services(request)

    def factory() -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory


@pytest.fixture
def store_factory(test_settings: Settings) -> Callable[[httpx.AsyncClient], SupabaseStore]:
    def factory(http: httpx.AsyncClient) -> SupabaseStore:
        store = SupabaseStore.from_settings(test_settings, http)
        assert store is not None
        return store

    return factory
