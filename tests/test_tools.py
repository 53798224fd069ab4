"""Built-in tools against mocked Open-Meteo, Serper and Supabase endpoints."""

import asyncio
from typing import Optional

import httpx
import pytest
from pydantic import (
    BaseModel,
    Field,
)

from agriconnect.agent.tool_executor import execute_tool
from agriconnect.config import Settings
from agriconnect.core.schema import (
    CallerContext,
    ToolCall,
)
from agriconnect.tools import (
    ToolContext,
    ToolRegistry,
    json_schema_for,
)

SIGNED_IN = CallerContext(is_authenticated=True, user_id="user-42", email="farmer@example.com")


def _call(registry, http_factory, store_factory, settings, name, args=None, caller=None):
    async def go():
        async with http_factory() as http:
            ctx = ToolContext(
                caller=caller or CallerContext.anonymous(),
                settings=settings,
                http=http,
                datastore=store_factory(http) if store_factory else None,
            )
            result, _ = await execute_tool(ToolCall(name=name, args=args or {}), registry, ctx, timeout=1.0)
            return result

    return asyncio.run(go())


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
def test_default_tools_are_registered(registry) -> None:
    """Every built-in tool is declared, personal-data tools are gated."""

    declarations = {d.name: d for d in registry.declarations()}
    assert set(declarations) == {
        "query_products",
        "query_orders",
        "count_records",
        "get_my_profile",
        "get_weather",
        "search_market_info",
        "navigate_to",
        "scroll_to_section",
    }
    assert declarations["query_orders"].requires_auth
    assert declarations["get_my_profile"].requires_auth
    assert not declarations["query_products"].requires_auth
    assert declarations["count_records"].parameters["properties"]["table"]["enum"] == [
        "products",
        "orders",
        "users",
        "profiles",
    ]


def test_duplicate_registration_is_rejected() -> None:
    local = ToolRegistry()

    @local.register("ping")
    async def ping(args, ctx):
        """Ping."""
        return {}

    with pytest.raises(ValueError):
        local.register("ping")
    assert local.get("ping").description == "Ping."


def test_json_schema_is_self_contained() -> None:
    """Nested models are inlined and optional unions collapsed."""

    class Inner(BaseModel):
        title: Optional[str] = Field(None, description="A field literally named title")

    class Outer(BaseModel):
        inner: Optional[Inner] = None
        count: int

    schema = json_schema_for(Outer)

    assert "$defs" not in schema
    assert schema["required"] == ["count"]
    inner = schema["properties"]["inner"]
    assert inner["type"] == "object"
    assert inner["properties"]["title"] == {"type": "string", "description": "A field literally named title"}
    assert "title" not in schema


# ---------------------------------------------------------------------------
# Datastore tools
# ---------------------------------------------------------------------------
def test_query_products_applies_filters_and_cap(
    registry, http_factory, store_factory, test_settings, requests_log
) -> None:
    result = _call(
        registry,
        http_factory,
        store_factory,
        test_settings,
        "query_products",
        {"filters": {"category": "grains", "name": "rice"}, "limit": 500},
    )

    assert result.payload["count"] == 2
    params = requests_log[0].url.params
    assert params["category"] == "ilike.*grains*"
    assert params["name"] == "ilike.*rice*"
    assert params["limit"] == "10"
    assert requests_log[0].headers["apikey"] == "service-key"


def test_count_records_reads_content_range(registry, http_factory, store_factory, test_settings) -> None:
    result = _call(
        registry, http_factory, store_factory, test_settings, "count_records", {"table": "products"}
    )
    assert result.payload == {"table": "products", "count": 128}


def test_count_records_rejects_unknown_table(registry, http_factory, store_factory, test_settings) -> None:
    result = _call(
        registry, http_factory, store_factory, test_settings, "count_records", {"table": "payments"}
    )
    assert result.is_error
    assert result.payload["error"] == "invalid arguments"


def test_datastore_error_is_a_payload(registry, http_factory, store_factory, test_settings) -> None:
    """A PostgREST error is reported, not raised."""

    result = _call(
        registry, http_factory, store_factory, test_settings, "count_records", {"table": "users"}
    )
    assert result.is_error
    assert result.payload["error"] == "Failed to count users"


def test_datastore_not_configured(registry, http_factory, test_settings) -> None:
    result = _call(registry, http_factory, None, test_settings, "query_products")
    assert result.payload == {"error": "datastore not configured"}


def test_get_my_profile(registry, http_factory, store_factory, test_settings, requests_log) -> None:
    result = _call(
        registry, http_factory, store_factory, test_settings, "get_my_profile", caller=SIGNED_IN
    )
    assert result.payload["profile"]["full_name"] == "Asha"
    assert requests_log[0].url.params["id"] == "eq.user-42"


# ---------------------------------------------------------------------------
# External HTTP tools
# ---------------------------------------------------------------------------
def test_get_weather(registry, http_factory, test_settings, requests_log) -> None:
    result = _call(registry, http_factory, None, test_settings, "get_weather", {"location": "Delhi", "days": 2})

    assert result.payload["location"] == "Delhi, Delhi, India"
    assert result.payload["current"]["temperature_c"] == 28.0
    assert result.payload["forecast"][1] == {
        "date": "2026-10-20",
        "temp_max_c": 30.5,
        "temp_min_c": 18.4,
        "precipitation_mm": 1.2,
        "precipitation_chance_pct": 35,
    }
    forecast_request = requests_log[1]
    assert forecast_request.url.params["latitude"] == "28.65"
    assert forecast_request.url.params["forecast_days"] == "2"


def test_get_weather_unknown_place(registry, http_factory, test_settings) -> None:
    result = _call(registry, http_factory, None, test_settings, "get_weather", {"location": "Atlantis"})
    assert result.is_error
    assert "not found" in result.payload["error"]


def test_get_weather_service_down(registry, test_settings) -> None:
    """An unreachable weather API is isolated into an error result."""

    def factory() -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503)))

    result = _call(registry, factory, None, test_settings, "get_weather", {"location": "Delhi"})
    assert result.payload["error"] == "Weather service unavailable"


def test_search_market_info_returns_few_snippets(registry, http_factory, test_settings, requests_log) -> None:
    result = _call(
        registry, http_factory, None, test_settings, "search_market_info", {"query": "onion price Nashik"}
    )

    assert len(result.payload["results"]) == 3
    assert result.payload["results"][0]["snippet"] == "Onion price snippet 0"
    assert requests_log[0].headers["x-api-key"] == "serper-key"


def test_search_market_info_without_key(registry, http_factory) -> None:
    bare = Settings(_env_file=None, SERPER_API_KEY=None)
    result = _call(registry, http_factory, None, bare, "search_market_info", {"query": "wheat"})
    assert result.payload == {"error": "search service not configured"}


def test_navigation_rejects_unknown_route(registry, http_factory, test_settings) -> None:
    result = _call(registry, http_factory, None, test_settings, "navigate_to", {"route": "/admin"})
    assert result.payload["error"] == "invalid arguments"
