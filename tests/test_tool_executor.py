"""
Sanity tests for the tool executor.

Run with:
$ pytest -q
"""

import asyncio
from typing import (
    Any,
    Dict,
)

import httpx
from pydantic import BaseModel

from agriconnect.agent.tool_executor import (
    AUTH_REQUIRED,
    execute_tool,
)
from agriconnect.core.schema import (
    CallerContext,
    NavigationIntent,
    ToolCall,
)
from agriconnect.tools import (
    NoArgs,
    ToolContext,
    ToolRegistry,
)

# Stub tools for testing purposes.
stub_registry = ToolRegistry()


class AddArgs(BaseModel):
    a: int
    b: int


@stub_registry.register("add", AddArgs)
async def _add(args: AddArgs, ctx: ToolContext) -> Dict[str, Any]:
    """Return the sum of two integers (used only for tests)."""
    return {"sum": args.a + args.b}


touched = []


@stub_registry.register("secret", NoArgs, requires_auth=True)
async def _secret(args: NoArgs, ctx: ToolContext) -> Dict[str, Any]:
    """Personal data lookup (used only for tests)."""
    touched.append(ctx.caller.user_id)
    return {"owner": ctx.caller.user_id}


@stub_registry.register("boom")
async def _boom(args: NoArgs, ctx: ToolContext) -> Dict[str, Any]:
    """Always fails (used only for tests)."""
    raise RuntimeError("weather API is down")


@stub_registry.register("slow")
async def _slow(args: NoArgs, ctx: ToolContext) -> Dict[str, Any]:
    """Never finishes in time (used only for tests)."""
    await asyncio.sleep(5)
    return {}


@stub_registry.register("go")
async def _go(args: NoArgs, ctx: ToolContext) -> NavigationIntent:
    """Records a navigation (used only for tests)."""
    return NavigationIntent(route="/vendors")


def _run(call: ToolCall, caller: CallerContext | None = None, timeout: float | None = 1.0):
    async def go():
        async with httpx.AsyncClient() as http:
            ctx = ToolContext(
                caller=caller or CallerContext.anonymous(),
                settings=None,  # type: ignore[arg-type]
                http=http,
            )
            return await execute_tool(call, stub_registry, ctx, timeout=timeout)

    return asyncio.run(go())


def test_execute_tool_success() -> None:
    """Executor should return the tool's payload linked to the call id."""

    call = ToolCall(name="add", args={"a": 2, "b": 3})
    result, navigation = _run(call)
    assert result.payload == {"sum": 5}
    assert result.call_id == call.id
    assert not result.is_error
    assert navigation is None


def test_execute_tool_missing() -> None:
    """An unknown tool yields an error result instead of raising."""

    result, _ = _run(ToolCall(name="not_a_tool"))
    assert result.is_error
    assert result.payload["error"] == "unknown tool"
    assert "add" in result.payload["available"]


def test_execute_tool_bad_args() -> None:
    """Arguments failing the schema are rejected before the handler runs."""

    result, _ = _run(ToolCall(name="add", args={"a": 2}))  # missing 'b'
    assert result.is_error
    assert result.payload["error"] == "invalid arguments"
    assert result.payload["details"][0]["field"] == "b"


def test_execute_tool_requires_auth() -> None:
    """Gated tools answer 'authentication required' and never run for anonymous callers."""

    touched.clear()
    result, _ = _run(ToolCall(name="secret"))
    assert result.is_error
    assert result.payload["error"] == AUTH_REQUIRED
    assert touched == []

    caller = CallerContext(is_authenticated=True, user_id="user-42")
    result, _ = _run(ToolCall(name="secret"), caller=caller)
    assert result.payload == {"owner": "user-42"}
    assert touched == ["user-42"]


def test_execute_tool_exception_is_captured() -> None:
    """A failing handler becomes a structured error payload."""

    result, _ = _run(ToolCall(name="boom"))
    assert result.is_error
    assert result.payload == {"error": "Function execution failed", "details": "weather API is down"}


def test_execute_tool_timeout() -> None:
    """A handler exceeding its timeout is abandoned with an error payload."""

    result, _ = _run(ToolCall(name="slow"), timeout=0.05)
    assert result.is_error
    assert "timed out" in result.payload["error"]


def test_execute_tool_navigation() -> None:
    """Navigation handlers surface their intent next to an ok payload."""

    result, navigation = _run(ToolCall(name="go"))
    assert navigation == NavigationIntent(route="/vendors")
    assert result.payload == {"status": "ok", "route": "/vendors"}
    assert not result.is_error
