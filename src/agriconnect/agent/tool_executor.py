"""Dispatches tool calls registered in ``agriconnect.tools`` and turns every failure into a result."""

import asyncio
import logging
from typing import (
    Any,
    Dict,
    Tuple,
)

from pydantic import (
    BaseModel,
    ValidationError,
)

from agriconnect.core.schema import (
    NavigationIntent,
    ToolCall,
    ToolResult,
)
from agriconnect.tools import (
    ToolContext,
    ToolRegistry,
)

logger = logging.getLogger(__name__)

AUTH_REQUIRED = "authentication required"


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails."""

    def __init__(self, message: str, payload: Dict[str, Any]) -> None:
        super().__init__(message)
        self.payload = payload


def _to_payload(value: Any) -> Dict[str, Any]:
    """Coerce a handler return value into the mapping stored in a :class:`ToolResult`."""
    if isinstance(value, BaseModel):
        return value.model_dump(exclude_none=True)
    if isinstance(value, dict):
        return value
    if isinstance(value, (list, tuple)):
        return {"results": list(value)}
    return {"result": value}


async def _invoke(
    call: ToolCall, registry: ToolRegistry, ctx: ToolContext, timeout: float | None
) -> Any:
    """
    Look up *call.name* in *registry*, validate its arguments and run the handler.

    Raises
    ------
    ToolExecutionError
        If the tool is missing, its arguments are invalid, the caller is not allowed to use it, or
        the handler raises or times out.
    """
    spec = registry.get(call.name)
    if spec is None:
        raise ToolExecutionError(
            f"Tool '{call.name}' is not registered.",
            {"error": "unknown tool", "tool": call.name, "available": registry.names()},
        )

    try:
        args = spec.args_model.model_validate(call.args or {})
    except ValidationError as exc:
        # Argument mismatch - give the backend a clean description of what was wrong.
        raise ToolExecutionError(
            f"Invalid arguments for tool '{call.name}'",
            {
                "error": "invalid arguments",
                "details": [
                    {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                    for err in exc.errors()
                ],
            },
        ) from exc

    if spec.requires_auth and not (ctx.caller.is_authenticated and ctx.caller.user_id):
        raise ToolExecutionError(
            f"Tool '{call.name}' requires an authenticated caller",
            {"error": AUTH_REQUIRED, "message": "Ask the user to sign in to use this feature."},
        )

    try:
        logger.debug("Executing tool '%s' with args=%s", call.name, call.args)
        return await asyncio.wait_for(spec.handler(args, ctx), timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("Tool '%s' timed out after %ss", call.name, timeout)
        raise ToolExecutionError(
            f"Tool '{call.name}' timed out", {"error": "Function execution timed out"}
        ) from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled error in tool '%s'", call.name)
        raise ToolExecutionError(
            f"Tool '{call.name}' raised an error: {exc}",
            {"error": "Function execution failed", "details": str(exc)},
        ) from exc


async def execute_tool(
    call: ToolCall,
    registry: ToolRegistry,
    ctx: ToolContext,
    *,
    timeout: float | None = None,
) -> Tuple[ToolResult, NavigationIntent | None]:
    """
    Run *call* and return its result.  Never raises for tool-side problems.

    Parameters
    ----------
    call:
        The invocation requested by the backend.
    registry:
        Registry to resolve the tool name against.
    ctx:
        Caller and shared clients handed to the handler.
    timeout:
        Seconds after which the handler is abandoned.  *None* disables the limit.

    Returns
    -------
    tuple
        The :class:`ToolResult` and, when the tool recorded one, a :class:`NavigationIntent`.
    """
    try:
        value = await _invoke(call, registry, ctx, timeout)
    except ToolExecutionError as exc:
        logger.info("Tool '%s' failed: %s", call.name, exc)
        return ToolResult(call_id=call.id, name=call.name, payload=exc.payload, is_error=True), None

    navigation = value if isinstance(value, NavigationIntent) else None
    payload = _to_payload(value)
    if navigation is not None:
        payload = {"status": "ok", **payload}
    is_error = "error" in payload
    logger.info("Tool '%s' returned %s", call.name, "an error" if is_error else "a result")
    return ToolResult(call_id=call.id, name=call.name, payload=payload, is_error=is_error), navigation
