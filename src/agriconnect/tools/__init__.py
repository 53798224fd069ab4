"""
Tool registry for the AgriConnect assistant.

This module provides a registry of tools the language backend may call, and a decorator to register
them by name.  Every tool is an async function of ``(args, ctx)`` where *args* is an instance of the
tool's pydantic argument model and *ctx* is a :class:`ToolContext`.  The argument model doubles as
the JSON schema advertised to the backend.
"""

import copy
import importlib
import inspect
import logging
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Type,
)

import httpx
from pydantic import BaseModel

from agriconnect.config import Settings
from agriconnect.core.schema import (
    CallerContext,
    ToolDeclaration,
)
from agriconnect.datastore import SupabaseStore

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Any, "ToolContext"], Awaitable[Any]]

DEFAULT_TOOL_MODULES = (
    "agriconnect.tools.catalog",
    "agriconnect.tools.weather",
    "agriconnect.tools.search",
    "agriconnect.tools.navigation",
)


class NoArgs(BaseModel):
    """Argument model for tools that take no parameters."""


@dataclass(frozen=True)
class ToolContext:
    """Read-only collaborators handed to a tool handler."""

    caller: CallerContext
    settings: Settings
    http: httpx.AsyncClient
    datastore: Optional[SupabaseStore] = None


@dataclass(frozen=True)
class ToolSpec:
    """A registered tool: handler plus the metadata needed to declare and gate it."""

    name: str
    description: str
    args_model: Type[BaseModel]
    handler: ToolHandler
    requires_auth: bool = False

    def declaration(self) -> ToolDeclaration:
        return ToolDeclaration(
            name=self.name,
            description=self.description,
            parameters=json_schema_for(self.args_model),
            requires_auth=self.requires_auth,
        )


class ToolRegistry:
    """Name -> :class:`ToolSpec` mapping.  Populated at import time, read-only afterwards."""

    def __init__(self) -> None:
        self._tools: Dict[str, ToolSpec] = {}

    def register(
        self,
        name: str,
        args_model: Type[BaseModel] = NoArgs,
        *,
        requires_auth: bool = False,
        description: str | None = None,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """
        Register a tool handler under *name*.

        The function is registered as a decorator, so it can be used like this:
            @registry.register("get_weather", WeatherArgs)
            async def get_weather(args: WeatherArgs, ctx: ToolContext) -> dict:
                ...

        Parameters
        ----------
        name: str
            The name of the tool.  This must be unique and is what the backend uses to call it.
        args_model:
            Pydantic model validating the tool arguments.
        requires_auth:
            If *True*, the executor refuses to run the tool for unauthenticated callers.
        description:
            Text advertised to the backend.  Defaults to the handler's docstring.

        Raises
        ------
        ValueError
            If a tool with the same name is already registered.
        """
        if name in self._tools:
            raise ValueError(f"Tool '{name}' is already registered.")
        logger.debug("Registering tool '%s'", name)

        def wrapper(fn: ToolHandler) -> ToolHandler:
            self._tools[name] = ToolSpec(
                name=name,
                description=description or inspect.getdoc(fn) or "",
                args_model=args_model,
                handler=fn,
                requires_auth=requires_auth,
            )
            return fn

        return wrapper

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools.keys())

    def declarations(self) -> List[ToolDeclaration]:
        """Declarations of every registered tool, in registration order."""
        return [spec.declaration() for spec in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolSpec]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)


TOOL_REGISTRY = ToolRegistry()
"""Process-wide registry holding the built-in tools."""


def register_tool(
    name: str,
    args_model: Type[BaseModel] = NoArgs,
    *,
    requires_auth: bool = False,
    description: str | None = None,
) -> Callable[[ToolHandler], ToolHandler]:
    """Register a tool in the process-wide :data:`TOOL_REGISTRY`."""
    return TOOL_REGISTRY.register(
        name, args_model, requires_auth=requires_auth, description=description
    )


def load_default_tools() -> ToolRegistry:
    """Import the built-in tool modules (registration happens on import) and return the registry."""
    for module in DEFAULT_TOOL_MODULES:
        importlib.import_module(module)
    return TOOL_REGISTRY


# ---------------------------------------------------------------------------
# JSON schema helpers
# ---------------------------------------------------------------------------
_DROPPED_KEYS = {"title", "default", "additionalProperties", "$defs"}


def json_schema_for(model: Type[BaseModel]) -> Dict[str, Any]:
    """
    Return a self-contained JSON schema for *model*.

    Pydantic emits ``$ref``/``$defs`` and ``anyOf [X, null]`` for optional fields; most function
    calling APIs accept only the plain OpenAPI subset, so references are inlined and nullable
    unions collapsed to their non-null branch.
    """
    raw = model.model_json_schema()
    defs = raw.get("$defs", {})
    schema = _simplify(raw, defs)
    schema.setdefault("type", "object")
    schema.setdefault("properties", {})
    return schema


def _simplify(node: Any, defs: Dict[str, Any]) -> Any:
    if isinstance(node, list):
        return [_simplify(item, defs) for item in node]
    if not isinstance(node, dict):
        return node

    if "$ref" in node:
        target = defs[node["$ref"].rsplit("/", 1)[-1]]
        merged = {**copy.deepcopy(target), **{k: v for k, v in node.items() if k != "$ref"}}
        return _simplify(merged, defs)

    if "anyOf" in node:
        branches = [b for b in node["anyOf"] if b.get("type") != "null"]
        if len(branches) == 1:
            rest = {k: v for k, v in node.items() if k != "anyOf"}
            return _simplify({**branches[0], **rest}, defs)

    out: Dict[str, Any] = {}
    for key, value in node.items():
        if key == "properties":
            out[key] = {prop: _simplify(sub, defs) for prop, sub in value.items()}
        elif key not in _DROPPED_KEYS:
            out[key] = _simplify(value, defs)
    return out
