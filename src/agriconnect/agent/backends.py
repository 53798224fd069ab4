"""
Language-backend adapters.

This module is the only place that *directly* calls an LLM.  Everything else (orchestrator, tools,
API) stays model-agnostic and only sees :class:`Conversation`, :class:`ToolDeclaration` and
:class:`BackendReply`.

We support three back-ends out of the box:

1. **Google Gemini** via the ``generateContent`` REST API (the default).
2. **OpenAI** chat completions with function tools.
3. **Anthropic** messages with tool use.

Additional providers can be added by subclassing :class:`BaseBackend` and registering via
:func:`register_backend`.  An adapter only shapes requests and parses responses; the loop lives in
:mod:`agriconnect.agent.orchestrator`.
"""

import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    List,
    Sequence,
    Type,
)

import httpx

from agriconnect.agent.conversation import Conversation
from agriconnect.config import Settings
from agriconnect.config import settings as default_settings
from agriconnect.core.exceptions import (
    BackendError,
    BackendQuotaError,
    BackendRateLimitError,
    ConfigurationError,
)
from agriconnect.core.schema import (
    BackendReply,
    ImagePart,
    Message,
    Role,
    TextPart,
    ToolCall,
    ToolDeclaration,
)

logger = logging.getLogger(__name__)

_CONVERSATION_OPENER = "Hello"
_QUOTA_MARKERS = ("quota", "billing", "credit balance")
_BILLING_MARKERS = ("billing", "credit balance", "insufficient_quota")


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_BACKEND_REGISTRY: dict[str, Type["BaseBackend"]] = {}


def register_backend(name: str) -> Callable:
    """Decorator to register a backend class under *name*."""

    def wrapper(cls: Type["BaseBackend"]) -> Type["BaseBackend"]:
        _BACKEND_REGISTRY[name] = cls
        cls.name = name
        return cls

    return wrapper


def load_backend(
    name: str | None = None,
    settings: Settings | None = None,
    http: httpx.AsyncClient | None = None,
) -> "BaseBackend":
    """
    Factory that returns a configured backend.

    Fallback order:
    1. *name* arg
    2. ``settings.BACKEND`` env option
    3. default: ``"gemini"``

    Raises
    ------
    ConfigurationError
        If the backend is unknown or its credentials are missing.
    """
    settings = settings or default_settings
    target = (name or getattr(settings, "BACKEND", None) or "gemini").lower()
    cls = _BACKEND_REGISTRY.get(target)
    if cls is None:
        raise ConfigurationError(detail=f"Backend '{target}' is not registered.")
    backend = cls(settings, http=http)
    backend.ensure_configured()
    return backend


def classify_http_error(status: int, body: str) -> BackendError:
    """Map a failed backend HTTP status to the error taxonomy."""
    lowered = body.lower()
    if status == 429:
        # Gemini also reports exhausted plans as 429 RESOURCE_EXHAUSTED
        if any(m in lowered for m in _BILLING_MARKERS):
            return BackendQuotaError(detail=body)
        return BackendRateLimitError(detail=body)
    if status == 402 or (status in (400, 403) and any(m in lowered for m in _QUOTA_MARKERS)):
        return BackendQuotaError(detail=body)
    return BackendError(detail=f"HTTP {status}: {body}")


def _json_args(raw: str | None) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Backend sent tool arguments that are not JSON: %r", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseBackend(ABC):
    """Abstract adapter that turns a conversation into one backend completion."""

    name: ClassVar[str] = "base"

    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self._owns_http = http is None
        self._http = http

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.settings.REQUEST_TIMEOUT)
        return self._http

    async def aclose(self) -> None:
        """Release clients this adapter created itself."""
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None

    @staticmethod
    def _dialogue(conversation: Conversation) -> List[Message]:
        """Non-system messages, opened by a user turn as every provider requires."""
        dialogue = list(conversation.dialogue)
        if not dialogue or dialogue[0].role is not Role.USER:
            dialogue.insert(0, Message.from_text(Role.USER, _CONVERSATION_OPENER))
        return dialogue

    @staticmethod
    def _system_text(conversation: Conversation) -> str | None:
        system = conversation.system
        return system.text if system is not None else None

    @abstractmethod
    def ensure_configured(self) -> None:
        """Raise :class:`ConfigurationError` if credentials or endpoints are missing."""

    @abstractmethod
    async def complete(
        self, conversation: Conversation, tools: Sequence[ToolDeclaration]
    ) -> BackendReply:
        """Send *conversation* with *tools* and return the parsed reply."""


# ---------------------------------------------------------------------------
# Concrete backends
# ---------------------------------------------------------------------------
@register_backend("gemini")
class GeminiBackend(BaseBackend):
    """Google Gemini ``generateContent`` over REST."""

    def ensure_configured(self) -> None:
        if not self.settings.GEMINI_API_KEY:
            raise ConfigurationError(detail="GEMINI_API_KEY not configured")
        if not self.settings.GEMINI_ENDPOINT:
            raise ConfigurationError(detail="GEMINI_ENDPOINT not configured")

    @staticmethod
    def _parts(message: Message) -> List[Dict[str, Any]]:
        parts: List[Dict[str, Any]] = []
        for part in message.parts:
            if isinstance(part, TextPart):
                parts.append({"text": part.text})
            elif isinstance(part, ImagePart):
                parts.append({"inline_data": {"mime_type": part.mime_type, "data": part.data}})
        return parts

    def build_payload(
        self, conversation: Conversation, tools: Sequence[ToolDeclaration]
    ) -> Dict[str, Any]:
        """Shape the ``generateContent`` request body."""
        contents: List[Dict[str, Any]] = []
        for message in self._dialogue(conversation):
            if message.tool_call is not None:
                call = message.tool_call
                contents.append(
                    {"role": "model", "parts": [{"functionCall": {"name": call.name, "args": call.args}}]}
                )
            elif message.tool_result is not None:
                result = message.tool_result
                contents.append(
                    {
                        "role": "user",
                        "parts": [{"functionResponse": {"name": result.name, "response": result.payload}}],
                    }
                )
            else:
                role = "model" if message.role is Role.ASSISTANT else "user"
                contents.append({"role": role, "parts": self._parts(message)})

        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": self.settings.TEMPERATURE,
                "maxOutputTokens": self.settings.MAX_OUTPUT_TOKENS,
            },
        }
        system = self._system_text(conversation)
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        if tools:
            declarations = []
            for tool in tools:
                declaration: Dict[str, Any] = {"name": tool.name, "description": tool.description}
                # Gemini rejects OBJECT schemas without properties
                if tool.parameters.get("properties"):
                    declaration["parameters"] = tool.parameters
                declarations.append(declaration)
            payload["tools"] = [{"function_declarations": declarations}]
        return payload

    @staticmethod
    def parse_response(data: Any) -> BackendReply:
        """Turn a ``generateContent`` response into a :class:`BackendReply`.

        Anything that does not have the documented shape yields an empty reply, which the
        orchestrator treats as malformed.
        """
        if not isinstance(data, dict):
            logger.error("Unexpected Gemini response body: %r", data)
            return BackendReply()
        candidates = data.get("candidates") or []
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            logger.error("No candidate in Gemini response: %s", data.get("promptFeedback"))
            return BackendReply()

        candidate = candidates[0]
        content = candidate.get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            parts = []

        calls: List[ToolCall] = []
        texts: List[str] = []
        for part in parts:
            if not isinstance(part, dict):
                continue
            function_call = part.get("functionCall")
            if function_call:
                name = function_call.get("name") if isinstance(function_call, dict) else None
                if not isinstance(name, str) or not name:
                    logger.warning("Skipping functionCall without a name: %r", function_call)
                    continue
                args = function_call.get("args")
                call = ToolCall(name=name, args=args if isinstance(args, dict) else {})
                if isinstance(function_call.get("id"), str) and function_call["id"]:
                    call.id = function_call["id"]
                calls.append(call)
            elif isinstance(part.get("text"), str) and not part.get("thought"):
                texts.append(part["text"])
        return BackendReply(
            text="".join(texts) or None, tool_calls=calls, finish_reason=candidate.get("finishReason")
        )

    async def complete(
        self, conversation: Conversation, tools: Sequence[ToolDeclaration]
    ) -> BackendReply:
        url = f"{self.settings.GEMINI_ENDPOINT.rstrip('/')}/models/{self.settings.GEMINI_MODEL}:generateContent"
        payload = self.build_payload(conversation, tools)

        try:
            resp = await self.http.post(
                url,
                json=payload,
                headers={"x-goog-api-key": self.settings.GEMINI_API_KEY or ""},
                timeout=self.settings.REQUEST_TIMEOUT,
            )
        except httpx.HTTPError as e:
            logger.error("Gemini request error: %s", str(e))
            raise BackendError(detail=str(e)) from e

        if resp.is_error:
            logger.error("Gemini API error: %s %s", resp.status_code, resp.text)
            raise classify_http_error(resp.status_code, resp.text)

        try:
            data = resp.json()
        except ValueError:
            logger.error("Gemini returned a non-JSON body")
            return BackendReply()
        logger.debug("Gemini response: %s", data)
        return self.parse_response(data)


@register_backend("openai")
class OpenAIBackend(BaseBackend):
    """OpenAI chat completions with function tools."""

    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None) -> None:
        super().__init__(settings, http=http)
        self._client: Any = None

    def ensure_configured(self) -> None:
        if not self.settings.OPENAI_API_KEY:
            raise ConfigurationError(detail="OPENAI_API_KEY not configured")

    @property
    def client(self) -> Any:
        if self._client is None:
            import openai  # pylint: disable=import-outside-toplevel

            self._client = openai.AsyncOpenAI(
                api_key=self.settings.OPENAI_API_KEY, timeout=self.settings.REQUEST_TIMEOUT
            )
        return self._client

    @staticmethod
    def _content(message: Message) -> Any:
        if all(isinstance(part, TextPart) for part in message.parts):
            return message.text
        content: List[Dict[str, Any]] = []
        for part in message.parts:
            if isinstance(part, TextPart):
                content.append({"type": "text", "text": part.text})
            elif isinstance(part, ImagePart):
                url = f"data:{part.mime_type};base64,{part.data}"
                content.append({"type": "image_url", "image_url": {"url": url}})
        return content

    def build_messages(self, conversation: Conversation) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []
        system = self._system_text(conversation)
        if system:
            messages.append({"role": "system", "content": system})
        for message in self._dialogue(conversation):
            if message.tool_call is not None:
                call = message.tool_call
                messages.append(
                    {
                        "role": "assistant",
                        "content": None,
                        "tool_calls": [
                            {
                                "id": call.id,
                                "type": "function",
                                "function": {"name": call.name, "arguments": json.dumps(call.args)},
                            }
                        ],
                    }
                )
            elif message.tool_result is not None:
                result = message.tool_result
                messages.append(
                    {"role": "tool", "tool_call_id": result.call_id, "content": json.dumps(result.payload)}
                )
            else:
                messages.append({"role": message.role.value, "content": self._content(message)})
        return messages

    @staticmethod
    def build_tools(tools: Sequence[ToolDeclaration]) -> List[Dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {"name": t.name, "description": t.description, "parameters": t.parameters},
            }
            for t in tools
        ]

    @staticmethod
    def parse_response(resp: Any) -> BackendReply:
        if not resp.choices:
            logger.error("OpenAI returned no choices")
            return BackendReply()
        choice = resp.choices[0]
        calls = [
            ToolCall(id=tc.id, name=tc.function.name, args=_json_args(tc.function.arguments))
            for tc in (choice.message.tool_calls or [])
        ]
        return BackendReply(
            text=choice.message.content or None, tool_calls=calls, finish_reason=choice.finish_reason
        )

    async def complete(
        self, conversation: Conversation, tools: Sequence[ToolDeclaration]
    ) -> BackendReply:
        import openai  # pylint: disable=import-outside-toplevel

        kwargs: Dict[str, Any] = {
            "model": self.settings.OPENAI_MODEL,
            "messages": self.build_messages(conversation),
            "temperature": self.settings.TEMPERATURE,
            "max_tokens": self.settings.MAX_OUTPUT_TOKENS,
        }
        if tools:
            kwargs["tools"] = self.build_tools(tools)

        try:
            resp = await self.client.chat.completions.create(**kwargs)
        except openai.RateLimitError as e:
            logger.error("OpenAI rate limit: %s", str(e))
            if getattr(e, "code", None) == "insufficient_quota":
                raise BackendQuotaError(detail=str(e)) from e
            raise BackendRateLimitError(detail=str(e)) from e
        except openai.APIStatusError as e:
            logger.error("OpenAI API error: %s %s", e.status_code, str(e))
            raise classify_http_error(e.status_code, str(e)) from e
        except openai.APIError as e:
            logger.error("OpenAI request error: %s", str(e))
            raise BackendError(detail=str(e)) from e

        logger.debug("OpenAI response: %s", resp)
        return self.parse_response(resp)


@register_backend("anthropic")
class AnthropicBackend(BaseBackend):
    """Anthropic Claude messages with tool use."""

    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None) -> None:
        super().__init__(settings, http=http)
        self._client: Any = None

    def ensure_configured(self) -> None:
        if not self.settings.ANTHROPIC_API_KEY:
            raise ConfigurationError(detail="ANTHROPIC_API_KEY not configured")

    @property
    def client(self) -> Any:
        if self._client is None:
            import anthropic  # pylint: disable=import-outside-toplevel

            self._client = anthropic.AsyncAnthropic(
                api_key=self.settings.ANTHROPIC_API_KEY, timeout=self.settings.REQUEST_TIMEOUT
            )
        return self._client

    @staticmethod
    def _blocks(message: Message) -> List[Dict[str, Any]]:
        blocks: List[Dict[str, Any]] = []
        for part in message.parts:
            if isinstance(part, TextPart):
                blocks.append({"type": "text", "text": part.text})
            elif isinstance(part, ImagePart):
                blocks.append(
                    {
                        "type": "image",
                        "source": {"type": "base64", "media_type": part.mime_type, "data": part.data},
                    }
                )
        return blocks

    def build_messages(self, conversation: Conversation) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []
        for message in self._dialogue(conversation):
            if message.tool_call is not None:
                call = message.tool_call
                messages.append(
                    {
                        "role": "assistant",
                        "content": [
                            {"type": "tool_use", "id": call.id, "name": call.name, "input": call.args}
                        ],
                    }
                )
            elif message.tool_result is not None:
                result = message.tool_result
                messages.append(
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "tool_result",
                                "tool_use_id": result.call_id,
                                "content": json.dumps(result.payload),
                                "is_error": result.is_error,
                            }
                        ],
                    }
                )
            else:
                messages.append({"role": message.role.value, "content": self._blocks(message)})
        return messages

    @staticmethod
    def parse_response(resp: Any) -> BackendReply:
        texts: List[str] = []
        calls: List[ToolCall] = []
        for block in resp.content or []:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                calls.append(ToolCall(id=block.id, name=block.name, args=dict(block.input or {})))
        return BackendReply(
            text="".join(texts) or None, tool_calls=calls, finish_reason=resp.stop_reason
        )

    async def complete(
        self, conversation: Conversation, tools: Sequence[ToolDeclaration]
    ) -> BackendReply:
        import anthropic  # pylint: disable=import-outside-toplevel

        kwargs: Dict[str, Any] = {
            "model": self.settings.ANTHROPIC_MODEL,
            "max_tokens": self.settings.MAX_OUTPUT_TOKENS,
            "messages": self.build_messages(conversation),
            "temperature": self.settings.TEMPERATURE,
        }
        system = self._system_text(conversation)
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.parameters}
                for t in tools
            ]

        try:
            resp = await self.client.messages.create(**kwargs)
        except anthropic.RateLimitError as e:
            logger.error("Anthropic rate limit: %s", str(e))
            raise BackendRateLimitError(detail=str(e)) from e
        except anthropic.APIStatusError as e:
            logger.error("Anthropic API error: %s %s", e.status_code, str(e))
            raise classify_http_error(e.status_code, str(e)) from e
        except anthropic.APIError as e:
            logger.error("Anthropic request error: %s", str(e))
            raise BackendError(detail=str(e)) from e

        logger.debug("Anthropic response: %s", resp)
        return self.parse_response(resp)
