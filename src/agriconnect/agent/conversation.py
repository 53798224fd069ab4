"""
Conversation assembly.

Caller-supplied turns arrive in several shapes (plain strings, multi-part lists with OpenAI-style
``image_url`` parts or data URLs, or already-normalised :class:`Message` objects).  They are all
converted to :class:`Message` here, and the result is wrapped in a :class:`Conversation` whose
append operations keep every tool call immediately followed by its result.
"""

import logging
import re
from typing import (
    Any,
    Iterable,
    Iterator,
    List,
    Mapping,
    Sequence,
    Tuple,
)

from agriconnect.agent.prompt import build_system_prompt
from agriconnect.core.schema import (
    CallerContext,
    ContentPart,
    ImagePart,
    Message,
    Role,
    TextPart,
    ToolCall,
    ToolDeclaration,
    ToolResult,
)

logger = logging.getLogger(__name__)

_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.+)$", re.DOTALL)

_ROLE_ALIASES = {
    "user": Role.USER,
    "human": Role.USER,
    "assistant": Role.ASSISTANT,
    "model": Role.ASSISTANT,
    "bot": Role.ASSISTANT,
}


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------
def _caller_role(role: Any) -> Role:
    key = role.value if isinstance(role, Role) else str(role).lower()
    try:
        return _ROLE_ALIASES[key]
    except KeyError:
        raise ValueError(f"Unsupported message role: {role!r}") from None


def _image_from_url(url: str, mime_type: str | None = None) -> ImagePart:
    match = _DATA_URL.match(url.strip())
    if match is None:
        raise ValueError("Images must be inline base64 data URLs")
    return ImagePart(mime_type=match.group("mime"), data=match.group("data"))


def _normalize_part(raw: Any) -> ContentPart | None:
    if isinstance(raw, (TextPart, ImagePart)):
        return raw
    if isinstance(raw, str):
        return TextPart(text=raw) if raw.strip() else None
    if not isinstance(raw, Mapping):
        raise ValueError(f"Unsupported content part: {type(raw).__name__}")

    kind = raw.get("type", "text")
    if kind == "text":
        text = raw.get("text")
        if text is None:
            return None
        if not isinstance(text, str):
            raise ValueError("Text part must be a string")
        return TextPart(text=text) if text.strip() else None
    if kind == "image_url":
        image_url = raw.get("image_url")
        url = image_url.get("url") if isinstance(image_url, Mapping) else image_url
        if url is not None and not isinstance(url, str):
            raise ValueError("Image URL must be a string")
        return _image_from_url(url or "")
    if kind == "image":
        data = raw.get("data")
        mime_type = raw.get("mime_type")
        if not isinstance(data, str) or not data:
            raise ValueError("Image part without data")
        if mime_type is not None and not isinstance(mime_type, str):
            raise ValueError("Image mime_type must be a string")
        if data.startswith("data:"):
            return _image_from_url(data)
        return ImagePart(mime_type=mime_type or "image/jpeg", data=data)
    raise ValueError(f"Unsupported content part type: {kind!r}")


def normalize_message(raw: Message | Mapping[str, Any]) -> Message | None:
    """
    Convert one caller turn into a :class:`Message`.

    Returns *None* for turns without any content.  Normalising an already-normalised message
    returns an equal message.
    """
    if isinstance(raw, Message):
        raw = raw.model_dump()

    role = _caller_role(raw.get("role", "user"))
    if "parts" in raw:
        items: Sequence[Any] = raw.get("parts") or []
    else:
        content = raw.get("content")
        items = [content] if isinstance(content, str) or content is None else content

    parts = [part for part in (_normalize_part(item) for item in items if item is not None) if part]
    if not parts:
        return None
    return Message(role=role, parts=parts)


def normalize_messages(raw_messages: Iterable[Message | Mapping[str, Any]]) -> List[Message]:
    """Normalise caller-supplied turns, dropping empty ones."""
    messages: List[Message] = []
    for raw in raw_messages:
        message = normalize_message(raw)
        if message is None:
            logger.debug("Dropping empty message")
            continue
        messages.append(message)
    return messages


# ---------------------------------------------------------------------------
# Conversation container
# ---------------------------------------------------------------------------
class Conversation:
    """Append-only, ordered list of messages for one orchestration run."""

    def __init__(self, messages: Iterable[Message] = ()) -> None:
        self._messages: List[Message] = list(messages)

    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def system(self) -> Message | None:
        if self._messages and self._messages[0].role is Role.SYSTEM:
            return self._messages[0]
        return None

    @property
    def dialogue(self) -> Tuple[Message, ...]:
        """All messages except the leading system message."""
        return tuple(m for m in self._messages if m.role is not Role.SYSTEM)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def append_text(self, role: Role, text: str) -> Message:
        message = Message.from_text(role, text)
        self._messages.append(message)
        return message

    def record_tool_exchange(self, call: ToolCall, result: ToolResult) -> None:
        """Append a tool call and its result, in that order."""
        if result.call_id != call.id:
            raise ValueError(f"Result {result.call_id!r} does not answer call {call.id!r}")
        self._messages.append(Message(role=Role.ASSISTANT, tool_call=call))
        self._messages.append(Message(role=Role.TOOL_RESULT, tool_result=result))

    def check_causal_order(self) -> None:
        """Raise :class:`ValueError` unless every tool call is immediately followed by its result."""
        for index, message in enumerate(self._messages):
            if message.tool_call is not None:
                following = self._messages[index + 1] if index + 1 < len(self._messages) else None
                if (
                    following is None
                    or following.tool_result is None
                    or following.tool_result.call_id != message.tool_call.id
                ):
                    raise ValueError(f"Tool call {message.tool_call.id!r} has no matching result")
            elif message.tool_result is not None:
                previous = self._messages[index - 1] if index else None
                if previous is None or previous.tool_call is None:
                    raise ValueError(f"Tool result {message.tool_result.call_id!r} has no call")


def build_conversation(
    history: Iterable[Message | Mapping[str, Any]],
    caller: CallerContext,
    declarations: Sequence[ToolDeclaration],
) -> Conversation:
    """Normalise *history* and prepend the system instructions."""
    system = Message.from_text(Role.SYSTEM, build_system_prompt(declarations, caller))
    return Conversation([system, *normalize_messages(history)])
