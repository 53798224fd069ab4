"""
Schema definitions for caller <-> orchestrator <-> backend <-> tool messages.

These data models serve as the contract between the HTTP layer, the orchestration loop, the
language-backend adapters and individual tools.  We keep them separate from runtime logic so they
can be imported anywhere without side-effects.
"""

import uuid
from enum import Enum
from typing import (
    Annotated,
    Any,
    Dict,
    List,
    Literal,
    Optional,
    Union,
)

from pydantic import (
    BaseModel,
    Field,
    model_validator,
)


class Role(str, Enum):
    """Author of a message in the conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"


# ---------------------------------------------------------------------------
# Message content
# ---------------------------------------------------------------------------
class TextPart(BaseModel):
    """Plain text fragment of a message."""

    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    """Inline image, carried as base64 text."""

    type: Literal["image"] = "image"
    mime_type: str = Field("image/jpeg", description="MIME type of the decoded image")
    data: str = Field(..., description="Base64-encoded image bytes")


ContentPart = Annotated[Union[TextPart, ImagePart], Field(discriminator="type")]


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------
def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


class ToolCall(BaseModel):
    """A call that the language backend wants the orchestrator to execute."""

    id: str = Field(default_factory=_new_call_id, description="Backend or locally issued call id")
    name: str = Field(..., description="Registered tool name")
    args: Dict[str, Any] = Field(default_factory=dict, description="Keyword arguments for the tool")


class ToolResult(BaseModel):
    """Structured value produced by executing a :class:`ToolCall`."""

    call_id: str
    name: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    is_error: bool = False


class ToolDeclaration(BaseModel):
    """Capability advertised to the language backend."""

    name: str
    description: str
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON schema of the tool arguments",
    )
    requires_auth: bool = False


class NavigationIntent(BaseModel):
    """UI navigation requested during a run, surfaced next to the final answer."""

    route: Optional[str] = None
    section: Optional[str] = None

    @model_validator(mode="after")
    def _has_target(self) -> "NavigationIntent":
        if not self.route and not self.section:
            raise ValueError("a navigation intent needs a route or a section")
        return self


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------
class Message(BaseModel):
    """One turn of a conversation."""

    role: Role
    parts: List[ContentPart] = Field(default_factory=list)
    tool_call: Optional[ToolCall] = None
    tool_result: Optional[ToolResult] = None

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))

    @classmethod
    def from_text(cls, role: Role, text: str) -> "Message":
        """Build a single-part text message."""
        return cls(role=role, parts=[TextPart(text=text)])


class CallerContext(BaseModel):
    """Who is talking to the assistant.  Used to gate personal-data tools."""

    is_authenticated: bool = False
    user_id: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def anonymous(cls) -> "CallerContext":
        return cls()


# ---------------------------------------------------------------------------
# Backend and orchestrator outputs
# ---------------------------------------------------------------------------
class BackendReply(BaseModel):
    """Provider-neutral view of one completion response."""

    text: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    finish_reason: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.tool_calls and not (self.text and self.text.strip())


class ChatOutcome(BaseModel):
    """Final result of one orchestration run."""

    reply: str
    navigation: Optional[NavigationIntent] = None
    iterations: int = 0
    degraded: bool = False
