"""
Pydantic models for AgriConnect assistant API requests and responses.
This module defines the request and response schemas used by the chat API.
"""

from typing import (
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
)

from agriconnect.core.schema import NavigationIntent


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class ChatTurn(BaseModel):
    """One prior turn as sent by the web client."""

    role: Literal["user", "assistant", "model", "bot"] = Field(..., description="Author of the turn")
    content: Union[str, List[Dict[str, Any]]] = Field(
        ..., description="Plain text, or a list of text / inline image parts"
    )


class ChatRequest(BaseModel):
    """Conversation so far, oldest turn first."""

    messages: List[ChatTurn] = Field(..., description="Prior turns, ending with the user's question")


class ChatResponse(BaseModel):
    """API response returned to the caller."""

    message: str
    navigation: Optional[NavigationIntent] = None
    degraded: bool = False


class ErrorResponse(BaseModel):
    """Body of every non-2xx response."""

    error: str
