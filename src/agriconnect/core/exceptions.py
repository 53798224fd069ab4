"""
Error taxonomy of the assistant.

Only these errors ever leave an orchestration run.  Tool failures are absorbed into the
conversation instead (see :mod:`agriconnect.agent.tool_executor`).  Each class carries the HTTP
status the API layer maps it to, and a user-facing message.
"""


class AssistantError(RuntimeError):
    """Base class for failures surfaced to the caller."""

    status_code: int = 500
    default_message: str = "An unexpected error occurred. Please try again."

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class ConfigurationError(AssistantError):
    """A credential or endpoint is missing.  Raised before any backend call."""

    status_code = 500
    default_message = "AI service not configured. Please contact support."


class BackendError(AssistantError):
    """The language backend failed with a non-retryable HTTP or transport error."""

    status_code = 502
    default_message = "Failed to get response from AI service."


class BackendRateLimitError(BackendError):
    """The backend is busy; the caller may retry shortly."""

    status_code = 429
    default_message = "AI service is currently busy. Please try again in a moment."


class BackendQuotaError(BackendError):
    """Quota or billing is exhausted; an operator has to step in."""

    status_code = 402
    default_message = "AI service quota exceeded. Please contact support."


class MalformedResponseError(BackendError):
    """The backend returned neither text nor a tool call on the first iteration."""

    status_code = 502
    default_message = "Failed to generate response."


class RunCancelledError(AssistantError):
    """The caller went away or cancelled the run."""

    status_code = 499
    default_message = "Request cancelled."


class RunTimeoutError(RunCancelledError):
    """The overall deadline of the run elapsed."""

    status_code = 504
    default_message = "The assistant took too long to answer. Please try again."


class InvalidRequestError(AssistantError):
    """The caller sent turns that cannot be normalised (unknown role, non-inline image, ...)."""

    status_code = 400
    default_message = "Messages must be a list of user and assistant turns."
