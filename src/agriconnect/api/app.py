"""
HTTP backend of the AgriConnect assistant.

It exposes the following endpoints:
- **GET /health**  - liveness probe for health checks.
- **POST /chat**   - run the assistant on {"messages": [...]} and return its answer.

The orchestrator, tool registry, backend adapter and the shared HTTP client are built once in the
application lifespan and shared by all requests.
"""

import asyncio
import logging
from contextlib import (
    asynccontextmanager,
    suppress,
)
from typing import (
    AsyncIterator,
    Optional,
)

import httpx
from fastapi import (
    Depends,
    FastAPI,
    Header,
    Request,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agriconnect.agent.backends import load_backend
from agriconnect.agent.conversation import normalize_messages
from agriconnect.agent.orchestrator import Orchestrator
from agriconnect.api.models import (
    ChatRequest,
    ChatResponse,
    ErrorResponse,
)
from agriconnect.common import (
    AnsiColors,
    colored_print,
)
from agriconnect.config import settings
from agriconnect.core.exceptions import (
    AssistantError,
    ConfigurationError,
    InvalidRequestError,
)
from agriconnect.core.schema import CallerContext
from agriconnect.datastore import (
    DatastoreError,
    SupabaseStore,
)
from agriconnect.tools import load_default_tools

logger = logging.getLogger(__name__)

_DISCONNECT_POLL_SECONDS = 0.5


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the process-wide, read-only collaborators once."""
    http = httpx.AsyncClient(timeout=settings.REQUEST_TIMEOUT)
    datastore = SupabaseStore.from_settings(settings, http)
    app.state.datastore = datastore
    app.state.orchestrator = None
    app.state.config_error = None

    try:
        backend = load_backend(settings=settings, http=http)
    except ConfigurationError as exc:
        logger.error("Assistant backend not configured: %s", exc.detail)
        app.state.config_error = exc
    else:
        app.state.orchestrator = Orchestrator(
            backend, load_default_tools(), settings, http=http, datastore=datastore
        )
        logger.info("Assistant ready (backend=%s)", backend.name)

    try:
        yield
    finally:
        await http.aclose()


app = FastAPI(
    title="AgriConnect Assistant API",
    version="0.1.0",
    description="Tool-calling chat assistant of the AgriConnect marketplace",
    lifespan=lifespan,
)

# Add CORS middleware to allow requests from the web frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AssistantError)
async def assistant_error_handler(request: Request, exc: AssistantError) -> JSONResponse:
    """Render assistant failures as ``{"error": ...}`` with the mapped status."""
    logger.warning("Chat request failed (%s): %s", type(exc).__name__, exc.detail or exc.message)
    return JSONResponse(status_code=exc.status_code, content=ErrorResponse(error=exc.message).model_dump())


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def get_orchestrator(request: Request) -> Orchestrator:
    """Return the shared orchestrator, or fail with the startup configuration error."""
    orchestrator: Optional[Orchestrator] = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise getattr(request.app.state, "config_error", None) or ConfigurationError()
    return orchestrator


async def get_caller(
    request: Request, authorization: Optional[str] = Header(None)
) -> CallerContext:
    """Resolve the bearer token to a caller; anything unresolvable is anonymous."""
    if not authorization or not authorization.lower().startswith("bearer "):
        return CallerContext.anonymous()
    datastore: Optional[SupabaseStore] = getattr(request.app.state, "datastore", None)
    if datastore is None:
        return CallerContext.anonymous()

    token = authorization.split(" ", 1)[1].strip()
    try:
        return await datastore.get_caller(token)
    except (DatastoreError, httpx.HTTPError) as exc:
        logger.warning("Could not resolve caller from token: %s", exc)
        return CallerContext.anonymous()


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event) -> None:
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected; cancelling run")
            cancel_event.set()
            return
        await asyncio.sleep(_DISCONNECT_POLL_SECONDS)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.post(
    "/chat",
    response_model=ChatResponse,
    responses={code: {"model": ErrorResponse} for code in (400, 402, 429, 500, 502, 504)},
    summary="Ask the assistant",
)
async def chat_endpoint(
    req: ChatRequest,
    request: Request,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    caller: CallerContext = Depends(get_caller),
) -> ChatResponse:
    """Run one orchestration over the supplied conversation."""
    try:
        history = normalize_messages(turn.model_dump() for turn in req.messages)
    except ValueError as exc:
        raise InvalidRequestError(detail=str(exc)) from exc

    cancel_event = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
    try:
        outcome = await orchestrator.run(history, caller, cancel_event=cancel_event)
    finally:
        watcher.cancel()
        with suppress(asyncio.CancelledError):
            await watcher

    return ChatResponse(
        message=outcome.reply, navigation=outcome.navigation, degraded=outcome.degraded
    )


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting AgriConnect assistant API at %s:%d (reload=%s, log_level=%s)",
        host,
        port,
        reload,
        log_level,
    )
    colored_print(f"🌾 AgriConnect assistant is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "agriconnect.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m agriconnect.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
