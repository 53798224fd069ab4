"""Main orchestration loop of the AgriConnect assistant."""

from __future__ import annotations

import asyncio
import logging
from typing import (
    Any,
    Iterable,
    List,
    Mapping,
)

import httpx

from agriconnect.agent.backends import BaseBackend
from agriconnect.agent.conversation import build_conversation
from agriconnect.agent.tool_executor import execute_tool
from agriconnect.config import Settings
from agriconnect.config import settings as default_settings
from agriconnect.core.exceptions import (
    MalformedResponseError,
    RunCancelledError,
    RunTimeoutError,
)
from agriconnect.core.schema import (
    CallerContext,
    ChatOutcome,
    Message,
    NavigationIntent,
    ToolDeclaration,
)
from agriconnect.datastore import SupabaseStore
from agriconnect.tools import (
    ToolContext,
    ToolRegistry,
)

logger = logging.getLogger(__name__)

DEGRADED_REPLY = (
    "I'm sorry, I couldn't finish working on that request. "
    "Please try rephrasing your question or try again in a moment."
)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------
class Orchestrator:
    """
    Drives the bounded call-backend / run-tools / call-again cycle.

    One instance is built at startup and shared by all requests.  It holds only read-only state
    (backend adapter, tool registry, settings and shared clients); every :meth:`run` builds its own
    conversation.
    """

    def __init__(
        self,
        backend: BaseBackend,
        registry: ToolRegistry,
        settings: Settings | None = None,
        *,
        http: httpx.AsyncClient | None = None,
        datastore: SupabaseStore | None = None,
        max_iterations: int | None = None,
    ) -> None:
        self.backend = backend
        self.registry = registry
        self.settings = settings or default_settings
        self.datastore = datastore
        self.max_iterations = max_iterations or self.settings.MAX_ITERATIONS
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self._owns_http = http is None
        self._http = http
        self.declarations: List[ToolDeclaration] = registry.declarations()

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.settings.REQUEST_TIMEOUT)
        return self._http

    async def aclose(self) -> None:
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None
        await self.backend.aclose()

    async def run(
        self,
        messages: Iterable[Message | Mapping[str, Any]],
        caller: CallerContext | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> ChatOutcome:
        """
        Answer the last user turn of *messages*.

        Parameters
        ----------
        messages:
            Prior turns supplied by the caller, oldest first.  May be empty.
        caller:
            Identity used to gate personal-data tools.  Anonymous if omitted.
        cancel_event:
            When set, the run stops at its next suspension point and discards pending results.
        timeout:
            Overall deadline in seconds (default ``settings.RUN_TIMEOUT``; ``0`` disables it).

        Raises
        ------
        ConfigurationError
            Backend credentials are missing.  Raised before any backend call.
        BackendError
            The backend failed (rate limit, quota, HTTP error) or replied with nothing on the
            first iteration.
        RunCancelledError
            *cancel_event* was set, or the deadline elapsed (:class:`RunTimeoutError`).
        """
        self.backend.ensure_configured()
        caller = caller or CallerContext.anonymous()
        deadline = self.settings.RUN_TIMEOUT if timeout is None else timeout

        if not deadline or deadline <= 0:
            return await self._run(messages, caller, cancel_event)
        try:
            return await asyncio.wait_for(self._run(messages, caller, cancel_event), timeout=deadline)
        except asyncio.TimeoutError as exc:
            logger.warning("Run exceeded its %.1fs deadline", deadline)
            raise RunTimeoutError() from exc

    @staticmethod
    def _check_cancelled(cancel_event: asyncio.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Run cancelled by caller")
            raise RunCancelledError()

    async def _run(
        self,
        messages: Iterable[Message | Mapping[str, Any]],
        caller: CallerContext,
        cancel_event: asyncio.Event | None,
    ) -> ChatOutcome:
        conversation = build_conversation(messages, caller, self.declarations)
        ctx = ToolContext(
            caller=caller, settings=self.settings, http=self.http, datastore=self.datastore
        )
        navigation: NavigationIntent | None = None
        logger.info(
            "Processing chat request with %d messages (authenticated=%s)",
            len(conversation) - 1,
            caller.is_authenticated,
        )

        iteration = 0
        for iteration in range(1, self.max_iterations + 1):
            self._check_cancelled(cancel_event)
            logger.debug("Iteration %d/%d", iteration, self.max_iterations)
            reply = await self.backend.complete(conversation, self.declarations)
            self._check_cancelled(cancel_event)

            # Execute any tool calls and feed the results back
            if reply.tool_calls:
                logger.info(
                    "Backend returned %d tool calls: %s",
                    len(reply.tool_calls),
                    [call.name for call in reply.tool_calls],
                )
                if reply.text:
                    logger.debug("Dropping interim text next to tool calls: %r", reply.text)

                outcomes = await asyncio.gather(
                    *(
                        execute_tool(call, self.registry, ctx, timeout=self.settings.TOOL_TIMEOUT)
                        for call in reply.tool_calls
                    )
                )
                self._check_cancelled(cancel_event)

                for call, (result, intent) in zip(reply.tool_calls, outcomes):
                    conversation.record_tool_exchange(call, result)
                    if intent is not None:
                        navigation = intent
                continue

            # Plain text: done
            if reply.text and reply.text.strip():
                logger.info("Final answer after %d iteration(s)", iteration)
                return ChatOutcome(
                    reply=reply.text.strip(), navigation=navigation, iterations=iteration
                )

            # Neither text nor tool calls
            if iteration == 1:
                logger.error("Backend returned an empty reply on the first iteration")
                raise MalformedResponseError(detail=f"finish_reason={reply.finish_reason}")
            logger.warning("Backend returned an empty reply on iteration %d", iteration)
            break
        else:
            logger.warning("Iteration budget of %d exhausted", self.max_iterations)

        return ChatOutcome(
            reply=DEGRADED_REPLY, navigation=navigation, iterations=iteration, degraded=True
        )
