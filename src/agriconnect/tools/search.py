"""Free-text market and agronomy search through the Serper web search API."""

import logging
from typing import (
    Any,
    Dict,
)

import httpx
from pydantic import (
    BaseModel,
    Field,
)

from agriconnect.tools import (
    ToolContext,
    register_tool,
)

logger = logging.getLogger(__name__)

MAX_SNIPPETS = 3


class SearchArgs(BaseModel):
    query: str = Field(..., min_length=1, description="What to search for, e.g. 'onion mandi price Nashik today'")


@register_tool("search_market_info", SearchArgs)
async def search_market_info(args: SearchArgs, ctx: ToolContext) -> Dict[str, Any]:
    """Search the web for current crop market prices, agricultural news, schemes or farming advice. Returns a few short snippets."""
    if not ctx.settings.SERPER_API_KEY:
        return {"error": "search service not configured"}

    try:
        resp = await ctx.http.post(
            ctx.settings.SERPER_ENDPOINT,
            json={"q": args.query, "num": MAX_SNIPPETS, "gl": "in"},
            headers={"X-API-KEY": ctx.settings.SERPER_API_KEY},
        )
        resp.raise_for_status()
        data = resp.json()
    except httpx.HTTPError as exc:
        logger.warning("Search for %r failed: %s", args.query, exc)
        return {"error": "Search service unavailable", "details": str(exc)}

    results = []
    answer = data.get("answerBox") or {}
    if answer.get("answer") or answer.get("snippet"):
        results.append(
            {
                "title": answer.get("title", ""),
                "snippet": answer.get("answer") or answer.get("snippet"),
                "link": answer.get("link"),
            }
        )
    for item in data.get("organic", []):
        results.append(
            {"title": item.get("title", ""), "snippet": item.get("snippet", ""), "link": item.get("link")}
        )

    return {"query": args.query, "results": results[:MAX_SNIPPETS]}
