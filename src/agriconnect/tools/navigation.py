"""Navigation recorders.  They never fail; the orchestrator surfaces the last intent to the UI."""

from typing import Literal

from pydantic import (
    BaseModel,
    Field,
)

from agriconnect.core.schema import NavigationIntent
from agriconnect.tools import (
    ToolContext,
    register_tool,
)

Route = Literal[
    "/",
    "/marketplace",
    "/vendors",
    "/fertilizer",
    "/about",
    "/search",
    "/orders",
    "/order-history",
    "/checkout",
    "/dashboard",
    "/profile-completion",
    "/usertype",
    "/register",
    "/signin",
]

Section = Literal[
    "hero",
    "problem",
    "solution",
    "features",
    "marketplace",
    "fertilizer",
    "pricing",
    "footer",
    "contact",
]


class NavigateArgs(BaseModel):
    route: Route = Field(..., description="Page to open")


class ScrollArgs(BaseModel):
    section: Section = Field(..., description="Section of the home page to scroll to")


@register_tool("navigate_to", NavigateArgs)
async def navigate_to(args: NavigateArgs, ctx: ToolContext) -> NavigationIntent:
    """Open a page of the AgriConnect site for the user (marketplace, vendors, orders, checkout, ...). Confirm to the user afterwards."""
    return NavigationIntent(route=args.route)


@register_tool("scroll_to_section", ScrollArgs)
async def scroll_to_section(args: ScrollArgs, ctx: ToolContext) -> NavigationIntent:
    """Scroll the home page to one of its sections (features, pricing, contact, ...). Confirm to the user afterwards."""
    return NavigationIntent(route="/", section=args.section)
