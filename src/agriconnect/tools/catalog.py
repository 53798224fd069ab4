"""Marketplace lookups against the Supabase tables (products, orders, users, profiles)."""

import logging
from typing import (
    Any,
    Dict,
    Literal,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from agriconnect.datastore import DatastoreError
from agriconnect.tools import (
    NoArgs,
    ToolContext,
    register_tool,
)

logger = logging.getLogger(__name__)

_NOT_CONFIGURED = {"error": "datastore not configured"}


class ProductFilters(BaseModel):
    """Case-insensitive substring filters for products."""

    category: Optional[str] = Field(None, description="Product category, e.g. 'grains' or 'seeds'")
    name: Optional[str] = Field(None, description="Part of the product name")


class QueryProductsArgs(BaseModel):
    filters: Optional[ProductFilters] = Field(
        None, description="Filters to apply (e.g., category, name contains)"
    )
    limit: Optional[int] = Field(None, ge=1, description="Maximum number of results to return")


class QueryOrdersArgs(BaseModel):
    status: Optional[str] = Field(
        None, description="Filter by order status, e.g. 'pending', 'shipped' or 'delivered'"
    )


class CountRecordsArgs(BaseModel):
    table: Literal["products", "orders", "users", "profiles"] = Field(
        ..., description="Table to count records from"
    )


@register_tool("query_products", QueryProductsArgs)
async def query_products(args: QueryProductsArgs, ctx: ToolContext) -> Dict[str, Any]:
    """Query the products table to get information about available products, their prices, categories, vendors and stock."""
    if ctx.datastore is None:
        return dict(_NOT_CONFIGURED)

    ilike: Dict[str, str] = {}
    if args.filters is not None:
        if args.filters.category:
            ilike["category"] = args.filters.category
        if args.filters.name:
            ilike["name"] = args.filters.name

    try:
        products = await ctx.datastore.select("products", ilike=ilike, limit=args.limit)
    except DatastoreError as exc:
        logger.error("Database error while querying products: %s", exc)
        return {"error": "Failed to query products", "details": str(exc)}
    return {"products": products, "count": len(products)}


@register_tool("query_orders", QueryOrdersArgs, requires_auth=True)
async def query_orders(args: QueryOrdersArgs, ctx: ToolContext) -> Dict[str, Any]:
    """Look up the signed-in user's own orders, their status and delivery details. Requires the user to be signed in."""
    if ctx.datastore is None:
        return dict(_NOT_CONFIGURED)

    eq: Dict[str, Any] = {"customer_id": ctx.caller.user_id}
    if args.status:
        eq["status"] = args.status

    try:
        orders = await ctx.datastore.select("orders", eq=eq, order="created_at.desc")
    except DatastoreError as exc:
        logger.error("Database error while querying orders: %s", exc)
        return {"error": "Failed to query orders", "details": str(exc)}
    return {"orders": orders, "count": len(orders)}


@register_tool("count_records", CountRecordsArgs)
async def count_records(args: CountRecordsArgs, ctx: ToolContext) -> Dict[str, Any]:
    """Count records in any table (products, orders, users, profiles)."""
    if ctx.datastore is None:
        return dict(_NOT_CONFIGURED)

    try:
        count = await ctx.datastore.count(args.table)
    except DatastoreError as exc:
        logger.error("Database error while counting %s: %s", args.table, exc)
        return {"error": f"Failed to count {args.table}", "details": str(exc)}
    return {"table": args.table, "count": count}


@register_tool("get_my_profile", NoArgs, requires_auth=True)
async def get_my_profile(args: NoArgs, ctx: ToolContext) -> Dict[str, Any]:
    """Fetch the signed-in user's profile (name, user type, location, contact). Requires the user to be signed in."""
    if ctx.datastore is None:
        return dict(_NOT_CONFIGURED)

    try:
        rows = await ctx.datastore.select("profiles", eq={"id": ctx.caller.user_id}, limit=1)
    except DatastoreError as exc:
        logger.error("Database error while reading profile: %s", exc)
        return {"error": "Failed to read profile", "details": str(exc)}
    if not rows:
        return {"profile": None, "message": "profile not completed yet"}
    return {"profile": rows[0]}
