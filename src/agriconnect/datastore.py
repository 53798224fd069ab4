"""
Async access to the AgriConnect Supabase project.

Talks to the PostgREST endpoint (``/rest/v1``) for table reads and to GoTrue (``/auth/v1``) to resolve
a caller's access token.  All reads are capped at a deterministic number of rows.
"""

import logging
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Optional,
)

import httpx

from agriconnect.config import Settings
from agriconnect.core.schema import CallerContext

logger = logging.getLogger(__name__)

MAX_RESULT_CAP = 50


class DatastoreError(RuntimeError):
    """Raised when the datastore answers with an error."""


class SupabaseStore:
    """Thin PostgREST client bound to a service-role key."""

    def __init__(
        self,
        url: str,
        service_key: str,
        http: httpx.AsyncClient,
        *,
        result_cap: int = 10,
    ) -> None:
        self.url = url.rstrip("/")
        self._key = service_key
        self._http = http
        self.result_cap = max(1, min(result_cap, MAX_RESULT_CAP))

    @classmethod
    def from_settings(cls, settings: Settings, http: httpx.AsyncClient) -> Optional["SupabaseStore"]:
        """Build a store from *settings*, or return *None* if Supabase is not configured."""
        if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
            logger.warning("Supabase is not configured; datastore tools will report errors")
            return None
        return cls(
            settings.SUPABASE_URL,
            settings.SUPABASE_SERVICE_ROLE_KEY,
            http,
            result_cap=settings.QUERY_RESULT_CAP,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _headers(self, **extra: str) -> Dict[str, str]:
        return {"apikey": self._key, "Authorization": f"Bearer {self._key}", **extra}

    def clamp_limit(self, limit: int | None) -> int:
        """Clamp a requested row count to ``1..result_cap``."""
        if limit is None:
            return self.result_cap
        return max(1, min(int(limit), self.result_cap))

    @staticmethod
    def _filter_params(
        eq: Mapping[str, Any] | None, ilike: Mapping[str, str] | None
    ) -> Dict[str, str]:
        params: Dict[str, str] = {}
        for column, value in (eq or {}).items():
            params[column] = f"eq.{value}"
        for column, value in (ilike or {}).items():
            needle = str(value).replace("*", "").replace("%", "").strip()
            params[column] = f"ilike.*{needle}*"
        return params

    @staticmethod
    def _raise_for_status(resp: httpx.Response, table: str) -> None:
        if resp.is_error:
            try:
                detail = resp.json().get("message", resp.text)
            except ValueError:
                detail = resp.text
            raise DatastoreError(f"{table}: {detail or resp.status_code}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def select(
        self,
        table: str,
        *,
        eq: Mapping[str, Any] | None = None,
        ilike: Mapping[str, str] | None = None,
        columns: str = "*",
        limit: int | None = None,
        order: str | None = None,
    ) -> List[Dict[str, Any]]:
        """Return at most ``clamp_limit(limit)`` rows of *table* matching the filters."""
        params = {"select": columns, "limit": str(self.clamp_limit(limit))}
        params.update(self._filter_params(eq, ilike))
        if order:
            params["order"] = order

        logger.debug("Selecting from %s with %s", table, params)
        resp = await self._http.get(f"{self.url}/rest/v1/{table}", params=params, headers=self._headers())
        self._raise_for_status(resp, table)
        rows = resp.json()
        return list(rows)[: self.clamp_limit(limit)]

    async def count(self, table: str, *, eq: Mapping[str, Any] | None = None) -> int:
        """Exact number of rows in *table* matching *eq*."""
        params = {"select": "*"}
        params.update(self._filter_params(eq, None))
        resp = await self._http.head(
            f"{self.url}/rest/v1/{table}",
            params=params,
            headers=self._headers(Prefer="count=exact"),
        )
        self._raise_for_status(resp, table)
        content_range = resp.headers.get("content-range", "")
        total = content_range.rpartition("/")[2]
        if not total.isdigit():
            raise DatastoreError(f"{table}: missing row count in response")
        return int(total)

    async def get_caller(self, access_token: str) -> CallerContext:
        """Resolve a user access token to a caller.  Invalid tokens yield an anonymous caller."""
        resp = await self._http.get(
            f"{self.url}/auth/v1/user",
            headers={"apikey": self._key, "Authorization": f"Bearer {access_token}"},
        )
        if resp.status_code in (401, 403):
            return CallerContext.anonymous()
        self._raise_for_status(resp, "auth")
        user = resp.json()
        if not user.get("id"):
            return CallerContext.anonymous()
        return CallerContext(is_authenticated=True, user_id=user["id"], email=user.get("email"))
