"""
DevHub Remote Table Client
---------------------------
Thin async wrapper over the PostgREST surface that Supabase projects expose:

  GET    {base}/rest/v1/{table}?select=*[&order=created_at.desc]
  PATCH  {base}/rest/v1/{table}?id=eq.{id}         (or email=eq.{email})
  POST   {base}/rest/v1/{table}
  DELETE {base}/rest/v1/{table}?id=eq.{id}

Every call carries the descriptor's static key twice (apikey + Bearer).
Failures never raise: reads come back as an empty TableResult with ok=False,
writes as WriteResult(ok=False). There is no retry; the next poll cycle is
the retry.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import structlog

from devhub.services.shared.errors import ErrorKind

logger = structlog.get_logger()

REST_PREFIX = "/rest/v1"
REMOTE_TIMEOUT = float(os.getenv("DEVHUB_REMOTE_TIMEOUT_SECONDS", "8"))

# db.<project-ref>.<provider-domain>  ->  https://<project-ref>.<provider-domain>
_DB_HOST_RE = re.compile(r"^db\.(?P<ref>[A-Za-z0-9-]+)\.(?P<provider>[A-Za-z0-9.-]+\.[A-Za-z]{2,})$")


@dataclass
class TableResult:
    rows: list[dict[str, Any]] = field(default_factory=list)
    ok: bool = True
    error: Optional[ErrorKind] = None
    status_code: Optional[int] = None
    detail: Optional[str] = None


@dataclass
class WriteResult:
    ok: bool
    error: Optional[ErrorKind] = None
    status_code: Optional[int] = None
    detail: Optional[str] = None


# ── Base URL derivation ───────────────────────────────────────────────────────

def derive_base_url(db_host: str | None) -> str | None:
    """Rebuild the REST base from a database host of the form db.<ref>.<provider>."""
    if not db_host:
        return None
    host = db_host.strip().lower()
    host = host.split("://", 1)[-1].split("/", 1)[0].split(":", 1)[0]
    m = _DB_HOST_RE.match(host)
    if not m:
        return None
    return f"https://{m.group('ref')}.{m.group('provider')}"


def resolve_base_url(descriptor) -> str | None:
    """A directly supplied api_url wins over host derivation."""
    if descriptor.api_url and descriptor.api_url.strip():
        return descriptor.api_url.strip().rstrip("/")
    return derive_base_url(descriptor.db_host)


def can_sync(descriptor) -> bool:
    """Descriptors without a key or a reachable base URL sit out of reconciliation."""
    return bool(descriptor.api_key) and resolve_base_url(descriptor) is not None


def eq_filter(match: dict[str, Any]) -> dict[str, str]:
    return {col: f"eq.{value}" for col, value in match.items()}


# ── Client ────────────────────────────────────────────────────────────────────

class RemoteTableClient:
    """
    One client per (base URL, key). Pass a shared httpx.AsyncClient to reuse
    connections across descriptors; otherwise a short-lived one is opened per call.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        http: httpx.AsyncClient | None = None,
        timeout: float = REMOTE_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._http = http
        self._timeout = timeout

    @classmethod
    def for_descriptor(cls, descriptor, http: httpx.AsyncClient | None = None) -> "RemoteTableClient | None":
        base_url = resolve_base_url(descriptor)
        if not descriptor.api_key or not base_url:
            return None
        return cls(base_url, descriptor.api_key, http=http)

    def _headers(self, write: bool = False) -> dict[str, str]:
        headers = {
            "apikey":        self.api_key,
            "Authorization": f"Bearer {self.api_key}",
        }
        if write:
            headers["Content-Type"] = "application/json"
            headers["Prefer"] = "return=minimal"
        return headers

    def _url(self, table: str) -> str:
        return f"{self.base_url}{REST_PREFIX}/{table}"

    async def _request(
        self,
        method: str,
        table: str,
        params: dict[str, str] | None = None,
        json: Any = None,
        write: bool = False,
    ) -> httpx.Response:
        kwargs: dict[str, Any] = {"params": params or {}, "headers": self._headers(write)}
        if json is not None:
            kwargs["json"] = json
        if self._http is not None:
            return await self._http.request(method, self._url(table), timeout=self._timeout, **kwargs)
        async with httpx.AsyncClient(timeout=self._timeout) as http:
            return await http.request(method, self._url(table), **kwargs)

    async def _write(
        self,
        method: str,
        table: str,
        params: dict[str, str] | None = None,
        json: Any = None,
    ) -> WriteResult:
        try:
            r = await self._request(method, table, params=params, json=json, write=True)
        except httpx.HTTPError as exc:
            logger.error("remote_request_failed", method=method, table=table, base_url=self.base_url, error=str(exc))
            return WriteResult(ok=False, error=ErrorKind.network, detail=str(exc))

        if r.is_success:
            return WriteResult(ok=True, status_code=r.status_code)

        logger.warning(
            "remote_request_rejected",
            method=method, table=table, base_url=self.base_url,
            status_code=r.status_code, body=r.text[:200],
        )
        return WriteResult(ok=False, error=ErrorKind.remote_rejected, status_code=r.status_code, detail=r.text[:500])

    # ── Operations ────────────────────────────────────────────────────────────

    async def select(
        self,
        table: str,
        order_by_created: bool = True,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> TableResult:
        """SELECT * from a table. Soft-fails to an empty result."""
        params: dict[str, str] = {"select": "*"}
        if order_by_created:
            params["order"] = "created_at.desc"
        if filters:
            params.update(eq_filter(filters))
        if limit is not None:
            params["limit"] = str(limit)

        try:
            r = await self._request("GET", table, params=params)
        except httpx.HTTPError as exc:
            logger.error("remote_request_failed", method="GET", table=table, base_url=self.base_url, error=str(exc))
            return TableResult(ok=False, error=ErrorKind.network, detail=str(exc))

        if not r.is_success:
            logger.warning(
                "remote_request_rejected",
                method="GET", table=table, base_url=self.base_url,
                status_code=r.status_code, body=r.text[:200],
            )
            return TableResult(ok=False, error=ErrorKind.remote_rejected, status_code=r.status_code, detail=r.text[:500])

        try:
            rows = r.json()
        except ValueError:
            rows = None
        if not isinstance(rows, list):
            logger.warning("remote_payload_unexpected", table=table, base_url=self.base_url)
            return TableResult(ok=False, error=ErrorKind.remote_rejected, status_code=r.status_code, detail="expected a JSON array")

        return TableResult(rows=[row for row in rows if isinstance(row, dict)], status_code=r.status_code)

    async def patch(self, table: str, values: dict[str, Any], match: dict[str, Any]) -> WriteResult:
        """Partial column update of the rows matching every `col=eq.value` pair in match."""
        if not match:
            # an unfiltered PATCH would rewrite the whole table
            return WriteResult(ok=False, error=ErrorKind.config_invalid, detail="patch requires a match filter")
        return await self._write("PATCH", table, params=eq_filter(match), json=values)

    async def insert(self, table: str, row: dict[str, Any]) -> WriteResult:
        return await self._write("POST", table, json=row)

    async def delete(self, table: str, match: dict[str, Any]) -> WriteResult:
        if not match:
            return WriteResult(ok=False, error=ErrorKind.config_invalid, detail="delete requires a match filter")
        return await self._write("DELETE", table, params=eq_filter(match))

    async def ping(self, table: str) -> WriteResult:
        """Connection test: a one-row read of the given table."""
        result = await self.select(table, order_by_created=False, limit=1)
        return WriteResult(ok=result.ok, error=result.error, status_code=result.status_code, detail=result.detail)
