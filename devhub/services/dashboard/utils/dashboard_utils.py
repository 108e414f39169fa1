"""
DevHub Dashboard - shared helpers for talking to the hub and shaping user rows.

All pages import from here:
    from utils.dashboard_utils import safe_get, hub_call, filter_users
"""

from __future__ import annotations

import os
import re
from collections import Counter
from datetime import datetime, timezone
from typing import Any

import httpx

HUB_URL = os.getenv("HUB_URL", "http://localhost:8500")
OPERATOR = os.getenv("DEVHUB_OPERATOR", "admin")
OPERATOR_KEY = os.getenv("DEVHUB_OPERATOR_KEY", "")

# Spread into any plotly fig.update_layout() for consistent dark styling.
DARK_LAYOUT: dict[str, Any] = {
    "paper_bgcolor": "#1e293b",
    "plot_bgcolor":  "#0f172a",
    "font":          {"color": "#e2e8f0"},
}

STATUS_ICON = {
    "pending":      "🟡",
    "active":       "🟢",
    "suspended":    "🔴",
    "connected":    "🟢",
    "disconnected": "⚪",
    "error":        "🔴",
}

STATUS_FILTERS: tuple[str, ...] = ("all", "pending", "active", "suspended")


# ── Hub access ────────────────────────────────────────────────────────────────

def safe_get(url: str, default: Any = None, params: dict | None = None) -> Any:
    try:
        r = httpx.get(url, timeout=6.0, params=params or {})
        return r.json() if r.status_code == 200 else default
    except Exception:
        return default


def _operator_headers() -> dict[str, str]:
    headers = {"X-Operator": OPERATOR}
    if OPERATOR_KEY:
        headers["X-Operator-Key"] = OPERATOR_KEY
    return headers


def hub_call(method: str, url: str, body: dict | None = None, timeout: float = 15.0) -> tuple[bool, Any]:
    """
    Send a mutating request to the hub.

    Returns (ok, payload). On failure payload is a short human-readable message
    taken from the hub's error body when there is one.
    """
    try:
        r = httpx.request(method, url, json=body, headers=_operator_headers(), timeout=timeout)
    except httpx.HTTPError as exc:
        return False, f"Hub unreachable: {exc}"

    try:
        payload = r.json()
    except ValueError:
        payload = r.text[:200]

    if r.is_success:
        return True, payload

    detail = payload.get("detail") if isinstance(payload, dict) else payload
    if isinstance(detail, dict):
        detail = f"{detail.get('code', 'error')}: {detail.get('message', '')}"
    return False, f"Error {r.status_code}: {detail}"


# ── User shaping ──────────────────────────────────────────────────────────────

def filter_users(users: list[dict], status: str = "all", search: str = "") -> list[dict]:
    """Status tab plus case-insensitive name/email search."""
    if status and status != "all":
        users = [u for u in users if u.get("status") == status]
    needle = (search or "").strip().lower()
    if needle:
        users = [
            u for u in users
            if needle in (u.get("name") or "").lower() or needle in (u.get("email") or "").lower()
        ]
    return users


_FRACTION = re.compile(r"\.(\d+)")
_SHORT_OFFSET = re.compile(r"(:\d{2}(?:\.\d+)?[+-]\d{2})$")


def _normalise(ts: str) -> str:
    """Pad fractions to 6 digits and "+00" offsets to "+00:00"."""
    text = ts.strip().replace("Z", "+00:00")
    text = _FRACTION.sub(lambda m: "." + (m.group(1) + "000000")[:6], text, count=1)
    return _SHORT_OFFSET.sub(r"\1:00", text)


def _parse(ts: str | None) -> datetime | None:
    if not ts:
        return None
    try:
        dt = datetime.fromisoformat(_normalise(ts))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def registrations_per_day(users: list[dict]) -> list[tuple[str, int]]:
    """(YYYY-MM-DD, count) for every user with a registration timestamp, oldest day first."""
    days = Counter()
    for u in users:
        dt = _parse(u.get("registered_at"))
        if dt is not None:
            days[dt.date().isoformat()] += 1
    return sorted(days.items())


def days_remaining(subscription_end: str | None, now: datetime | None = None) -> int | None:
    end = _parse(subscription_end)
    if end is None:
        return None
    now = now or datetime.now(timezone.utc)
    return (end - now).days


def expiry_label(subscription_end: str | None, now: datetime | None = None) -> str:
    left = days_remaining(subscription_end, now)
    if left is None:
        return "-"
    if left < 0:
        return f"expired {-left}d ago"
    return f"{left}d left"
