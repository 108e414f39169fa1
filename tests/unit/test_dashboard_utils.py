"""
Unit tests for the dashboard's pure helpers (no Streamlit session needed).
"""

from datetime import datetime, timezone

import httpx

USERS = [
    {"id": "REG-1", "name": "Ann", "email": "ann@x.com", "status": "pending", "registered_at": "2024-02-01T09:00:00Z"},
    {"id": "REG-2", "name": "Budi", "email": "budi@x.com", "status": "pending", "registered_at": "2024-02-01T18:00:00Z"},
    {"id": "USR-3", "name": "Citra", "email": "citra@x.com", "status": "active", "registered_at": "2024-01-30T00:00:00Z"},
    {"id": "REG-4", "name": "Dewi", "email": "dewi@x.com", "status": "suspended", "registered_at": None},
]


def test_filter_users_by_status_and_search():
    from devhub.services.dashboard.utils.dashboard_utils import filter_users
    assert [u["id"] for u in filter_users(USERS, "pending")] == ["REG-1", "REG-2"]
    assert [u["id"] for u in filter_users(USERS, "all", "CITRA")] == ["USR-3"]
    assert [u["id"] for u in filter_users(USERS, "pending", "budi@")] == ["REG-2"]
    assert len(filter_users(USERS)) == 4


def test_registrations_per_day_counts_and_sorts():
    from devhub.services.dashboard.utils.dashboard_utils import registrations_per_day
    assert registrations_per_day(USERS) == [("2024-01-30", 1), ("2024-02-01", 2)]


def test_expiry_label():
    from devhub.services.dashboard.utils.dashboard_utils import expiry_label
    now = datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert expiry_label("2024-03-11T00:00:00+00:00", now) == "10d left"
    assert expiry_label("2024-02-20T00:00:00+00:00", now) == "expired 10d ago"
    assert expiry_label(None, now) == "-"
    assert expiry_label("garbage", now) == "-"


def test_days_remaining_reads_trimmed_postgres_timestamps():
    from devhub.services.dashboard.utils.dashboard_utils import days_remaining
    now = datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert days_remaining("2024-03-11T00:00:00.12345+00:00", now) == 10
    assert days_remaining("2024-03-11 00:00:00.5+00", now) == 10


def test_hub_call_surfaces_error_payload(monkeypatch):
    from devhub.services.dashboard.utils import dashboard_utils

    def fake_request(method, url, json=None, headers=None, timeout=None):
        assert headers["X-Operator"] == dashboard_utils.OPERATOR
        return httpx.Response(
            409,
            json={"detail": {"code": "config_invalid", "message": "Only registrations can be approved"}},
            request=httpx.Request(method, url),
        )

    monkeypatch.setattr(dashboard_utils.httpx, "request", fake_request)
    ok, payload = dashboard_utils.hub_call("POST", "http://hub/api/users/USR-1/approve")
    assert not ok
    assert payload == "Error 409: config_invalid: Only registrations can be approved"
