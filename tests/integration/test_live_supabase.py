"""
Integration test: read-only reconciliation against a real Supabase project.
Requires: DEVHUB_IT_API_URL and DEVHUB_IT_API_KEY pointing at a project that
has a registrations table and a users table.

Nothing is written remotely; only SELECTs are issued.

Run with: pytest tests/integration/test_live_supabase.py -v
"""

import asyncio
import os

import httpx
import pytest

API_URL = os.getenv("DEVHUB_IT_API_URL", "")
API_KEY = os.getenv("DEVHUB_IT_API_KEY", "")
REGISTRATIONS_TABLE = os.getenv("DEVHUB_IT_REGISTRATIONS_TABLE", "registrations")
USERS_TABLE = os.getenv("DEVHUB_IT_USERS_TABLE", "users")


def _configured() -> bool:
    return bool(API_URL and API_KEY)


def _descriptor():
    from devhub.services.shared.schemas import ConnectionDescriptor
    return ConnectionDescriptor(
        id="app-live",
        name="Live project",
        api_url=API_URL,
        api_key=API_KEY,
        table_name=REGISTRATIONS_TABLE,
        users_table=USERS_TABLE,
    )


@pytest.mark.integration
def test_ping_both_tables():
    if not _configured():
        pytest.skip("Set DEVHUB_IT_API_URL and DEVHUB_IT_API_KEY to run live tests")
    from devhub.services.remote.client import RemoteTableClient

    client = RemoteTableClient.for_descriptor(_descriptor())
    for table in (REGISTRATIONS_TABLE, USERS_TABLE):
        res = asyncio.run(client.ping(table))
        assert res.ok, f"{table}: {res.error} {res.detail}"


@pytest.mark.integration
def test_fetch_and_merge_is_stable():
    """Two consecutive fetches of unchanged data map to the same users."""
    if not _configured():
        pytest.skip("Set DEVHUB_IT_API_URL and DEVHUB_IT_API_KEY to run live tests")
    from devhub.services.remote.mapper import email_key
    from devhub.services.shared.models import OriginTable
    from devhub.services.sync.reconciler import Reconciler
    from devhub.services.sync.state import UserStore

    desc = _descriptor()

    async def fetch_twice():
        async with httpx.AsyncClient(timeout=10.0) as http:
            reconciler = Reconciler(registry=None, store=UserStore(), http=http)
            return await reconciler.fetch_descriptor(desc), await reconciler.fetch_descriptor(desc)

    first, second = asyncio.run(fetch_twice())
    assert first is not None and second is not None
    assert [u.id for u in first] == [u.id for u in second]

    active_emails = {email_key(u.email) for u in first if u.origin == OriginTable.users}
    for u in first:
        if u.origin == OriginTable.registrations and email_key(u.email) is not None:
            assert email_key(u.email) not in active_emails
