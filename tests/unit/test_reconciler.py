"""
Unit tests for the reconciliation engine.
Remote tables live in FakePostgrest; the registry sits on in-memory SQLite.
"""

import asyncio

import httpx

from devhub.services.shared.models import ConnectionStatus, OriginTable, UserStatus
from devhub.services.shared.schemas import ConnectionCreate, ConnectionDescriptor

OTHER_HOST = "efgh.supabase.co"


def _reg(rid, email, name="Someone", created_at="2024-02-01T00:00:00Z", **kw):
    return {"id": rid, "name": name, "email": email, "status": "pending", "created_at": created_at, **kw}


# ── merge_tables ───────────────────────────────────────────────────────────────

def test_active_record_hides_registration_with_same_email(descriptor):
    from devhub.services.sync.reconciler import merge_tables
    users = merge_tables(
        [{"user_id": "u-1", "email": "ann@x.com", "full_name": "Ann"}],
        [_reg(7, "ANN@x.com"), _reg(8, "budi@x.com")],
        descriptor,
    )
    ann = [u for u in users if u.email.lower() == "ann@x.com"]
    assert len(ann) == 1
    assert ann[0].origin == OriginTable.users
    assert {u.id for u in users} == {"USR-u-1", "REG-8"}


def test_duplicate_email_within_table_keeps_first_row(descriptor):
    from devhub.services.sync.reconciler import merge_tables
    users = merge_tables([], [
        _reg(9, "dup@x.com", name="Newest", created_at="2024-03-01T00:00:00Z"),
        _reg(4, "dup@x.com", name="Oldest", created_at="2024-01-01T00:00:00Z"),
    ], descriptor)
    assert [u.name for u in users] == ["Newest"]


def test_no_email_rows_are_never_merged(descriptor):
    from devhub.services.sync.reconciler import merge_tables
    users = merge_tables([{"user_id": "u-1"}], [{"id": 1}, {"id": 2}], descriptor)
    assert len(users) == 3


# ── reconcile ──────────────────────────────────────────────────────────────────

def test_single_pending_registration_scenario(fake_remote, reconciler, store, descriptor):
    fake_remote.tables()["registrations"].append({"id": 7, "name": "Ann", "email": "ann@x.com", "status": "pending"})

    report = asyncio.run(reconciler.reconcile())

    assert report.applied
    users = store.users()
    assert len(users) == 1
    assert users[0].id == "REG-7"
    assert users[0].status == UserStatus.pending
    assert users[0].email == "ann@x.com"


def test_reconcile_records_sync_on_descriptor(fake_remote, reconciler, registry, descriptor):
    fake_remote.tables()["registrations"].append(_reg(1, "a@x.com"))
    fake_remote.tables()["users"].append({"user_id": "u-1", "email": "b@x.com"})

    asyncio.run(reconciler.reconcile())

    desc = registry.get(descriptor.id)
    assert desc.user_count == 2
    assert desc.status == ConnectionStatus.connected
    assert desc.last_sync is not None


def test_reconcile_is_idempotent(fake_remote, reconciler, store, descriptor):
    fake_remote.tables()["registrations"].extend([_reg(1, "a@x.com"), _reg(2, "b@x.com", whatsapp="0811")])
    fake_remote.tables()["users"].append({"user_id": "u-1", "email": "c@x.com", "subscription_expiry": "2024-09-01"})

    asyncio.run(reconciler.reconcile())
    first = store.users()
    asyncio.run(reconciler.reconcile())
    second = store.users()

    assert first == second


def test_descriptor_without_key_is_skipped_and_keeps_count(fake_remote, reconciler, registry, descriptor):
    no_key = registry.add(ConnectionCreate(name="Legacy CRM", db_host="db.legacy.supabase.co"))
    no_url = registry.add(ConnectionCreate(name="On-prem", db_host="localhost", api_key="k"))
    registry.update(no_key.id, {"user_count": 5})
    fake_remote.tables()["registrations"].append(_reg(1, "a@x.com"))

    report = asyncio.run(reconciler.reconcile())

    assert set(report.skipped) == {no_key.id, no_url.id}
    assert report.synced == [descriptor.id]
    assert registry.get(no_key.id).user_count == 5
    assert registry.get(no_key.id).status == ConnectionStatus.disconnected


def test_failing_descriptor_does_not_affect_others(fake_remote, reconciler, registry, store, descriptor):
    broken = registry.add(ConnectionCreate(name="Broken", api_url="https://gone.supabase.co", api_key="k"))
    registry.update(broken.id, {"user_count": 3})
    fake_remote.tables()["registrations"].append(_reg(1, "a@x.com"))

    report = asyncio.run(reconciler.reconcile())

    assert report.failed == [broken.id]
    assert [u.id for u in store.users()] == ["REG-1"]
    assert registry.get(broken.id).user_count == 3
    assert registry.get(broken.id).last_sync is None


def test_failure_in_one_table_drops_the_whole_descriptor(fake_remote, reconciler, store, descriptor):
    fake_remote.tables()["registrations"].append(_reg(1, "a@x.com"))
    fake_remote.fail("GET", "users", "network")

    report = asyncio.run(reconciler.reconcile())

    assert report.failed == [descriptor.id]
    assert store.users() == []


def test_two_applications_are_merged(fake_remote, reconciler, registry, store, descriptor):
    other = registry.add(ConnectionCreate(name="Kelas Online", db_host=f"db.{OTHER_HOST}", api_key="k2"))
    fake_remote.tables()["registrations"].append(_reg(1, "same@x.com"))
    fake_remote.tables(OTHER_HOST)["registrations"].append(_reg(1, "same@x.com"))

    asyncio.run(reconciler.reconcile())

    by_app = {u.source_app_id for u in store.users()}
    assert by_app == {descriptor.id, other.id}
    assert len(store.users()) == 2


def test_empty_registry_leaves_loaded_users_alone(reconciler, store):
    from devhub.services.remote.mapper import map_registration
    loaded = map_registration(_reg(1, "a@x.com"), ConnectionDescriptor(id="app-old", name="Old"))
    store.replace([loaded], store.next_generation())

    report = asyncio.run(reconciler.reconcile())

    assert not report.applied
    assert [u.id for u in store.users()] == ["REG-1"]


def test_overlapping_cycles_keep_the_newer_result(fake_remote, registry, store, descriptor):
    from devhub.services.sync.reconciler import Reconciler

    calls = {"n": 0}

    async def handler(request):
        calls["n"] += 1
        response = fake_remote.handler(request)
        if calls["n"] <= 2:
            await asyncio.sleep(0.05)
        return response

    fake_remote.tables()["registrations"].append(_reg(1, "a@x.com"))
    reconciler = Reconciler(registry, store, http=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    async def scenario():
        slow = asyncio.create_task(reconciler.reconcile())
        await asyncio.sleep(0.01)
        fake_remote.tables()["registrations"].append(_reg(2, "b@x.com", created_at="2024-02-02T00:00:00Z"))
        fast = await reconciler.reconcile()
        return await slow, fast

    slow, fast = asyncio.run(scenario())

    assert fast.applied
    assert not slow.applied
    assert {u.id for u in store.users()} == {"REG-1", "REG-2"}


def test_request_refresh_coalesces(fake_remote, reconciler, store, descriptor):
    fake_remote.tables()["registrations"].append(_reg(1, "a@x.com"))

    async def scenario():
        t1 = reconciler.request_refresh(0)
        t2 = reconciler.request_refresh(0)
        await t1
        return t1 is t2

    assert asyncio.run(scenario())
    assert [u.id for u in store.users()] == ["REG-1"]


def test_refresh_requested_mid_pass_queues_another(fake_remote, registry, store, descriptor):
    from devhub.services.sync.reconciler import Reconciler

    async def handler(request):
        response = fake_remote.handler(request)
        await asyncio.sleep(0.05)
        return response

    reconciler = Reconciler(registry, store, http=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    async def scenario():
        first = reconciler.request_refresh(0)
        await asyncio.sleep(0.01)
        fake_remote.tables()["registrations"].append(_reg(1, "a@x.com"))
        second = reconciler.request_refresh(0)
        await asyncio.gather(first, second)
        return first is second

    assert not asyncio.run(scenario())
    assert [u.id for u in store.users()] == ["REG-1"]


def test_local_write_failure_does_not_abort_the_cycle(fake_remote, reconciler, registry, store, descriptor, monkeypatch):
    from sqlalchemy.exc import SQLAlchemyError
    other = registry.add(ConnectionCreate(name="Kelas Online", db_host=f"db.{OTHER_HOST}", api_key="k2"))
    fake_remote.tables()["registrations"].append(_reg(1, "a@x.com"))
    fake_remote.tables(OTHER_HOST)["registrations"].append(_reg(2, "b@x.com"))

    real_record_sync = registry.record_sync

    def record_sync(app_id, count):
        if app_id == descriptor.id:
            raise SQLAlchemyError("database is locked")
        return real_record_sync(app_id, count)

    monkeypatch.setattr(registry, "record_sync", record_sync)

    report = asyncio.run(reconciler.reconcile())

    assert report.applied
    assert report.synced == [descriptor.id, other.id]
    assert {u.email for u in store.users()} == {"a@x.com", "b@x.com"}
    assert registry.get(other.id).user_count == 1
