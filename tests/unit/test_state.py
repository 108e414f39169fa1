"""
Unit tests for the UserStore generation counter and subscribers.
"""

from devhub.services.shared.models import OriginTable, UserStatus
from devhub.services.shared.schemas import User


def _user(uid: str, app_id: str = "app-1", **kw) -> User:
    base = dict(
        id=uid, name=uid, email=f"{uid.lower()}@x.com", source_app_id=app_id, source_app_name="A",
        origin=OriginTable.registrations, status=UserStatus.pending,
    )
    base.update(kw)
    return User(**base)


def test_stale_generation_is_discarded():
    from devhub.services.sync.state import UserStore
    store = UserStore()
    g1 = store.next_generation()
    g2 = store.next_generation()

    assert store.replace([_user("REG-2")], g2)
    assert not store.replace([_user("REG-1")], g1)
    assert [u.id for u in store.users()] == ["REG-2"]
    assert store.applied_generation == g2


def test_same_generation_may_reapply():
    from devhub.services.sync.state import UserStore
    store = UserStore()
    g = store.next_generation()
    assert store.replace([_user("REG-1")], g)
    assert store.replace([_user("REG-1"), _user("REG-2")], g)
    assert len(store.users()) == 2


def test_project_overlays_fields():
    from devhub.services.sync.state import UserStore
    store = UserStore([_user("REG-1")])
    updated = store.project("REG-1", status=UserStatus.suspended)
    assert updated.status == UserStatus.suspended
    assert store.get("REG-1").status == UserStatus.suspended
    assert store.project("REG-404", status=UserStatus.active) is None


def test_swap_replaces_record_in_place():
    from devhub.services.sync.state import UserStore
    store = UserStore([_user("REG-1"), _user("REG-2")])
    assert store.swap("REG-1", _user("USR-u-1", origin=OriginTable.users, status=UserStatus.active))
    assert [u.id for u in store.users()] == ["USR-u-1", "REG-2"]


def test_remove_app_drops_only_that_app():
    from devhub.services.sync.state import UserStore
    store = UserStore([_user("REG-1"), _user("REG-2", app_id="app-2"), _user("REG-3")])
    assert store.remove_app("app-1") == 2
    assert [u.id for u in store.users()] == ["REG-2"]


def test_subscribers_receive_snapshots_until_unsubscribed():
    from devhub.services.sync.state import UserStore
    store = UserStore()
    seen = []
    unsubscribe = store.subscribe(seen.append)

    store.replace([_user("REG-1")], store.next_generation())
    unsubscribe()
    store.replace([], store.next_generation())

    assert len(seen) == 1
    assert seen[0].generation == 1
    assert [u.id for u in seen[0].users] == ["REG-1"]


def test_failing_subscriber_does_not_block_others():
    from devhub.services.sync.state import UserStore
    store = UserStore()
    seen = []

    def broken(snapshot):
        raise RuntimeError("boom")

    store.subscribe(broken)
    store.subscribe(seen.append)
    store.replace([_user("REG-1")], store.next_generation())
    assert len(seen) == 1
