"""
In-process state container for the merged user list.

The reconciliation engine is the only code that replaces the list wholesale.
Each cycle draws a generation number before it starts fetching; when cycles
overlap, a result whose generation is older than the last applied one is
discarded rather than overwriting fresher data.

The approval workflow may project individual fields onto a user after a
confirmed remote mutation; the next applied cycle supersedes those projections.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Optional

import structlog

from devhub.services.shared.schemas import User

logger = structlog.get_logger()


@dataclass(frozen=True)
class UserSnapshot:
    generation: int
    users: tuple[User, ...]


Subscriber = Callable[[UserSnapshot], None]


class UserStore:
    def __init__(self, users: Iterable[User] = ()) -> None:
        self._users: list[User] = list(users)
        self._issued = 0
        self._applied = 0
        self._subscribers: list[Subscriber] = []

    # ── Generations ───────────────────────────────────────────────────────────

    def next_generation(self) -> int:
        self._issued += 1
        return self._issued

    @property
    def applied_generation(self) -> int:
        return self._applied

    # ── Reads ─────────────────────────────────────────────────────────────────

    def snapshot(self) -> UserSnapshot:
        return UserSnapshot(generation=self._applied, users=tuple(self._users))

    def users(self) -> list[User]:
        return list(self._users)

    def get(self, user_id: str) -> Optional[User]:
        return next((u for u in self._users if u.id == user_id), None)

    # ── Writes ────────────────────────────────────────────────────────────────

    def replace(self, users: Iterable[User], generation: int) -> bool:
        """Swap in a full reconciliation result unless a newer one already landed."""
        if generation < self._applied:
            logger.info("reconcile_result_discarded", generation=generation, applied=self._applied)
            return False
        self._users = list(users)
        self._applied = generation
        self._notify()
        return True

    def project(self, user_id: str, **fields) -> Optional[User]:
        """Overlay fields a confirmed mutation is known to have changed."""
        for i, u in enumerate(self._users):
            if u.id == user_id:
                updated = u.model_copy(update=fields)
                self._users[i] = updated
                self._notify()
                return updated
        return None

    def swap(self, user_id: str, replacement: User) -> bool:
        """Replace one user record with another (approve moves a user between tables)."""
        for i, u in enumerate(self._users):
            if u.id == user_id:
                self._users[i] = replacement
                self._notify()
                return True
        return False

    def remove_app(self, app_id: str) -> int:
        before = len(self._users)
        self._users = [u for u in self._users if u.source_app_id != app_id]
        removed = before - len(self._users)
        if removed:
            self._notify()
        return removed

    # ── Subscribers ───────────────────────────────────────────────────────────

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _notify(self) -> None:
        snap = self.snapshot()
        for cb in list(self._subscribers):
            try:
                cb(snap)
            except Exception as exc:
                logger.warning("user_store_subscriber_error", error=str(exc))
