"""
DevHub Reconciliation Engine
-----------------------------
Runs as a background asyncio task inside the hub. Every POLL_INTERVAL seconds
(and on operator refresh, and after each approval mutation):

1. Walks the connection registry one descriptor at a time
2. Fetches the active-users table and the registrations table concurrently
3. Maps both through the record mapper, tagging the origin table
4. Drops registrations whose email already has an active account
5. Replaces the whole local user list with the merged result

A descriptor without a key or base URL is skipped. A descriptor whose fetch
fails contributes no users and keeps its cached count and status.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from devhub.services.registry.registry import ConnectionRegistry
from devhub.services.remote.client import RemoteTableClient, can_sync
from devhub.services.remote.mapper import email_key, map_active_user, map_registration
from devhub.services.shared.schemas import ConnectionDescriptor, User
from devhub.services.sync.state import UserStore

logger = structlog.get_logger()

# the console has always polled somewhere between 5 and 10 seconds
POLL_INTERVAL  = min(max(int(os.getenv("DEVHUB_POLL_INTERVAL_SECONDS", "10")), 5), 10)
REFRESH_DELAY  = float(os.getenv("DEVHUB_REFRESH_DELAY_SECONDS", "0.8"))

ClientFactory = Callable[[ConnectionDescriptor], Optional[RemoteTableClient]]


@dataclass
class ReconcileReport:
    generation: int
    applied: bool = False
    users: list[User] = field(default_factory=list)
    synced: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


# ── Merge ─────────────────────────────────────────────────────────────────────

def _dedupe(users: Iterable[User], table: str, app_id: str) -> list[User]:
    """Keep the first user per email; rows arrive newest first."""
    seen: set[str] = set()
    kept: list[User] = []
    for u in users:
        key = email_key(u.email)
        if key is not None:
            if key in seen:
                logger.warning("duplicate_email_dropped", app_id=app_id, table=table, user_id=u.id)
                continue
            seen.add(key)
        kept.append(u)
    return kept


def merge_tables(
    active_rows: list[dict[str, Any]],
    registration_rows: list[dict[str, Any]],
    descriptor: ConnectionDescriptor,
) -> list[User]:
    """
    Combine both tables of one application into canonical users.
    An email present in the active-users table hides its registration row.
    """
    active = _dedupe((map_active_user(r, descriptor) for r in active_rows), "users", descriptor.id)
    pending = _dedupe((map_registration(r, descriptor) for r in registration_rows), "registrations", descriptor.id)

    active_emails = {k for k in (email_key(u.email) for u in active) if k is not None}
    pending = [u for u in pending if email_key(u.email) not in active_emails]
    return active + pending


# ── Engine ────────────────────────────────────────────────────────────────────

class Reconciler:
    def __init__(
        self,
        registry: ConnectionRegistry,
        store: UserStore,
        client_factory: ClientFactory | None = None,
        http=None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._client_factory = client_factory or (lambda d: RemoteTableClient.for_descriptor(d, http=http))
        self._refresh_task: asyncio.Task | None = None
        self._refresh_started = False
        self._refresh_tasks: set[asyncio.Task] = set()

    @property
    def store(self) -> UserStore:
        return self._store

    def client_for(self, descriptor: ConnectionDescriptor) -> Optional[RemoteTableClient]:
        if not can_sync(descriptor):
            return None
        return self._client_factory(descriptor)

    async def fetch_descriptor(self, descriptor: ConnectionDescriptor) -> list[User] | None:
        """Both tables of one application, merged. None when either fetch failed."""
        client = self.client_for(descriptor)
        if client is None:
            return None

        users_res, regs_res = await asyncio.gather(
            client.select(descriptor.users_table, order_by_created=False),
            client.select(descriptor.table_name),
        )
        if not users_res.ok or not regs_res.ok:
            logger.warning(
                "descriptor_fetch_failed",
                app_id=descriptor.id,
                users_error=users_res.error.value if users_res.error else None,
                registrations_error=regs_res.error.value if regs_res.error else None,
            )
            return None
        return merge_tables(users_res.rows, regs_res.rows, descriptor)

    async def reconcile(self) -> ReconcileReport:
        """One full fetch-and-merge pass across every configured application."""
        generation = self._store.next_generation()
        descriptors = self._registry.list()
        report = ReconcileReport(generation=generation)
        accumulator: list[User] = []

        for desc in descriptors:
            if not can_sync(desc):
                report.skipped.append(desc.id)
                continue
            try:
                users = await self.fetch_descriptor(desc)
            except Exception as exc:
                logger.error("descriptor_reconcile_error", app_id=desc.id, error=str(exc))
                users = None
            if users is None:
                report.failed.append(desc.id)
                continue
            accumulator.extend(users)
            report.synced.append(desc.id)
            try:
                await asyncio.get_event_loop().run_in_executor(
                    None, self._registry.record_sync, desc.id, len(users),
                )
            except SQLAlchemyError as exc:
                logger.error("record_sync_failed", app_id=desc.id, error=str(exc))

        # a descriptor deleted while its fetch was in flight must not come back
        live = {d.id for d in self._registry.list()}
        accumulator = [u for u in accumulator if u.source_app_id in live]

        # an empty registry leaves whatever is loaded alone
        if descriptors:
            report.applied = self._store.replace(accumulator, generation)
        report.users = accumulator

        logger.info(
            "reconcile_cycle_complete",
            generation=generation,
            applied=report.applied,
            users=len(accumulator),
            synced=len(report.synced),
            skipped=len(report.skipped),
            failed=len(report.failed),
        )
        return report

    # ── Scheduling ────────────────────────────────────────────────────────────

    @property
    def pending_refresh(self) -> asyncio.Task | None:
        """The most recently scheduled forced pass, if any."""
        return self._refresh_task

    def request_refresh(self, delay: float = REFRESH_DELAY) -> asyncio.Task:
        """
        Schedule a forced pass `delay` seconds from now. Requests coalesce only
        while the scheduled pass is still sleeping; once it has started reading
        the remote tables it may miss the caller's write, so a new pass is queued.
        """
        task = self._refresh_task
        if task is not None and not task.done() and not self._refresh_started:
            return task
        self._refresh_started = False
        task = asyncio.create_task(self._delayed_reconcile(delay))
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)
        self._refresh_task = task
        return task

    async def _delayed_reconcile(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._refresh_started = True
        try:
            await self.reconcile()
        except Exception as exc:
            logger.error("forced_reconcile_error", error=str(exc))

    async def run_loop(self, interval_seconds: int = POLL_INTERVAL) -> None:
        """Long-running coroutine. Started during the hub lifespan."""
        while True:
            try:
                await self.reconcile()
            except Exception as exc:
                logger.error("reconcile_loop_error", error=str(exc))
            await asyncio.sleep(interval_seconds)
