"""
Approval workflow.

Transitions:
  approve  (registrations -> users)  insert into the users table, then delete the registration row
  reject   (registrations)           patch the registration row's status to "rejected"
  extend   (users)                   push subscription expiry forward by a week / month / year
  tier     (either table)            patch subscription_tier on the origin row
  approve_all                        approve every pending registration, one at a time

Every transition is remote-first: the local list only changes after the remote
call succeeds, and then only in the fields that call changed. A forced
reconciliation follows shortly after to pick up anything else that moved.
"""

from __future__ import annotations

import asyncio
import calendar
import os
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import structlog

from devhub.services.registry.registry import ConnectionRegistry
from devhub.services.remote.client import RemoteTableClient, WriteResult
from devhub.services.remote.mapper import (
    REJECTED_STATUS_VALUE, USER_PREFIX, NO_EMAIL,
    active_user_field_map, column_for, registration_field_map, to_remote_row,
)
from devhub.services.shared.audit import AuditTrail
from devhub.services.shared.errors import DevHubError, ErrorKind
from devhub.services.shared.models import ExtensionPlan, OriginTable, SubscriptionTier, UserStatus
from devhub.services.shared.schemas import ConnectionDescriptor, User
from devhub.services.sync.reconciler import REFRESH_DELAY, Reconciler

logger = structlog.get_logger()

DEFAULT_ROLE = os.getenv("DEVHUB_DEFAULT_ROLE", "user")


# ── Calendar arithmetic ───────────────────────────────────────────────────────

def add_months(dt: datetime, months: int) -> datetime:
    """Calendar month step; the day is clamped to the target month's length (Jan 31 -> Feb 28/29)."""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def add_years(dt: datetime, years: int) -> datetime:
    """Feb 29 lands on Feb 28 in a non-leap target year."""
    return add_months(dt, 12 * years)


# Postgres trims trailing zeros from fractions and may print "+00" offsets
_FRACTION = re.compile(r"\.(\d+)")
_SHORT_OFFSET = re.compile(r"(:\d{2}(?:\.\d+)?[+-]\d{2})$")


def normalise_timestamp(raw: str) -> str:
    """Rewrite a timestamptz string into the shape datetime.fromisoformat accepts on 3.10."""
    text = raw.strip().replace("Z", "+00:00")
    text = _FRACTION.sub(lambda m: "." + (m.group(1) + "000000")[:6], text, count=1)
    return _SHORT_OFFSET.sub(r"\1:00", text)


def parse_timestamp(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        dt = datetime.fromisoformat(normalise_timestamp(raw))
    except ValueError:
        logger.debug("timestamp_unparseable", value=raw)
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def compute_extended_expiry(
    current: datetime | None,
    plan: ExtensionPlan,
    now: datetime | None = None,
) -> datetime:
    """
    New expiry for an extension. A lapsed or missing expiry extends from now,
    so past gaps are not carried forward.
    """
    now = now or datetime.now(timezone.utc)
    base = current if current is not None and current > now else now
    if plan == ExtensionPlan.weekly:
        return base + timedelta(days=7)
    if plan == ExtensionPlan.monthly:
        return add_months(base, 1)
    return add_years(base, 1)


# ── Workflow ──────────────────────────────────────────────────────────────────

@dataclass
class BulkResult:
    approved: list[str] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)


def _raise_for(res: WriteResult, message: str, **detail) -> None:
    if not res.ok:
        raise DevHubError(
            res.error or ErrorKind.remote_rejected,
            message,
            status_code=res.status_code,
            remote_detail=res.detail,
            **detail,
        )


class ApprovalWorkflow:
    def __init__(
        self,
        registry: ConnectionRegistry,
        reconciler: Reconciler,
        audit: AuditTrail | None = None,
        refresh_delay: float | None = REFRESH_DELAY,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._registry = registry
        self._reconciler = reconciler
        self._store = reconciler.store
        self._audit = audit
        self._refresh_delay = refresh_delay
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory or (lambda: f"u-{uuid.uuid4().hex[:12]}")

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _resolve(self, user_id: str) -> tuple[User, ConnectionDescriptor, RemoteTableClient]:
        user = self._store.get(user_id)
        if user is None:
            raise DevHubError(ErrorKind.not_found, f"User {user_id} not found", user_id=user_id)
        desc = self._registry.get(user.source_app_id)
        if desc is None:
            raise DevHubError(ErrorKind.config_invalid, "Source application is no longer registered",
                              user_id=user_id, app_id=user.source_app_id)
        client = self._reconciler.client_for(desc)
        if client is None:
            raise DevHubError(ErrorKind.config_invalid, "Source application has no API key or base URL",
                              user_id=user_id, app_id=desc.id)
        return user, desc, client

    @staticmethod
    def _registration_match(user: User, desc: ConnectionDescriptor) -> dict[str, Any]:
        fmap = registration_field_map(desc)
        if user.remote_id is not None:
            return {column_for(fmap, "remote_id"): user.remote_id}
        return {column_for(fmap, "email"): user.email}

    async def _audit_record(self, actor: str, action: str, user: User, **detail) -> None:
        if self._audit is None:
            return
        await asyncio.get_event_loop().run_in_executor(
            None,
            self._audit.record,
            actor, action, f"user:{user.id}", {"app_id": user.source_app_id, "email": user.email, **detail},
        )

    def _schedule_refresh(self) -> None:
        if self._refresh_delay is not None:
            self._reconciler.request_refresh(self._refresh_delay)

    # ── Transitions ───────────────────────────────────────────────────────────

    async def approve(
        self,
        user_id: str,
        subscription_end: datetime | None = None,
        role: str | None = None,
        tier: SubscriptionTier | None = None,
        actor: str = "admin",
    ) -> User:
        """Move a pending registration into the users table."""
        user, desc, client = self._resolve(user_id)
        if user.origin != OriginTable.registrations:
            if user.status == UserStatus.active:
                return user
            raise DevHubError(ErrorKind.config_invalid, "Only registrations can be approved", user_id=user_id)

        now = self._clock()
        expiry = subscription_end or add_months(now, 1)
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        new_remote_id = self._id_factory()
        tier = tier or user.subscription_tier
        role = role or DEFAULT_ROLE

        row = to_remote_row({
            "remote_id":         new_remote_id,
            "name":              user.name,
            "email":             user.email,
            "phone":             user.phone,
            "password":          user.password,
            "role":              role,
            "subscription_end":  expiry.isoformat(),
            "subscription_tier": tier.value,
            "updated_at":        now.isoformat(),
        }, active_user_field_map(desc))

        inserted = await client.insert(desc.users_table, row)
        if not inserted.ok:
            logger.warning("approve_insert_failed", user_id=user_id, app_id=desc.id, error=inserted.error)
            await self._audit_record(actor, "user_approve_failed", user, step="insert")
            _raise_for(inserted, "Could not create the account in the users table", user_id=user_id)

        approved = user.model_copy(update={
            "id":                f"{USER_PREFIX}-{new_remote_id}",
            "remote_id":         new_remote_id,
            "origin":            OriginTable.users,
            "status":            UserStatus.active,
            "subscription_end":  expiry.isoformat(),
            "subscription_tier": tier,
            "role":              role,
            "registered_at":     now.isoformat(),
            "reason":            None,
        })
        # the users row exists now; reconciliation would hide the registration either way
        self._store.swap(user_id, approved)

        deleted = await client.delete(desc.table_name, self._registration_match(user, desc))
        self._schedule_refresh()
        if not deleted.ok:
            logger.error("approve_delete_failed", user_id=user_id, app_id=desc.id, error=deleted.error)
            await self._audit_record(actor, "user_approve_partial", user, new_user_id=approved.id, step="delete")
            raise DevHubError(
                ErrorKind.partial_mutation,
                "Account created but the registration row could not be removed",
                user_id=user_id, new_user_id=approved.id,
                status_code=deleted.status_code, remote_detail=deleted.detail,
            )

        logger.info("user_approved", user_id=user_id, new_user_id=approved.id, app_id=desc.id)
        await self._audit_record(actor, "user_approved", user, new_user_id=approved.id, subscription_end=approved.subscription_end)
        return approved

    async def reject(self, user_id: str, actor: str = "admin") -> User:
        user, desc, client = self._resolve(user_id)
        if user.origin != OriginTable.registrations:
            raise DevHubError(ErrorKind.config_invalid, "Only registrations can be rejected", user_id=user_id)

        status_col = column_for(registration_field_map(desc), "status")
        res = await client.patch(desc.table_name, {status_col: REJECTED_STATUS_VALUE}, self._registration_match(user, desc))
        _raise_for(res, "Could not mark the registration as rejected", user_id=user_id)

        updated = self._store.project(user_id, status=UserStatus.suspended) or user
        self._schedule_refresh()
        logger.info("user_rejected", user_id=user_id, app_id=desc.id)
        await self._audit_record(actor, "user_rejected", user)
        return updated

    async def extend_subscription(self, user_id: str, plan: ExtensionPlan, actor: str = "admin") -> User:
        user, desc, client = self._resolve(user_id)
        if user.origin != OriginTable.users:
            raise DevHubError(ErrorKind.config_invalid, "Approve the registration before extending it", user_id=user_id)
        if user.email == NO_EMAIL:
            raise DevHubError(ErrorKind.config_invalid, "User has no email to match on", user_id=user_id)

        new_end = compute_extended_expiry(parse_timestamp(user.subscription_end), plan, now=self._clock())
        fmap = active_user_field_map(desc)
        # ids differ between the two tables, email is the shared key
        res = await client.patch(
            desc.users_table,
            {column_for(fmap, "subscription_end"): new_end.isoformat()},
            {column_for(fmap, "email"): user.email},
        )
        _raise_for(res, "Could not update the subscription expiry", user_id=user_id)

        updated = self._store.project(user_id, subscription_end=new_end.isoformat(), status=UserStatus.active) or user
        self._schedule_refresh()
        logger.info("subscription_extended", user_id=user_id, plan=plan.value, subscription_end=new_end.isoformat())
        await self._audit_record(actor, "subscription_extended", user, plan=plan.value,
                           previous_end=user.subscription_end, subscription_end=new_end.isoformat())
        return updated

    async def change_tier(self, user_id: str, tier: SubscriptionTier, actor: str = "admin") -> User:
        user, desc, client = self._resolve(user_id)
        if user.origin == OriginTable.registrations:
            fmap = registration_field_map(desc)
            table, match = desc.table_name, self._registration_match(user, desc)
        else:
            fmap = active_user_field_map(desc)
            table, match = desc.users_table, {column_for(fmap, "email"): user.email}

        res = await client.patch(table, {column_for(fmap, "subscription_tier"): tier.value}, match)
        _raise_for(res, "Could not change the subscription tier", user_id=user_id)

        updated = self._store.project(user_id, subscription_tier=tier) or user
        self._schedule_refresh()
        await self._audit_record(actor, "subscription_tier_changed", user, previous=user.subscription_tier.value, tier=tier.value)
        return updated

    async def approve_all(self, actor: str = "admin") -> BulkResult:
        """Approve every pending registration; one failure does not stop the rest."""
        result = BulkResult()
        pending = [
            u for u in self._store.users()
            if u.status == UserStatus.pending and u.origin == OriginTable.registrations
        ]
        for user in pending:
            try:
                approved = await self.approve(user.id, actor=actor)
                result.approved.append(approved.id)
            except DevHubError as exc:
                result.failed.append({"user_id": user.id, "kind": exc.kind.value, "message": exc.message})
        logger.info("bulk_approve_complete", approved=len(result.approved), failed=len(result.failed))
        return result
