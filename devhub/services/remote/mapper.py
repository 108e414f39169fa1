"""
DevHub Record Mapper
---------------------
Converts rows from the two remote tables into the canonical User.

Remote schemas drift between releases of the connected apps (whatsapp vs
phone_number, subscription_expiry vs subscription_end, ...). Instead of
per-field fallback chains, each canonical field lists the source columns it
accepts, tried in order. A descriptor can prepend its own column names through
`field_overrides`, so a new schema is configuration, not code.

Mapping is pure: no I/O, no clock, never raises on a missing column.
"""

from __future__ import annotations

from typing import Any, Mapping

from devhub.services.shared.models import OriginTable, SubscriptionTier, UserStatus
from devhub.services.shared.schemas import (
    ConnectionDescriptor, RemoteActiveUserRecord, RemoteRegistrationRecord, User,
)

NO_EMAIL = "no-email"
NEVER = "Never"
UNKNOWN_CANDIDATE = "Unknown Candidate"
UNKNOWN_USER = "Unknown User"

REGISTRATION_PREFIX = "REG"
USER_PREFIX = "USR"

# canonical field -> accepted source columns, first match wins.
# The first entry is also the column written on insert/patch.
REGISTRATION_FIELDS: dict[str, tuple[str, ...]] = {
    "remote_id":         ("id", "registration_id"),
    "name":              ("name", "full_name", "username"),
    "email":             ("email",),
    "phone":             ("whatsapp", "phone_number", "phone"),
    "password":          ("password", "password_hash"),
    "reason":            ("reason", "notes", "message"),
    "created_at":        ("created_at", "inserted_at"),
    "status":            ("status",),
    "subscription_tier": ("subscription_tier", "tier", "plan"),
}

ACTIVE_USER_FIELDS: dict[str, tuple[str, ...]] = {
    "remote_id":         ("user_id", "id", "username"),
    "name":              ("full_name", "name", "username"),
    "email":             ("email",),
    "role":              ("role",),
    "phone":             ("whatsapp", "phone_number", "phone"),
    "password":          ("password", "password_hash"),
    "subscription_end":  ("subscription_expiry", "subscription_end", "expires_at"),
    "subscription_tier": ("subscription_tier", "tier", "plan"),
    "created_at":        ("created_at", "inserted_at"),
    "updated_at":        ("updated_at", "last_sign_in_at"),
}

# registration status vocabulary -> canonical status; anything else is pending
REGISTRATION_STATUS: dict[str, UserStatus] = {
    "approved":  UserStatus.active,
    "active":    UserStatus.active,
    "rejected":  UserStatus.suspended,
    "suspended": UserStatus.suspended,
}

REJECTED_STATUS_VALUE = "rejected"


# ── Field resolution ──────────────────────────────────────────────────────────

def merge_field_map(
    base: Mapping[str, tuple[str, ...]],
    overrides: Mapping[str, list[str]] | None = None,
) -> dict[str, tuple[str, ...]]:
    """Prepend descriptor-specific column names to the accepted columns of each field."""
    merged = {name: tuple(cols) for name, cols in base.items()}
    for name, cols in (overrides or {}).items():
        extra = tuple(c for c in cols if c)
        merged[name] = extra + tuple(c for c in merged.get(name, ()) if c not in extra)
    return merged


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return str(value)


def resolve_fields(row: Mapping[str, Any], field_map: Mapping[str, tuple[str, ...]]) -> dict[str, Any]:
    """Pick, for each canonical field, the first non-empty value among its accepted columns."""
    resolved: dict[str, Any] = {}
    for name, columns in field_map.items():
        for col in columns:
            value = row.get(col)
            if value is None or (isinstance(value, str) and not value.strip()):
                continue
            keep_int = name == "remote_id" and isinstance(value, int) and not isinstance(value, bool)
            resolved[name] = value if keep_int else _text(value)
            break
    return resolved


def column_for(field_map: Mapping[str, tuple[str, ...]], name: str) -> str:
    """The column a canonical field is written to."""
    return field_map[name][0]


def to_remote_row(values: Mapping[str, Any], field_map: Mapping[str, tuple[str, ...]]) -> dict[str, Any]:
    """Translate canonical field values back into remote column names, dropping Nones."""
    return {
        column_for(field_map, name): value
        for name, value in values.items()
        if value is not None and name in field_map
    }


def _tier(raw: str | None) -> SubscriptionTier:
    try:
        return SubscriptionTier((raw or "").lower())
    except ValueError:
        return SubscriptionTier.free


def normalize_registration_status(raw: str | None) -> UserStatus:
    return REGISTRATION_STATUS.get((raw or "").strip().lower(), UserStatus.pending)


def local_id(prefix: str, remote_id: Any, email: str) -> str:
    """Origin-prefixed id; rows without an id fall back to the email so ids stay stable."""
    key = remote_id if remote_id not in (None, "") else email
    return f"{prefix}-{key}"


# ── Mappers ───────────────────────────────────────────────────────────────────

def registration_field_map(descriptor: ConnectionDescriptor) -> dict[str, tuple[str, ...]]:
    return merge_field_map(REGISTRATION_FIELDS, descriptor.field_overrides)


def active_user_field_map(descriptor: ConnectionDescriptor) -> dict[str, tuple[str, ...]]:
    return merge_field_map(ACTIVE_USER_FIELDS, descriptor.field_overrides)


def parse_registration(row: Mapping[str, Any], descriptor: ConnectionDescriptor) -> RemoteRegistrationRecord:
    return RemoteRegistrationRecord(**resolve_fields(row, registration_field_map(descriptor)))


def parse_active_user(row: Mapping[str, Any], descriptor: ConnectionDescriptor) -> RemoteActiveUserRecord:
    return RemoteActiveUserRecord(**resolve_fields(row, active_user_field_map(descriptor)))


def map_registration(row: Mapping[str, Any], descriptor: ConnectionDescriptor) -> User:
    """Registration row -> canonical User (origin=registrations)."""
    rec = parse_registration(row, descriptor)
    email = rec.email or NO_EMAIL
    return User(
        id=local_id(REGISTRATION_PREFIX, rec.remote_id, email),
        remote_id=_text(rec.remote_id),
        name=rec.name or UNKNOWN_CANDIDATE,
        email=email,
        phone=rec.phone,
        password=rec.password,
        source_app_id=descriptor.id,
        source_app_name=descriptor.name,
        origin=OriginTable.registrations,
        status=normalize_registration_status(rec.status),
        subscription_tier=_tier(rec.subscription_tier),
        registered_at=rec.created_at,
        last_active=rec.created_at or NEVER,
        reason=rec.reason,
    )


def map_active_user(row: Mapping[str, Any], descriptor: ConnectionDescriptor) -> User:
    """Active-users row -> canonical User (origin=users, always active)."""
    rec = parse_active_user(row, descriptor)
    email = rec.email or NO_EMAIL
    return User(
        id=local_id(USER_PREFIX, rec.remote_id, email),
        remote_id=_text(rec.remote_id),
        name=rec.name or UNKNOWN_USER,
        email=email,
        phone=rec.phone,
        password=rec.password,
        source_app_id=descriptor.id,
        source_app_name=descriptor.name,
        origin=OriginTable.users,
        status=UserStatus.active,
        subscription_tier=_tier(rec.subscription_tier),
        subscription_end=rec.subscription_end,
        registered_at=rec.created_at,
        last_active=rec.updated_at or rec.created_at or NEVER,
        role=rec.role,
    )


def email_key(email: str | None) -> str | None:
    """De-duplication key; the no-email sentinel never matches anything."""
    if not email or email == NO_EMAIL:
        return None
    return email.strip().lower()
