"""
Pydantic schemas for DevHub: the connection descriptor, the canonical User,
the two remote row shapes and the hub API request/response bodies.
"""

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from devhub.services.shared.models import (
    ConnectionStatus, DbKind, ExtensionPlan, OriginTable, SubscriptionTier, UserStatus,
)


# ── Connection descriptor ─────────────────────────────────────────────────────

class ConnectionDescriptor(BaseModel):
    """Locally stored configuration needed to reach one external application's data store."""
    model_config = ConfigDict(use_enum_values=False)

    id: str
    name: str
    description: str = ""
    db_kind: DbKind = DbKind.supabase

    # visual connection fields, db_host feeds base-URL derivation
    db_host: Optional[str] = None
    db_port: Optional[str] = "5432"
    db_user: Optional[str] = None
    db_name: Optional[str] = None

    api_url: Optional[str] = None
    api_key: Optional[str] = None
    table_name: str = "registrations"
    users_table: str = "users"
    field_overrides: dict[str, list[str]] = {}

    connection_string: str = ""
    status: ConnectionStatus = ConnectionStatus.disconnected
    last_sync: Optional[str] = None
    user_count: int = 0


class ConnectionCreate(BaseModel):
    name: str = Field(..., min_length=1, example="Arunika Academy")
    description: str = ""
    db_kind: DbKind = DbKind.supabase
    db_host: Optional[str] = Field(None, example="db.abcd1234.supabase.co")
    db_port: Optional[str] = "5432"
    db_user: Optional[str] = None
    db_name: Optional[str] = None
    api_url: Optional[str] = None
    api_key: Optional[str] = None
    table_name: str = "registrations"
    users_table: str = "users"
    field_overrides: dict[str, list[str]] = {}


class ConnectionUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    db_kind: Optional[DbKind] = None
    db_host: Optional[str] = None
    db_port: Optional[str] = None
    db_user: Optional[str] = None
    db_name: Optional[str] = None
    api_url: Optional[str] = None
    api_key: Optional[str] = None
    table_name: Optional[str] = None
    users_table: Optional[str] = None
    field_overrides: Optional[dict[str, list[str]]] = None


class ConnectionOut(BaseModel):
    id: str
    name: str
    description: str
    db_kind: DbKind
    db_host: Optional[str]
    db_port: Optional[str]
    db_user: Optional[str]
    db_name: Optional[str]
    api_url: Optional[str]
    base_url: Optional[str] = None
    has_api_key: bool = False
    table_name: str
    users_table: str
    field_overrides: dict[str, list[str]]
    connection_string: str
    status: ConnectionStatus
    last_sync: Optional[str]
    user_count: int


class ConnectionTestOut(BaseModel):
    id: str
    ok: bool
    status: ConnectionStatus
    error: Optional[str] = None
    detail: Optional[str] = None


# ── Remote row shapes ─────────────────────────────────────────────────────────

class RemoteRegistrationRecord(BaseModel):
    """A row of the pending-registrations table after column resolution."""
    model_config = ConfigDict(extra="ignore")

    remote_id: Optional[Union[int, str]] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None
    reason: Optional[str] = None
    created_at: Optional[str] = None
    status: Optional[str] = None
    subscription_tier: Optional[str] = None


class RemoteActiveUserRecord(BaseModel):
    """A row of the active-users table after column resolution."""
    model_config = ConfigDict(extra="ignore")

    remote_id: Optional[Union[int, str]] = None
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None
    subscription_end: Optional[str] = None
    subscription_tier: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# ── Canonical user ────────────────────────────────────────────────────────────

class User(BaseModel):
    id: str
    remote_id: Optional[str] = None
    name: str
    email: str
    phone: Optional[str] = None
    password: Optional[str] = None
    source_app_id: str
    source_app_name: str
    origin: OriginTable
    status: UserStatus
    subscription_tier: SubscriptionTier = SubscriptionTier.free
    subscription_end: Optional[str] = None
    registered_at: Optional[str] = None
    last_active: str = "Never"
    reason: Optional[str] = None
    role: Optional[str] = None


# ── Hub API bodies ────────────────────────────────────────────────────────────

class ApproveRequest(BaseModel):
    subscription_end: Optional[datetime] = None
    role: Optional[str] = None
    tier: Optional[SubscriptionTier] = None


class ExtendRequest(BaseModel):
    plan: ExtensionPlan = ExtensionPlan.monthly


class TierRequest(BaseModel):
    tier: SubscriptionTier


class BulkApproveOut(BaseModel):
    approved: list[str]
    failed: list[dict[str, Any]]


class ReconcileOut(BaseModel):
    generation: int
    applied: bool
    user_count: int
    synced: list[str]
    skipped: list[str]
    failed: list[str]


class StatsOut(BaseModel):
    total_users: int
    pending_approvals: int
    active_apps: int
    monthly_revenue: int
