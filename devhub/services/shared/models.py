"""
DevHub enumerations and SQLAlchemy ORM models.
Uses SQLAlchemy 2.0 Mapped + mapped_column for full type-checker support.

Only two tables are local; everything about end users lives in the remote
applications and is rebuilt by the reconciliation loop:
  LocalState - key/value JSON blobs (connection registry lives under one key)
  AuditLog   - trail of operator actions (approve, reject, extend, registry edits)
"""

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from devhub.services.shared.database import Base


# ── Enumerations ──────────────────────────────────────────────────────────────

class DbKind(str, enum.Enum):
    postgres = "postgres"
    mysql    = "mysql"
    mongodb  = "mongodb"
    supabase = "supabase"


class ConnectionStatus(str, enum.Enum):
    connected    = "connected"
    disconnected = "disconnected"
    error        = "error"


class UserStatus(str, enum.Enum):
    pending   = "pending"
    active    = "active"
    suspended = "suspended"


class SubscriptionTier(str, enum.Enum):
    free       = "free"
    pro        = "pro"
    enterprise = "enterprise"


class OriginTable(str, enum.Enum):
    registrations = "registrations"   # pending sign-ups awaiting review
    users         = "users"           # approved accounts with a subscription


class ExtensionPlan(str, enum.Enum):
    weekly  = "weekly"
    monthly = "monthly"
    yearly  = "yearly"


# ── Local key/value state ─────────────────────────────────────────────────────

class LocalState(Base):
    """
    Durable key/value store for console-side state.
    value is the raw JSON text so a corrupt blob can be detected and discarded
    on load instead of failing inside the ORM.
    """
    __tablename__ = "local_state"

    key:        Mapped[str]       = mapped_column(String(255), primary_key=True)
    value:      Mapped[str]       = mapped_column(Text, nullable=False, default="null")
    updated_at: Mapped[datetime]  = mapped_column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


# ── Audit ─────────────────────────────────────────────────────────────────────

class AuditLog(Base):
    """
    Append-only record of operator actions.
    Resource is a short "type:id" reference (e.g. "user:REG-7", "connection:app-1a2b").
    """
    __tablename__ = "audit_logs"

    id:        Mapped[int]             = mapped_column(Integer, primary_key=True, index=True)
    actor:     Mapped[str]             = mapped_column(String(255), nullable=False)
    action:    Mapped[str]             = mapped_column(String(255), nullable=False)
    resource:  Mapped[Optional[str]]   = mapped_column(String(255), nullable=True)
    detail:    Mapped[dict[str, Any]]  = mapped_column(JSON, default=dict)
    timestamp: Mapped[datetime]        = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc), index=True)

    __table_args__ = (
        Index("ix_audit_log_action_ts", "action", "timestamp"),
    )
