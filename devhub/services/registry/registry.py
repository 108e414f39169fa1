"""
Connection Registry
--------------------
CRUD over the external applications DevHub monitors.

The whole registry is serialized as one JSON array under a fixed LocalState
key and rewritten on every change. A missing key, unreadable JSON or a blob
that is not a list loads as an empty registry; individual entries that no
longer validate are dropped with a warning.
"""

from __future__ import annotations

import json
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from devhub.services.shared.database import SessionLocal
from devhub.services.shared.models import ConnectionStatus, LocalState
from devhub.services.shared.schemas import ConnectionCreate, ConnectionDescriptor, ConnectionUpdate

logger = structlog.get_logger()

STORAGE_KEY = "devhub_connected_apps"

# fields an edit may clear by sending null
_NULLABLE = frozenset({"db_host", "db_port", "db_user", "db_name", "api_url", "api_key", "last_sync"})


def _slug(name: str) -> str:
    return re.sub(r"\s+", "_", name.strip().lower()) or "app"


def build_connection_string(desc: ConnectionDescriptor) -> str:
    """Display-only DSN; the password is never part of it."""
    user = desc.db_user or "postgres"
    host = desc.db_host or "localhost"
    port = desc.db_port or "5432"
    db   = desc.db_name or _slug(desc.name)
    return f"{desc.db_kind.value}://{user}:***@{host}:{port}/{db}"


class ConnectionRegistry:
    def __init__(
        self,
        session_factory: Callable = SessionLocal,
        storage_key: str = STORAGE_KEY,
    ) -> None:
        self._session_factory = session_factory
        self._storage_key = storage_key
        self._apps: list[ConnectionDescriptor] = self._load()

    # ── Persistence ───────────────────────────────────────────────────────────

    def _load(self) -> list[ConnectionDescriptor]:
        db = self._session_factory()
        try:
            row = db.query(LocalState).filter_by(key=self._storage_key).first()
            raw = row.value if row else None
        except SQLAlchemyError as exc:
            logger.error("registry_load_failed", key=self._storage_key, error=str(exc))
            return []
        finally:
            db.close()

        if not raw:
            return []
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("registry_blob_corrupt", key=self._storage_key)
            return []
        if not isinstance(data, list):
            logger.warning("registry_blob_not_a_list", key=self._storage_key)
            return []

        apps: list[ConnectionDescriptor] = []
        for entry in data:
            try:
                apps.append(ConnectionDescriptor.model_validate(entry))
            except ValidationError as exc:
                logger.warning("registry_entry_dropped", key=self._storage_key, error=str(exc))
        logger.info("registry_loaded", count=len(apps))
        return apps

    def _save(self) -> None:
        payload = json.dumps([a.model_dump(mode="json") for a in self._apps])
        db = self._session_factory()
        try:
            row = db.query(LocalState).filter_by(key=self._storage_key).first()
            if row:
                row.value = payload
            else:
                db.add(LocalState(key=self._storage_key, value=payload))
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    # ── Reads ─────────────────────────────────────────────────────────────────

    def list(self) -> list[ConnectionDescriptor]:
        return list(self._apps)

    def get(self, app_id: str) -> Optional[ConnectionDescriptor]:
        return next((a for a in self._apps if a.id == app_id), None)

    def __len__(self) -> int:
        return len(self._apps)

    # ── Writes ────────────────────────────────────────────────────────────────

    def add(self, req: ConnectionCreate) -> ConnectionDescriptor:
        desc = ConnectionDescriptor(
            id=f"app-{uuid.uuid4().hex[:12]}",
            status=ConnectionStatus.disconnected,
            **req.model_dump(),
        )
        desc = desc.model_copy(update={"connection_string": build_connection_string(desc)})
        self._apps.append(desc)
        self._save()
        logger.info("connection_added", app_id=desc.id, name=desc.name)
        return desc

    def update(self, app_id: str, changes: ConnectionUpdate | dict[str, Any]) -> Optional[ConnectionDescriptor]:
        if isinstance(changes, ConnectionUpdate):
            changes = changes.model_dump(exclude_unset=True)
        changes = {k: v for k, v in changes.items() if v is not None or k in _NULLABLE}
        for i, a in enumerate(self._apps):
            if a.id == app_id:
                updated = ConnectionDescriptor.model_validate({**a.model_dump(), **changes})
                updated = updated.model_copy(update={"connection_string": build_connection_string(updated)})
                self._apps[i] = updated
                self._save()
                return updated
        return None

    def delete(self, app_id: str) -> bool:
        before = len(self._apps)
        self._apps = [a for a in self._apps if a.id != app_id]
        if len(self._apps) == before:
            return False
        self._save()
        logger.info("connection_deleted", app_id=app_id)
        return True

    def record_sync(self, app_id: str, user_count: int, when: datetime | None = None) -> None:
        """Store the result of a successful reconciliation pass for one descriptor."""
        when = when or datetime.now(timezone.utc)
        self.update(app_id, {
            "user_count": user_count,
            "last_sync": when.isoformat(),
            "status": ConnectionStatus.connected,
        })

    def set_status(self, app_id: str, status: ConnectionStatus) -> None:
        self.update(app_id, {"status": status})


def remove_connection(registry: ConnectionRegistry, store, app_id: str) -> Optional[int]:
    """
    Delete a descriptor and every cached user that came from it.
    Returns the number of users dropped, or None when the id is unknown.
    """
    if not registry.delete(app_id):
        return None
    return store.remove_app(app_id)
