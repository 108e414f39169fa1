"""
Audit trail writer used by the approval workflow and the hub routes.
"""

from typing import Any, Callable

import structlog
from sqlalchemy.exc import SQLAlchemyError

from devhub.services.shared.database import SessionLocal
from devhub.services.shared.models import AuditLog

logger = structlog.get_logger()


def emit_audit(db, actor: str, action: str, resource: str, detail: dict[str, Any]) -> None:
    db.add(AuditLog(
        actor=actor,
        action=action,
        resource=resource,
        detail=detail,
    ))


class AuditTrail:
    """
    Opens its own session per record. A failed audit write is logged and does
    not undo the remote mutation it describes.
    """

    def __init__(self, session_factory: Callable = SessionLocal) -> None:
        self._session_factory = session_factory

    def record(self, actor: str, action: str, resource: str, detail: dict[str, Any] | None = None) -> None:
        db = self._session_factory()
        try:
            emit_audit(db, actor=actor, action=action, resource=resource, detail=detail or {})
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("audit_write_failed", action=action, resource=resource, error=str(exc))
        finally:
            db.close()
