"""
Operator action trail.

Every approval, rejection, extension, tier change and registry edit writes one
AuditLog row naming the operator (X-Operator header) and the user or
connection it touched. The Settings page and incident review read it back here:

  GET /api/audit?actor=rina                  everything one operator did
  GET /api/audit?resource=connection:        registry edits only
  GET /api/audit?action=user_approve_partial approvals that left a registration row behind
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from devhub.services.shared.database import get_db
from devhub.services.shared.models import AuditLog

router = APIRouter()


@router.get("/audit")
def list_audit_logs(
    action: Optional[str] = None,
    resource: Optional[str] = None,
    actor: Optional[str] = None,
    limit: int = Query(default=50, le=500),
    offset: int = 0,
    db=Depends(get_db),
):
    """Newest first. `resource` is a prefix match, `action` and `actor` are exact."""
    q = db.query(AuditLog)
    if action:
        q = q.filter(AuditLog.action == action)
    if resource:
        q = q.filter(AuditLog.resource.like(f"{resource}%"))
    if actor:
        q = q.filter(AuditLog.actor == actor)
    rows = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).offset(offset).limit(limit).all()
    return [
        {
            "id":        r.id,
            "actor":     r.actor,
            "action":    r.action,
            "resource":  r.resource,
            "detail":    r.detail,
            "timestamp": r.timestamp.isoformat() if r.timestamp else None,
        }
        for r in rows
    ]
