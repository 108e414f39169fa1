"""
User approval routes.

  GET  /api/users                    merged list (filters: status, app_id, search)
  POST /api/users/refresh            run a reconciliation pass now
  POST /api/users/{id}/approve       registrations -> users
  POST /api/users/{id}/reject        registration status -> rejected
  POST /api/users/{id}/extend        push subscription expiry forward
  POST /api/users/{id}/tier          change subscription tier
  POST /api/users/approve-all        approve every pending registration
  GET  /api/stats                    overview KPIs
"""

import os
from typing import Optional

from fastapi import APIRouter, Depends

from devhub.services.hub.deps import get_reconciler, get_registry, get_store, get_workflow
from devhub.services.shared.auth import get_operator
from devhub.services.shared.models import ConnectionStatus, SubscriptionTier, UserStatus
from devhub.services.shared.schemas import (
    ApproveRequest, BulkApproveOut, ExtendRequest, ReconcileOut, StatsOut, TierRequest, User,
)

router = APIRouter()

SHOW_PASSWORDS: bool = os.getenv("DEVHUB_SHOW_PASSWORDS", "false").lower() == "true"
PASSWORD_MASK = "••••••••"
PRICE_PER_PAID_USER = 29   # flat monthly price used for the revenue KPI


def present(user: User) -> User:
    """Outbound copy of a user; raw passwords only leave the hub when explicitly enabled."""
    if SHOW_PASSWORDS or not user.password:
        return user
    return user.model_copy(update={"password": PASSWORD_MASK})


def compute_stats(users: list[User], apps: list) -> StatsOut:
    return StatsOut(
        total_users=len(users),
        pending_approvals=sum(1 for u in users if u.status == UserStatus.pending),
        active_apps=sum(1 for a in apps if a.status == ConnectionStatus.connected),
        monthly_revenue=sum(1 for u in users if u.subscription_tier != SubscriptionTier.free) * PRICE_PER_PAID_USER,
    )


# ── Reads ──────────────────────────────────────────────────────────────────────

@router.get("/users", response_model=list[User])
def list_users(
    status: Optional[UserStatus] = None,
    app_id: Optional[str] = None,
    search: Optional[str] = None,
    store=Depends(get_store),
):
    users = store.users()
    if status:
        users = [u for u in users if u.status == status]
    if app_id:
        users = [u for u in users if u.source_app_id == app_id]
    if search:
        needle = search.lower()
        users = [u for u in users if needle in u.name.lower() or needle in u.email.lower()]
    return [present(u) for u in users]


@router.get("/stats", response_model=StatsOut)
def stats(store=Depends(get_store), registry=Depends(get_registry)):
    return compute_stats(store.users(), registry.list())


@router.post("/users/refresh", response_model=ReconcileOut)
async def refresh(reconciler=Depends(get_reconciler)):
    report = await reconciler.reconcile()
    return ReconcileOut(
        generation=report.generation,
        applied=report.applied,
        user_count=len(report.users),
        synced=report.synced,
        skipped=report.skipped,
        failed=report.failed,
    )


# ── Transitions ────────────────────────────────────────────────────────────────

@router.post("/users/approve-all", response_model=BulkApproveOut)
async def approve_all(workflow=Depends(get_workflow), operator: str = Depends(get_operator)):
    result = await workflow.approve_all(actor=operator)
    return BulkApproveOut(approved=result.approved, failed=result.failed)


@router.post("/users/{user_id}/approve", response_model=User)
async def approve(
    user_id: str,
    req: Optional[ApproveRequest] = None,
    workflow=Depends(get_workflow),
    operator: str = Depends(get_operator),
):
    req = req or ApproveRequest()
    user = await workflow.approve(
        user_id,
        subscription_end=req.subscription_end,
        role=req.role,
        tier=req.tier,
        actor=operator,
    )
    return present(user)


@router.post("/users/{user_id}/reject", response_model=User)
async def reject(user_id: str, workflow=Depends(get_workflow), operator: str = Depends(get_operator)):
    return present(await workflow.reject(user_id, actor=operator))


@router.post("/users/{user_id}/extend", response_model=User)
async def extend(
    user_id: str,
    req: ExtendRequest,
    workflow=Depends(get_workflow),
    operator: str = Depends(get_operator),
):
    return present(await workflow.extend_subscription(user_id, req.plan, actor=operator))


@router.post("/users/{user_id}/tier", response_model=User)
async def change_tier(
    user_id: str,
    req: TierRequest,
    workflow=Depends(get_workflow),
    operator: str = Depends(get_operator),
):
    return present(await workflow.change_tier(user_id, req.tier, actor=operator))
