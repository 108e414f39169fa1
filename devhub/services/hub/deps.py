"""
FastAPI dependencies handing out the process-wide components built in the hub lifespan.
"""

from fastapi import Request

from devhub.services.registry.registry import ConnectionRegistry
from devhub.services.shared.audit import AuditTrail
from devhub.services.sync.approvals import ApprovalWorkflow
from devhub.services.sync.reconciler import Reconciler
from devhub.services.sync.state import UserStore


def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.registry


def get_store(request: Request) -> UserStore:
    return request.app.state.store


def get_reconciler(request: Request) -> Reconciler:
    return request.app.state.reconciler


def get_workflow(request: Request) -> ApprovalWorkflow:
    return request.app.state.workflow


def get_audit(request: Request) -> AuditTrail:
    return request.app.state.audit
