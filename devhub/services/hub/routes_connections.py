"""
Connection registry routes.

  GET    /api/connections              list descriptors (API key never returned)
  POST   /api/connections              register an application
  PATCH  /api/connections/{id}         edit a descriptor
  DELETE /api/connections/{id}         remove a descriptor and its cached users
  POST   /api/connections/{id}/test    one-row read of the registrations table
"""

import asyncio

import structlog
from fastapi import APIRouter, Depends, HTTPException

from devhub.services.hub.deps import get_audit, get_reconciler, get_registry, get_store
from devhub.services.registry.registry import remove_connection
from devhub.services.remote.client import resolve_base_url
from devhub.services.shared.auth import get_operator
from devhub.services.shared.models import ConnectionStatus
from devhub.services.shared.schemas import (
    ConnectionCreate, ConnectionDescriptor, ConnectionOut, ConnectionTestOut, ConnectionUpdate,
)

logger = structlog.get_logger()
router = APIRouter()


def to_out(desc: ConnectionDescriptor) -> ConnectionOut:
    data = desc.model_dump(exclude={"api_key"})
    return ConnectionOut(**data, base_url=resolve_base_url(desc), has_api_key=bool(desc.api_key))


def _not_found(app_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Connection {app_id} not found")


# ── Routes ─────────────────────────────────────────────────────────────────────

@router.get("/connections", response_model=list[ConnectionOut])
def list_connections(registry=Depends(get_registry)):
    return [to_out(a) for a in registry.list()]


@router.get("/connections/{app_id}", response_model=ConnectionOut)
def get_connection(app_id: str, registry=Depends(get_registry)):
    desc = registry.get(app_id)
    if desc is None:
        raise _not_found(app_id)
    return to_out(desc)


@router.post("/connections", response_model=ConnectionOut, status_code=201)
async def create_connection(
    req: ConnectionCreate,
    registry=Depends(get_registry),
    reconciler=Depends(get_reconciler),
    audit=Depends(get_audit),
    operator: str = Depends(get_operator),
):
    loop = asyncio.get_event_loop()
    desc = await loop.run_in_executor(None, registry.add, req)
    reconciler.request_refresh(0)
    await loop.run_in_executor(
        None, audit.record, operator, "connection_added", f"connection:{desc.id}", {"name": desc.name},
    )
    return to_out(desc)


@router.patch("/connections/{app_id}", response_model=ConnectionOut)
async def update_connection(
    app_id: str,
    req: ConnectionUpdate,
    registry=Depends(get_registry),
    reconciler=Depends(get_reconciler),
    audit=Depends(get_audit),
    operator: str = Depends(get_operator),
):
    loop = asyncio.get_event_loop()
    desc = await loop.run_in_executor(None, registry.update, app_id, req)
    if desc is None:
        raise _not_found(app_id)
    reconciler.request_refresh(0)
    changed = sorted(k for k in req.model_dump(exclude_unset=True) if k != "api_key")
    await loop.run_in_executor(
        None, audit.record, operator, "connection_updated", f"connection:{app_id}", {"fields": changed},
    )
    return to_out(desc)


@router.delete("/connections/{app_id}")
def delete_connection(
    app_id: str,
    registry=Depends(get_registry),
    store=Depends(get_store),
    audit=Depends(get_audit),
    operator: str = Depends(get_operator),
):
    removed = remove_connection(registry, store, app_id)
    if removed is None:
        raise _not_found(app_id)
    audit.record(operator, "connection_deleted", f"connection:{app_id}", {"users_removed": removed})
    return {"deleted": app_id, "users_removed": removed}


@router.post("/connections/{app_id}/test", response_model=ConnectionTestOut)
async def test_connection(
    app_id: str,
    registry=Depends(get_registry),
    reconciler=Depends(get_reconciler),
):
    desc = registry.get(app_id)
    if desc is None:
        raise _not_found(app_id)

    client = reconciler.client_for(desc)
    if client is None:
        await asyncio.get_event_loop().run_in_executor(None, registry.set_status, app_id, ConnectionStatus.error)
        return ConnectionTestOut(
            id=app_id, ok=False, status=ConnectionStatus.error,
            error="config_invalid", detail="API key and a base URL (api_url or db.<ref> host) are required",
        )

    res = await client.ping(desc.table_name)
    status = ConnectionStatus.connected if res.ok else ConnectionStatus.error
    await asyncio.get_event_loop().run_in_executor(None, registry.set_status, app_id, status)
    logger.info("connection_tested", app_id=app_id, ok=res.ok, status_code=res.status_code)
    return ConnectionTestOut(
        id=app_id,
        ok=res.ok,
        status=status,
        error=res.error.value if res.error else None,
        detail=res.detail,
    )
