"""
DevHub Hub Service (port 8500)
-------------------------------
Owns the merged user list and the connection registry, runs the
reconciliation loop against every connected application, and exposes the
operator API consumed by the dashboard.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from devhub.services.shared.database import create_all_tables
from devhub.services.shared.errors import DevHubError

logging.basicConfig(level=logging.INFO)
logger = structlog.get_logger()

POLL_ENABLED = os.getenv("DEVHUB_POLL_ENABLED", "true").lower() == "true"


def build_components(app: FastAPI, http: httpx.AsyncClient) -> None:
    """Wire registry -> store -> reconciler -> workflow onto app.state."""
    from devhub.services.registry.registry import ConnectionRegistry
    from devhub.services.shared.audit import AuditTrail
    from devhub.services.sync.approvals import ApprovalWorkflow
    from devhub.services.sync.reconciler import Reconciler
    from devhub.services.sync.state import UserStore

    registry   = ConnectionRegistry()
    store      = UserStore()
    reconciler = Reconciler(registry, store, http=http)
    app.state.registry   = registry
    app.state.store      = store
    audit      = AuditTrail()
    app.state.reconciler = reconciler
    app.state.audit      = audit
    app.state.workflow   = ApprovalWorkflow(registry, reconciler, audit=audit)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from devhub.services.remote.client import REMOTE_TIMEOUT
    from devhub.services.sync.reconciler import POLL_INTERVAL

    logger.info("devhub_hub_starting")
    create_all_tables()
    http = httpx.AsyncClient(timeout=REMOTE_TIMEOUT)
    build_components(app, http)
    logger.info("devhub_hub_ready", connections=len(app.state.registry))

    poll_task = None
    if POLL_ENABLED:
        poll_task = asyncio.create_task(app.state.reconciler.run_loop(POLL_INTERVAL))
        logger.info("reconcile_loop_started", interval=POLL_INTERVAL)

    yield

    if poll_task is not None:
        poll_task.cancel()
    await http.aclose()
    logger.info("devhub_hub_stopping")


app = FastAPI(
    title="DevHub Hub Service",
    version="0.1.0",
    description="Reconciles end-user registrations from connected applications and runs the approval workflow.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DevHubError)
async def devhub_error_handler(request: Request, exc: DevHubError):
    logger.warning("request_failed", path=request.url.path, kind=exc.kind.value, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_payload().to_dict()})


from devhub.services.hub.routes_users       import router as users_router        # noqa: E402
from devhub.services.hub.routes_connections import router as connections_router  # noqa: E402
from devhub.services.hub.routes_audit       import router as audit_router        # noqa: E402

app.include_router(users_router,       prefix="/api", tags=["Users"])
app.include_router(connections_router, prefix="/api", tags=["Connections"])
app.include_router(audit_router,       prefix="/api", tags=["Audit"])


@app.get("/health", tags=["Health"])
def health():
    return {"status": "healthy", "service": "devhub-hub", "version": "0.1.0"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("HUB_PORT", "8500")))
