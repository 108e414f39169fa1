"""
Shared fixtures for DevHub unit tests.

Points DATABASE_URL at in-memory SQLite before any service module is imported
and fakes the remote PostgREST surface with httpx.MockTransport, so nothing
here needs a network or a running database.
"""

import itertools
import json
import os
from datetime import datetime, timezone

import httpx
import pytest

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DEVHUB_POLL_ENABLED", "false")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

DEFAULT_HOST = "abcd.supabase.co"
FIXED_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

_RESERVED_PARAMS = {"select", "order", "limit"}


class FakePostgrest:
    """
    Minimal PostgREST: one set of tables per host, eq. filters, created_at
    ordering, limit, and injectable failures per (method, table).
    """

    def __init__(self) -> None:
        self.projects: dict[str, dict[str, list[dict]]] = {}
        self.failures: dict[tuple[str, str], object] = {}
        self.requests: list[httpx.Request] = []
        self.interceptors: list = []
        self.tables(DEFAULT_HOST)

    def tables(self, host: str = DEFAULT_HOST) -> dict[str, list[dict]]:
        return self.projects.setdefault(host, {"registrations": [], "users": []})

    def fail(self, method: str, table: str, status: object = 500) -> None:
        """status is an HTTP code, or "network" to raise a transport error."""
        self.failures[(method, table)] = status

    def intercept(self, rule) -> None:
        """rule(request) returns a Response to short-circuit the fake, or None to fall through."""
        self.interceptors.append(rule)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport)

    @staticmethod
    def _matches(row: dict, filters: dict[str, str]) -> bool:
        return all(str(row.get(col)) == value for col, value in filters.items())

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        table = request.url.path.rsplit("/", 1)[-1]
        method = request.method

        for rule in self.interceptors:
            response = rule(request)
            if response is not None:
                return response

        injected = self.failures.get((method, table))
        if injected == "network":
            raise httpx.ConnectError("connection refused", request=request)
        if injected is not None:
            return httpx.Response(injected, json={"message": "injected failure"})

        tables = self.projects.get(request.url.host)
        if tables is None or table not in tables:
            return httpx.Response(404, json={"message": f'relation "{table}" does not exist'})
        rows = tables[table]

        params = dict(request.url.params)
        filters = {
            k: v[3:] for k, v in params.items()
            if k not in _RESERVED_PARAMS and v.startswith("eq.")
        }

        if method == "GET":
            out = [r for r in rows if self._matches(r, filters)]
            if params.get("order") == "created_at.desc":
                out.sort(key=lambda r: str(r.get("created_at") or ""), reverse=True)
            if "limit" in params:
                out = out[: int(params["limit"])]
            return httpx.Response(200, json=out)
        if method == "POST":
            rows.append(json.loads(request.content))
            return httpx.Response(201)
        if method == "PATCH":
            values = json.loads(request.content)
            for r in rows:
                if self._matches(r, filters):
                    r.update(values)
            return httpx.Response(204)
        if method == "DELETE":
            tables[table] = [r for r in rows if not self._matches(r, filters)]
            return httpx.Response(204)
        return httpx.Response(405)


# ── Fixtures ───────────────────────────────────────────────────────────────────

@pytest.fixture
def fake_remote():
    return FakePostgrest()


@pytest.fixture
def http(fake_remote):
    return fake_remote.client()


@pytest.fixture
def session_factory():
    from devhub.services.shared.database import Base
    from devhub.services.shared import models  # noqa: F401

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def registry(session_factory):
    from devhub.services.registry.registry import ConnectionRegistry
    return ConnectionRegistry(session_factory=session_factory)


@pytest.fixture
def descriptor(registry):
    from devhub.services.shared.schemas import ConnectionCreate
    return registry.add(ConnectionCreate(
        name="Arunika Academy",
        api_url=f"https://{DEFAULT_HOST}",
        api_key="service-key",
    ))


@pytest.fixture
def store():
    from devhub.services.sync.state import UserStore
    return UserStore()


@pytest.fixture
def reconciler(registry, store, http):
    from devhub.services.sync.reconciler import Reconciler
    return Reconciler(registry, store, http=http)


@pytest.fixture
def audit(session_factory):
    from devhub.services.shared.audit import AuditTrail
    return AuditTrail(session_factory=session_factory)


@pytest.fixture
def workflow(registry, reconciler, audit):
    from devhub.services.sync.approvals import ApprovalWorkflow
    ids = itertools.count(1)
    return ApprovalWorkflow(
        registry,
        reconciler,
        audit=audit,
        refresh_delay=None,
        clock=lambda: FIXED_NOW,
        id_factory=lambda: f"u-{next(ids)}",
    )
