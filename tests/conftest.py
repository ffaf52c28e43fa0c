import sys
from datetime import date
from pathlib import Path

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

# Make `import availability` work when running from a source checkout.
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from availability import events, tenancy, units, versioning  # noqa: E402
from availability.db import session  # noqa: E402
from availability.main import app  # noqa: E402
from availability.models import Base  # noqa: E402

TENANT = "acme"


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture
def s(engine):
    with session(engine) as sess:
        yield sess


@pytest.fixture
def no_broker(monkeypatch):
    monkeypatch.setattr(events, "EVENTS_STRICT", False)

    async def _boom(*args, **kwargs):
        raise RuntimeError("rabbitmq down")

    monkeypatch.setattr(events.aio_pika, "connect_robust", _boom)


@pytest.fixture
def client(engine, no_broker):
    app.dependency_overrides[tenancy.get_engine] = lambda: engine
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def auth_headers(role: str = "admin", tenant: str | None = TENANT) -> dict[str, str]:
    token = jwt.encode({"role": role}, "dev-secret-change-me", algorithm="HS256")
    headers = {"Authorization": f"Bearer {token}"}
    if tenant:
        headers["X-Tenant-Id"] = tenant
    return headers


def make_calendar(s, name: str = "Main", **content):
    payload = {"lead_time_min_days": 0, "lead_time_max_days": 3650, "currency": "USD"}
    payload.update(content)
    return versioning.create_version(s, name, payload)


def make_unit(s, unit_key: str = "room-101", links=(), rate: float = 395, tenant_id: str = TENANT):
    return units.create_unit(
        s,
        tenant_id,
        {"unit_key": unit_key, "name": "Room 101", "unit_number": "101", "rate": rate, "currency": "USD"},
        list(links),
    )


# Fixed "today" for rule evaluation in scenario tests.
TODAY = date(2026, 1, 1)
