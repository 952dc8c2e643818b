import os

os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_DSN", "sqlite+aiosqlite:///./careguard-test.db")
os.environ.setdefault("DIRECTORY_PROVIDER", "memory")
os.environ.setdefault("TRUST_PROXY_HEADERS", "true")

import uuid
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi import Depends
from pydantic import BaseModel

from careguard.core.db import make_engine, make_sessionmaker, init_models, get_session
from careguard.core.errors import Unauthenticated
from careguard.core.security import issue_token
from careguard.main import create_app
from careguard.modules.anomaly.rules import (
    BruteForceLoginRule, ExcessiveRecordAccessRule, OffHoursAccessRule, RapidRoleChangeRule,
)
from careguard.modules.audit.models import AuditEvent, ActionKind
from careguard.modules.guard.dependencies import require_roles, record_scope, forbid_self
from careguard.modules.monitor.service import SecurityMonitor
from careguard.platform.adapters.directory_memory import InMemoryDirectory

ORG_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")

class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)

@pytest.fixture
def clock():
    # mid-afternoon UTC: outside the off-hours window
    return FixedClock(datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc))

@pytest.fixture
async def session_factory(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'audit.db'}")
    await init_models(engine)
    yield make_sessionmaker(engine)
    await engine.dispose()

@pytest.fixture
async def broken_session_factory(tmp_path):
    # the parent directory does not exist, so every connect fails
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'audit.db'}")
    yield make_sessionmaker(engine)
    await engine.dispose()

@pytest.fixture
def directory():
    d = InMemoryDirectory()
    d.add_staff("Dr. Meredith Grey", "doctor", "cardiology")
    d.add_staff("Dr. Derek Shepherd", "doctor", "neurology")
    d.add_staff("Nurse Olivia Harper", "nurse", "cardiology")
    d.add_staff("Richard Webber", "admin", None)
    return d

@pytest.fixture
def staff(directory):
    by_name = {e.display_name: e for e in directory.staff.values()}
    return {
        "cardiologist": by_name["Dr. Meredith Grey"],
        "neurologist": by_name["Dr. Derek Shepherd"],
        "nurse": by_name["Nurse Olivia Harper"],
        "admin": by_name["Richard Webber"],
    }

@pytest.fixture
def rules():
    return [
        BruteForceLoginRule(),
        ExcessiveRecordAccessRule(),
        OffHoursAccessRule(tz=timezone.utc),
        RapidRoleChangeRule(),
    ]

def _make_monitor(session_factory, directory, clock, rules):
    return SecurityMonitor(session_factory, directory, directory, clock=clock, rules=rules)

@pytest.fixture
def monitor(session_factory, directory, clock, rules):
    return _make_monitor(session_factory, directory, clock, rules)

@pytest.fixture
def add_events(session_factory, clock):
    async def add(n: int = 1, **fields) -> list[AuditEvent]:
        events = []
        async with session_factory() as s:
            for _ in range(n):
                data = {
                    "id": uuid.uuid4(),
                    "org_id": ORG_ID,
                    "actor_name": "Anonymous",
                    "actor_role": "unknown",
                    "action_kind": ActionKind.OTHER.value,
                    "endpoint": "GET /api/v1/other",
                    "source_ip": "10.0.0.1",
                    "occurred_at": clock(),
                    "flagged": False,
                    "flag_reason": "",
                    "rule_id": "",
                    "resolved": False,
                    "details": {},
                }
                data.update(fields)
                ev = AuditEvent(**data)
                s.add(ev)
                events.append(ev)
            await s.commit()
        return events
    return add

@pytest.fixture
def fetch_events(session_factory):
    from sqlalchemy import select

    async def fetch(**filters) -> list[AuditEvent]:
        async with session_factory() as s:
            q = select(AuditEvent).filter_by(**filters).order_by(AuditEvent.occurred_at)
            return list((await s.execute(q)).scalars().all())
    return fetch

@pytest.fixture
def auth():
    def headers(entry, **kwargs) -> dict:
        token = issue_token(entry.actor_id, role=kwargs.pop("role", entry.role), name=entry.display_name,
                            department=entry.department, **kwargs)
        return {"Authorization": f"Bearer {token}"}
    return headers

class LoginIn(BaseModel):
    email: str
    password: str

def _mount_protected_routes(app):
    """Stand-ins for the record and admin handlers the monitor protects."""

    @app.post("/api/v1/auth/login")
    async def login(payload: LoginIn):
        if payload.password != "correct-horse":
            raise Unauthenticated("Invalid credentials.")
        return {"success": True}

    @app.get("/api/v1/doctor/record/{record_id}", dependencies=[Depends(require_roles("doctor"))])
    async def view_record(ownership=Depends(record_scope("record_id"))):
        return {"recordId": str(ownership.record_id), "department": ownership.department}

    @app.post("/api/v1/doctor/add-record", status_code=201, dependencies=[Depends(require_roles("doctor"))])
    async def add_record():
        return {"success": True}

    @app.put("/api/v1/admin/users/{user_id}/role",
             dependencies=[Depends(require_roles("admin")), Depends(forbid_self("user_id", "role_change"))])
    async def change_role(user_id: uuid.UUID):
        return {"success": True, "userId": str(user_id)}

    @app.delete("/api/v1/admin/users/{user_id}",
                dependencies=[Depends(require_roles("admin")), Depends(forbid_self("user_id", "delete"))])
    async def delete_user(user_id: uuid.UUID):
        return {"success": True}

    @app.get("/api/v1/nurse/patients", dependencies=[Depends(require_roles("nurse"))])
    async def nurse_patients():
        return {"data": []}

def _build_app(monitor, session_factory):
    app = create_app(monitor)
    _mount_protected_routes(app)

    async def _session():
        async with session_factory() as s:
            yield s
    app.dependency_overrides[get_session] = _session
    return app

@pytest.fixture
def app(monitor, session_factory):
    return _build_app(monitor, session_factory)

@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c

@pytest.fixture
async def outage_client(broken_session_factory, directory, clock, rules):
    """App whose audit store is unreachable for every write and query."""
    monitor = _make_monitor(broken_session_factory, directory, clock, rules)
    app = _build_app(monitor, broken_session_factory)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        c.monitor = monitor
        yield c
