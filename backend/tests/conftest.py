"""Shared test fixtures for backend tests.

Tests run against an in-memory SQLite database (aiosqlite) by default. Set
TEST_DATABASE_URL to a PostgreSQL URL to run the same suite against Postgres.

The in-memory database lives on a single shared connection, so a test must
commit (or close) its own session before handing control to the executor,
which opens sessions of its own.
"""

import os
from datetime import datetime
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import securewatch.models  # noqa: F401  (registers tables)
from securewatch.database import Base, enable_sqlite_savepoints
from securewatch.exceptions import CollaboratorError
from securewatch.models import Employee, Policy, PolicyAction, PolicyCondition, PolicyExecution, Violation
from securewatch.services.capabilities import capabilities
from securewatch.services.collaborators import Collaborators

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


# ── Collaborator fakes ───────────────────────────────────────────────────────

class FakeNotification:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[dict] = []

    async def send(self, recipients, subject, body):
        if self.fail:
            raise CollaboratorError("notification", "unreachable: connection refused")
        recipients = list(recipients)
        if not recipients:
            raise CollaboratorError("notification", "no recipients")
        self.sent.append({"recipients": recipients, "subject": subject, "body": body})
        return {"message_id": f"msg-{len(self.sent)}"}


class FakeSMS:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[dict] = []

    async def send_sms(self, numbers, text):
        if self.fail:
            raise CollaboratorError("sms", "HTTP 503")
        self.sent.append({"numbers": list(numbers), "text": text})
        return {"message_id": f"sms-{len(self.sent)}"}


class FakeIdentity:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.revoked: list[dict] = []

    async def revoke_access(self, employee_id, access_type, reason, duration_hours=None):
        if self.fail:
            raise CollaboratorError("identity", "timed out after 10.0s")
        self.revoked.append({"employee_id": employee_id, "access_type": access_type, "reason": reason})
        return {"reference": f"REV-{len(self.revoked)}"}


class FakeTextClassifier:
    def __init__(self, score: int = 0, category: str = "data_exfiltration", fail: bool = False):
        self.score = score
        self.category = category
        self.fail = fail
        self.calls = 0

    async def classify(self, text):
        self.calls += 1
        if self.fail:
            raise CollaboratorError("text_classifier", "timed out after 20.0s")
        return {"score": self.score, "category": self.category}


# ── Database ─────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine():
    if TEST_DATABASE_URL.startswith("sqlite"):
        eng = create_async_engine(
            TEST_DATABASE_URL,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        enable_sqlite_savepoints(eng)
    else:
        eng = create_async_engine(TEST_DATABASE_URL)

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def reset_capabilities():
    capabilities.reset()
    yield
    capabilities.reset()


@pytest.fixture
def collaborators() -> Collaborators:
    return Collaborators(notification=FakeNotification(), sms=FakeSMS(), identity=FakeIdentity())


# ── API client ───────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def client(session_factory, collaborators) -> AsyncGenerator[AsyncClient, None]:
    from securewatch.main import app

    app.state.session_factory = session_factory
    app.state.collaborators = collaborators
    app.state.text_classifier = None
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ── Builders ─────────────────────────────────────────────────────────────────

async def make_employee(session: AsyncSession, **overrides) -> Employee:
    fields = {
        "name": "Dana Whitfield",
        "email": "dana.whitfield@company.com",
        "department": "Finance",
        "role": "Controller",
        "manager_email": "cfo@company.com",
    }
    fields.update(overrides)
    employee = Employee(**fields)
    session.add(employee)
    await session.flush()
    return employee


async def make_policy(
    session: AsyncSession,
    name: str = "Test Policy",
    conditions: list[dict] | None = None,
    actions: list[dict] | None = None,
    **overrides,
) -> Policy:
    policy = Policy(name=name, **{"priority": 50, "is_active": True, "policy_level": "global", **overrides})
    for i, c in enumerate(conditions or []):
        policy.conditions.append(PolicyCondition(
            condition_type=c["condition_type"],
            operator=c["operator"],
            value=c.get("value"),
            logical_operator=c.get("logical_operator", "AND"),
            order=c.get("order", i),
        ))
    for i, a in enumerate(actions or [{"action_type": "log_detailed_activity"}]):
        policy.actions.append(PolicyAction(
            action_type=a["action_type"],
            action_config=a.get("action_config", {}),
            execution_order=a.get("execution_order", i + 1),
            delay_minutes=a.get("delay_minutes", 0),
            is_enabled=a.get("is_enabled", True),
        ))
    session.add(policy)
    await session.flush()
    return policy


async def make_violation(
    session: AsyncSession,
    employee: Employee,
    risk_score: int = 75,
    severity: str = "High",
    type: str = "pci_dss",
    message_id: str | None = None,
    created_at: datetime | None = None,
    **details,
) -> Violation:
    violation = Violation(
        employee_id=employee.id,
        source_message_id=message_id or f"msg-{employee.id}-{risk_score}-{type}",
        type=type,
        severity=severity,
        description=f"{type} risk {risk_score}/100",
        details={"risk_score": risk_score, "regulations": [], **details},
    )
    if created_at is not None:
        violation.created_at = created_at
    session.add(violation)
    await session.flush()
    return violation


async def make_execution(session: AsyncSession, policy: Policy, violation: Violation) -> PolicyExecution:
    execution = PolicyExecution(
        policy_id=policy.id,
        violation_id=violation.id,
        employee_id=violation.employee_id,
        execution_status="pending",
    )
    session.add(execution)
    await session.flush()
    return execution
