"""Shared test fixtures — async DB, client, auth helpers, org and leave factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")
os.environ.setdefault("LOG_LEVEL", "warning")

import hashlib
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from backend.common.constants import AccrualMethod, ContractType, UserRole
from backend.config import settings
from backend.database import Base, get_db
from backend.main import create_app

# Import ALL model modules so every table is registered on Base.metadata
import backend.attendance.models  # noqa: F401
import backend.auth.models  # noqa: F401
import backend.common.audit  # noqa: F401
import backend.core_hr.models  # noqa: F401
import backend.leave.models  # noqa: F401
import backend.notifications.models  # noqa: F401
import backend.salary.models  # noqa: F401

from backend.core_hr.models import Department, Employee, Location, Position
from backend.leave.models import LeaveCategory, LeavePolicy, LeaveType

# ── SQLite compat: compile PG-specific types ────────────────────────

from sqlalchemy.dialects.postgresql import INET, JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(INET, "sqlite")
def _inet_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() and uuid_generate_v4() as SQLite custom functions."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )
    dbapi_conn.create_function(
        "uuid_generate_v4", 0, lambda: str(uuid.uuid4()),
    )


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset slowapi's in-memory counters between tests."""
    from backend.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

def _make_location(*, name: str = "Head Office", city: str = "Lisbon") -> dict:
    return dict(
        id=uuid.uuid4(),
        name=name,
        city=city,
        country="Portugal",
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )


def _make_department(
    *,
    name: str = "Engineering",
    code: str = "ENG",
    head_position_id: Optional[uuid.UUID] = None,
) -> dict:
    return dict(
        id=uuid.uuid4(),
        name=name,
        code=code,
        head_position_id=head_position_id,
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )


def _make_position(
    *,
    code: str,
    title: str,
    department_id: Optional[uuid.UUID] = None,
    reports_to_position_id: Optional[uuid.UUID] = None,
) -> dict:
    return dict(
        id=uuid.uuid4(),
        code=code,
        title=title,
        department_id=department_id,
        reports_to_position_id=reports_to_position_id,
        is_active=True,
    )


def _make_employee(
    *,
    email: Optional[str] = None,
    first_name: str = "Test",
    last_name: str = "User",
    department_id: Optional[uuid.UUID] = None,
    location_id: Optional[uuid.UUID] = None,
    position_id: Optional[uuid.UUID] = None,
    supervisor_position_id: Optional[uuid.UUID] = None,
    pay_grade_id: Optional[uuid.UUID] = None,
    contract_type: Optional[ContractType] = ContractType.full_time_permanent,
    date_of_joining: date = date(2024, 1, 15),
    is_active: bool = True,
) -> dict:
    code = uuid.uuid4().hex[:6].upper()
    return dict(
        id=uuid.uuid4(),
        employee_code=f"EMP-{code}",
        first_name=first_name,
        last_name=last_name,
        email=email or f"user.{code.lower()}@example.com",
        department_id=department_id,
        location_id=location_id,
        position_id=position_id,
        supervisor_position_id=supervisor_position_id,
        pay_grade_id=pay_grade_id,
        contract_type=contract_type,
        date_of_joining=date_of_joining,
        employment_status="active",
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


async def seed_employee(db: AsyncSession, **kwargs) -> Employee:
    employee = Employee(**_make_employee(**kwargs))
    db.add(employee)
    await db.flush()
    return employee


async def seed_position(db: AsyncSession, **kwargs) -> Position:
    position = Position(**_make_position(**kwargs))
    db.add(position)
    await db.flush()
    return position


@dataclass
class Org:
    """director ← manager ← staff, plus an HR admin outside the chain."""

    location: Location
    department: Department
    director_position: Position
    manager_position: Position
    staff_position: Position
    director: Employee
    manager: Employee
    staff: Employee
    hr: Employee


async def seed_org(db: AsyncSession) -> Org:
    location = Location(**_make_location())
    db.add(location)
    await db.flush()

    department = Department(**_make_department())
    db.add(department)
    await db.flush()

    director_pos = await seed_position(db, code="DIR", title="Director", department_id=department.id)
    manager_pos = await seed_position(
        db, code="MGR", title="Engineering Manager",
        department_id=department.id, reports_to_position_id=director_pos.id,
    )
    staff_pos = await seed_position(
        db, code="ENG", title="Engineer",
        department_id=department.id, reports_to_position_id=manager_pos.id,
    )
    department.head_position_id = director_pos.id
    await db.flush()

    common = dict(department_id=department.id, location_id=location.id)
    director = await seed_employee(db, first_name="Dana", position_id=director_pos.id, **common)
    manager = await seed_employee(
        db, first_name="Morgan", position_id=manager_pos.id,
        supervisor_position_id=director_pos.id, **common,
    )
    staff = await seed_employee(
        db, first_name="Sam", position_id=staff_pos.id,
        supervisor_position_id=manager_pos.id, **common,
    )
    hr = await seed_employee(db, first_name="Harper", **common)

    return Org(
        location=location,
        department=department,
        director_position=director_pos,
        manager_position=manager_pos,
        staff_position=staff_pos,
        director=director,
        manager=manager,
        staff=staff,
        hr=hr,
    )


@pytest.fixture
async def org(db) -> Org:
    return await seed_org(db)


async def seed_leave_type(
    db: AsyncSession,
    *,
    code: str = "ANNUAL",
    name: str = "Annual Leave",
    deductible: bool = True,
    paid: bool = True,
    requires_attachment: bool = False,
    attachment_type: Optional[str] = None,
    min_tenure_months: Optional[int] = None,
    max_duration_days: Optional[int] = None,
) -> LeaveType:
    category = LeaveCategory(id=uuid.uuid4(), name=f"{name} category")
    db.add(category)
    await db.flush()

    leave_type = LeaveType(
        id=uuid.uuid4(),
        code=code,
        name=name,
        category_id=category.id,
        paid=paid,
        deductible=deductible,
        requires_attachment=requires_attachment,
        attachment_type=attachment_type,
        min_tenure_months=min_tenure_months,
        max_duration_days=max_duration_days,
        approval_workflow=[],
        is_active=True,
    )
    db.add(leave_type)
    await db.flush()
    return leave_type


async def seed_policy(
    db: AsyncSession,
    leave_type_id: uuid.UUID,
    *,
    yearly_rate: Decimal = Decimal("0"),
    accrual_method: AccrualMethod = AccrualMethod.monthly,
    min_notice_days: int = 0,
    max_consecutive_days: Optional[int] = None,
    eligibility: Optional[dict] = None,
) -> LeavePolicy:
    policy = LeavePolicy(
        id=uuid.uuid4(),
        leave_type_id=leave_type_id,
        eligibility=eligibility or {},
        yearly_rate=yearly_rate,
        accrual_method=accrual_method,
        min_notice_days=min_notice_days,
        max_consecutive_days=max_consecutive_days,
    )
    db.add(policy)
    await db.flush()
    return policy


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    employee_id: uuid.UUID,
    role: UserRole = UserRole.employee,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRY_HOURS)
    payload = {
        "sub": str(employee_id),
        "role": role.value,
        "type": "access",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


async def make_auth_headers(
    db: AsyncSession,
    employee_id: uuid.UUID,
    role: UserRole = UserRole.employee,
) -> dict[str, str]:
    """Persist a live session for ``employee_id`` and return Bearer headers."""
    from backend.auth.models import UserSession

    token = create_access_token(employee_id, role)
    db.add(
        UserSession(
            id=uuid.uuid4(),
            employee_id=employee_id,
            token_hash=hashlib.sha256(token.encode()).hexdigest(),
            expires_at=datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRY_HOURS),
            is_revoked=False,
            created_at=datetime.now(timezone.utc),
        )
    )
    await db.flush()
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def auth_headers(db, org) -> dict[str, str]:
    """Bearer headers for the staff member of the seeded org."""
    headers = await make_auth_headers(db, org.staff.id)
    await db.commit()
    return headers


@pytest.fixture
async def hr_headers(db, org) -> dict[str, str]:
    headers = await make_auth_headers(db, org.hr.id, UserRole.hr_admin)
    await db.commit()
    return headers
