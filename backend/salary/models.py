"""Payroll ORM models: PayGrade, EmployeePenalties.

SQLAlchemy 2.0 async-compatible models.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from backend.database import Base


class PayGrade(Base):
    """Pay grade carrying the monthly base salary."""

    __tablename__ = "pay_grades"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    grade: Mapped[str] = mapped_column(sa.String(50), unique=True, nullable=False)
    base_salary: Mapped[Decimal] = mapped_column(
        sa.Numeric(12, 2), nullable=False, default=0,
    )
    currency: Mapped[str] = mapped_column(sa.String(3), default="USD")
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<PayGrade {self.grade!r} {self.base_salary}>"


class EmployeePenalties(Base):
    """Per-employee penalty ledger consumed by the payroll run."""

    __tablename__ = "employee_penalties"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("employees.id"),
        unique=True,
        nullable=False,
    )
    # [{"type", "amount", "reason", "reference_id", "created_at"}]
    penalties: Mapped[Optional[list]] = mapped_column(
        JSONB, default=list,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<EmployeePenalties {self.employee_id} ({len(self.penalties or [])})>"
