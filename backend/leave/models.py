"""Leave ORM models: LeaveCategory, LeaveType, LeavePolicy, LeaveEntitlement,
LeaveAdjustment, LeaveRequest, Attachment, LeaveCalendar, CalendarHoliday,
BlockedPeriod, Delegation."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.constants import (
    AccrualMethod,
    AdjustmentType,
    DelegationStatus,
    LeaveStatus,
    RoundingRule,
)
from backend.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════
# Policy configuration
# ═════════════════════════════════════════════════════════════════════


class LeaveCategory(Base):
    __tablename__ = "leave_categories"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(100), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )

    leave_types: Mapped[list[LeaveType]] = relationship(back_populates="category")


class LeaveType(Base):
    __tablename__ = "leave_types"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    code: Mapped[str] = mapped_column(sa.String(30), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_categories.id"), nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    paid: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    deductible: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    requires_attachment: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    attachment_type: Mapped[Optional[str]] = mapped_column(sa.String(30))
    min_tenure_months: Mapped[Optional[int]] = mapped_column(sa.Integer)
    max_duration_days: Mapped[Optional[int]] = mapped_column(sa.Integer)
    payroll_code: Mapped[Optional[str]] = mapped_column(sa.String(50))
    # [{"role": "manager", "level": 1}, ...]
    approval_workflow: Mapped[Optional[list]] = mapped_column(JSONB, default=list)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    # Relationships
    category: Mapped[LeaveCategory] = relationship(back_populates="leave_types")
    policy: Mapped[Optional[LeavePolicy]] = relationship(
        back_populates="leave_type", uselist=False
    )


class LeavePolicy(Base):
    """Accrual, eligibility and limit configuration — one per leave type."""

    __tablename__ = "leave_policies"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_types.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    # {"min_tenure_months", "contract_types_allowed", "grade",
    #  "positions_allowed", "locations_allowed"}
    eligibility: Mapped[Optional[dict]] = mapped_column(JSONB, default=dict)
    yearly_rate: Mapped[Decimal] = mapped_column(sa.Numeric(6, 2), default=0)
    accrual_method: Mapped[AccrualMethod] = mapped_column(
        sa.Enum(AccrualMethod, name="accrual_method", create_type=False),
        default=AccrualMethod.monthly,
    )
    accrual_rate: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(6, 2))
    carry_forward_allowed: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    max_carry_forward: Mapped[Decimal] = mapped_column(sa.Numeric(6, 2), default=0)
    expiry_after_months: Mapped[Optional[int]] = mapped_column(sa.Integer)
    rounding_rule: Mapped[RoundingRule] = mapped_column(
        sa.Enum(RoundingRule, name="rounding_rule", create_type=False),
        default=RoundingRule.none,
    )
    min_notice_days: Mapped[int] = mapped_column(sa.Integer, default=0)
    max_consecutive_days: Mapped[Optional[int]] = mapped_column(sa.Integer)
    pause_accrual_during_unpaid: Mapped[bool] = mapped_column(
        sa.Boolean, default=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    leave_type: Mapped[LeaveType] = relationship(back_populates="policy")


# ═════════════════════════════════════════════════════════════════════
# Ledger
# ═════════════════════════════════════════════════════════════════════


class LeaveEntitlement(Base):
    __tablename__ = "leave_entitlements"
    __table_args__ = (
        sa.UniqueConstraint(
            "employee_id", "leave_type_id", name="uq_leave_entitlement"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    yearly_entitlement: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 2), default=0
    )
    taken: Mapped[Decimal] = mapped_column(sa.Numeric(6, 2), default=0)
    remaining: Mapped[Decimal] = mapped_column(sa.Numeric(6, 2), default=0)
    pending: Mapped[Decimal] = mapped_column(sa.Numeric(6, 2), default=0)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class LeaveAdjustment(Base):
    """Append-only record of every change made to an entitlement."""

    __tablename__ = "leave_adjustments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    adjustment_type: Mapped[AdjustmentType] = mapped_column(
        sa.Enum(AdjustmentType, name="leave_adjustment_type", create_type=False),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(6, 2), nullable=False)
    previous_value: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(6, 2))
    new_value: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(6, 2))
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════


class Attachment(Base):
    __tablename__ = "leave_attachments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    file_name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    size_bytes: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    storage_path: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )


class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    from_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    to_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    duration_days: Mapped[Decimal] = mapped_column(sa.Numeric(6, 2), nullable=False)
    justification: Mapped[Optional[str]] = mapped_column(sa.Text)
    attachment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_attachments.id")
    )
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status", create_type=False),
        default=LeaveStatus.pending,
    )
    # [{"role", "status", "decided_by", "decided_at", "reason"}]
    approval_flow: Mapped[list] = mapped_column(JSONB, default=list)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    leave_type: Mapped[LeaveType] = relationship()


# ═════════════════════════════════════════════════════════════════════
# Calendar
# ═════════════════════════════════════════════════════════════════════


class LeaveCalendar(Base):
    __tablename__ = "leave_calendars"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    year: Mapped[int] = mapped_column(sa.Integer, unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )

    holidays: Mapped[list[CalendarHoliday]] = relationship(
        back_populates="calendar",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CalendarHoliday.created_at",
    )
    blocked_periods: Mapped[list[BlockedPeriod]] = relationship(
        back_populates="calendar",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="BlockedPeriod.from_date",
    )


class CalendarHoliday(Base):
    __tablename__ = "leave_calendar_holidays"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    calendar_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_calendars.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(sa.String(150), nullable=False)
    holiday_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    is_recurring: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    holiday_type: Mapped[Optional[str]] = mapped_column(sa.String(50))
    region: Mapped[Optional[str]] = mapped_column(sa.String(100))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )

    calendar: Mapped[LeaveCalendar] = relationship(back_populates="holidays")


class BlockedPeriod(Base):
    __tablename__ = "leave_blocked_periods"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    calendar_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_calendars.id", ondelete="CASCADE"),
        nullable=False,
    )
    from_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    to_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)

    calendar: Mapped[LeaveCalendar] = relationship(back_populates="blocked_periods")


# ═════════════════════════════════════════════════════════════════════
# Delegation
# ═════════════════════════════════════════════════════════════════════


class Delegation(Base):
    """A manager's approval authority handed to another employee."""

    __tablename__ = "leave_delegations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    manager_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("employees.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    delegate_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
    )
    start_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    end_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    status: Mapped[DelegationStatus] = mapped_column(
        sa.Enum(DelegationStatus, name="delegation_status", create_type=False),
        default=DelegationStatus.pending,
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    def covers(self, on: date) -> bool:
        """Accepted, active and ``on`` inside the (open-ended) window."""
        if not self.is_active or self.status != DelegationStatus.accepted:
            return False
        if self.start_date is not None and on < self.start_date:
            return False
        if self.end_date is not None and on > self.end_date:
            return False
        return True
