"""Time-management ORM models: Holiday, AttendanceRecord, TimeException.

``holidays`` is the organisation-wide holiday source consulted when leave
durations are computed; it is maintained by the time-management module.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.constants import AttendanceStatus, TimeExceptionType
from backend.database import Base


class Holiday(Base):
    __tablename__ = "holidays"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(150), nullable=False)
    holiday_type: Mapped[Optional[str]] = mapped_column(sa.String(50))
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    # A missing end date means a single-day holiday.
    end_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    @property
    def last_day(self) -> date:
        return self.end_date or self.start_date

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.last_day


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        sa.UniqueConstraint(
            "employee_id", "attendance_date", name="uq_attendance_emp_date"
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
    attendance_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    status: Mapped[AttendanceStatus] = mapped_column(
        sa.Enum(AttendanceStatus, name="attendance_status", create_type=False),
        nullable=False,
        default=AttendanceStatus.absent,
    )
    total_work_minutes: Mapped[int] = mapped_column(sa.Integer, default=0)
    remarks: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    time_exceptions: Mapped[list[TimeException]] = relationship(
        back_populates="attendance_record"
    )


class TimeException(Base):
    """An exception raised against an attendance record (e.g. approved leave)."""

    __tablename__ = "time_exceptions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    attendance_record_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("attendance_records.id", ondelete="CASCADE"),
        nullable=False,
    )
    exception_type: Mapped[TimeExceptionType] = mapped_column(
        sa.Enum(TimeExceptionType, name="time_exception_type", create_type=False),
        nullable=False,
    )
    assigned_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    attendance_record: Mapped[AttendanceRecord] = relationship(
        back_populates="time_exceptions"
    )
