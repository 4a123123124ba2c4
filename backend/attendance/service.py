"""Time-management service layer used by the leave engine.

Business logic:
  - Organisation holiday lookup per year
  - Placeholder attendance records for approved leave days
  - Time exceptions attached to attendance records
"""

from __future__ import annotations

import uuid
from datetime import date
from typing import Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.attendance.models import AttendanceRecord, Holiday, TimeException
from backend.common.audit import create_audit_entry
from backend.common.constants import AttendanceStatus, TimeExceptionType
from backend.common.exceptions import ConflictError


# ═════════════════════════════════════════════════════════════════════
# AttendanceService
# ═════════════════════════════════════════════════════════════════════


class AttendanceService:
    """Async time-management operations consumed by leave finalization."""

    # ── Holidays ────────────────────────────────────────────────────

    @staticmethod
    async def find_all_holidays(
        db: AsyncSession,
        year: int,
        *,
        active_only: bool = True,
    ) -> Sequence[Holiday]:
        """Holidays whose window touches ``year``."""

        year_start, year_end = date(year, 1, 1), date(year, 12, 31)
        query = (
            select(Holiday)
            .where(
                Holiday.start_date <= year_end,
                or_(
                    Holiday.end_date >= year_start,
                    (Holiday.end_date.is_(None)) & (Holiday.start_date >= year_start),
                ),
            )
            .order_by(Holiday.start_date)
        )
        if active_only:
            query = query.where(Holiday.is_active.is_(True))

        result = await db.execute(query)
        return result.scalars().all()

    # ── Attendance records ──────────────────────────────────────────

    @staticmethod
    async def get_attendance_record(
        db: AsyncSession,
        employee_id: uuid.UUID,
        attendance_date: date,
    ) -> Optional[AttendanceRecord]:
        result = await db.execute(
            select(AttendanceRecord).where(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.attendance_date == attendance_date,
            )
        )
        return result.scalars().first()

    @staticmethod
    async def create_attendance_record(
        db: AsyncSession,
        employee_id: uuid.UUID,
        attendance_date: date,
        *,
        status: AttendanceStatus = AttendanceStatus.on_leave,
        remarks: Optional[str] = None,
    ) -> AttendanceRecord:
        """Insert a placeholder record with no punches."""

        existing = await AttendanceService.get_attendance_record(
            db, employee_id, attendance_date
        )
        if existing is not None:
            raise ConflictError("attendance_date", attendance_date.isoformat())

        record = AttendanceRecord(
            employee_id=employee_id,
            attendance_date=attendance_date,
            status=status,
            total_work_minutes=0,
            remarks=remarks,
        )
        db.add(record)
        await db.flush()
        return record

    # ── Time exceptions ─────────────────────────────────────────────

    @staticmethod
    async def create_time_exception(
        db: AsyncSession,
        *,
        employee_id: uuid.UUID,
        attendance_record_id: uuid.UUID,
        exception_type: TimeExceptionType = TimeExceptionType.manual_adjustment,
        assigned_to_id: Optional[uuid.UUID] = None,
        reason: Optional[str] = None,
    ) -> TimeException:
        exception = TimeException(
            employee_id=employee_id,
            attendance_record_id=attendance_record_id,
            exception_type=exception_type,
            assigned_to_id=assigned_to_id,
            reason=reason,
        )
        db.add(exception)
        await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type="time_exception",
            entity_id=exception.id,
            actor_id=assigned_to_id,
            new_values={
                "employee_id": str(employee_id),
                "attendance_record_id": str(attendance_record_id),
                "type": exception_type.value,
            },
        )
        return exception
