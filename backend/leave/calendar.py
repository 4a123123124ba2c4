"""Leave calendar — per-year holidays, blocked periods and net working-day counts.

Two holiday stores exist and are deliberately kept apart:
  - the leave calendar's own ``leave_calendar_holidays`` (configured here)
  - the organisation holiday table owned by time management, which is the
    only one consulted when a net duration is computed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, timedelta
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.attendance.models import Holiday
from backend.attendance.service import AttendanceService
from backend.common.exceptions import BadRequestException, NotFoundException
from backend.leave.models import BlockedPeriod, CalendarHoliday, LeaveCalendar
from backend.leave.schemas import BlockedPeriodCreate, HolidayCreate

logger = logging.getLogger(__name__)

# Saturday, Sunday
WEEKEND_DAYS = frozenset({5, 6})


# ── Pure helpers ────────────────────────────────────────────────────


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Inclusive interval overlap."""
    return a_start <= b_end and a_end >= b_start


def blocked_period_overlaps(
    start: date,
    end: date,
    periods: Iterable[BlockedPeriod],
) -> Optional[BlockedPeriod]:
    """First blocked period intersecting [start, end], if any."""
    for period in periods:
        if ranges_overlap(start, end, period.from_date, period.to_date):
            return period
    return None


def count_net_working_days(
    start: date,
    end: date,
    holidays: Sequence[Holiday],
) -> int:
    """Days in [start, end] that are neither weekend nor inside a holiday window."""
    net = 0
    day = start
    while day <= end:
        if day.weekday() not in WEEKEND_DAYS and not any(h.covers(day) for h in holidays):
            net += 1
        day += timedelta(days=1)
    return net


def _normalize_recurring(holiday_date: date, year: int) -> date:
    try:
        return holiday_date.replace(year=year)
    except ValueError:
        # 29 Feb on a non-leap year
        return date(year, 2, 28)


# ═════════════════════════════════════════════════════════════════════
# CalendarEngine
# ═════════════════════════════════════════════════════════════════════


class CalendarEngine:
    """Per-year leave calendar maintenance and duration arithmetic."""

    @staticmethod
    async def _find_calendar(db: AsyncSession, year: int) -> Optional[LeaveCalendar]:
        result = await db.execute(
            select(LeaveCalendar).where(LeaveCalendar.year == year)
        )
        return result.scalars().first()

    @staticmethod
    async def _get_or_create_calendar(db: AsyncSession, year: int) -> LeaveCalendar:
        calendar = await CalendarEngine._find_calendar(db, year)
        if calendar is None:
            calendar = LeaveCalendar(year=year, holidays=[], blocked_periods=[])
            db.add(calendar)
            await db.flush()
        return calendar

    @staticmethod
    async def get_calendar(db: AsyncSession, year: int) -> LeaveCalendar:
        calendar = await CalendarEngine._find_calendar(db, year)
        if calendar is None:
            raise NotFoundException("LeaveCalendar", year)
        return calendar

    # ── Configuration ───────────────────────────────────────────────

    @staticmethod
    async def add_holiday(
        db: AsyncSession,
        year: int,
        data: HolidayCreate,
    ) -> LeaveCalendar:
        """Append a holiday; recurring ones are moved into ``year``. No dedup."""
        calendar = await CalendarEngine._get_or_create_calendar(db, year)

        holiday_date = data.holiday_date
        if data.is_recurring:
            holiday_date = _normalize_recurring(holiday_date, year)

        calendar.holidays.append(
            CalendarHoliday(
                id=uuid.uuid4(),
                name=data.name,
                holiday_date=holiday_date,
                is_recurring=data.is_recurring,
                holiday_type=data.type,
                region=data.region,
            )
        )
        await db.flush()
        return calendar

    @staticmethod
    async def add_blocked_period(
        db: AsyncSession,
        year: int,
        data: BlockedPeriodCreate,
    ) -> LeaveCalendar:
        calendar = await CalendarEngine._get_or_create_calendar(db, year)
        calendar.blocked_periods.append(
            BlockedPeriod(
                id=uuid.uuid4(),
                from_date=data.from_date,
                to_date=data.to_date,
                reason=data.reason or data.name,
            )
        )
        await db.flush()
        return calendar

    # ── Duration ────────────────────────────────────────────────────

    @staticmethod
    async def ensure_not_blocked(
        db: AsyncSession,
        start: date,
        end: date,
        year: int,
    ) -> None:
        calendar = await CalendarEngine._find_calendar(db, year)
        if calendar is None:
            return
        period = blocked_period_overlaps(start, end, calendar.blocked_periods)
        if period is not None:
            raise BadRequestException(
                f"Leave from {start} to {end} overlaps the blocked period "
                f"{period.from_date} to {period.to_date}"
                + (f" ({period.reason})." if period.reason else "."),
                field="from_date",
            )

    @staticmethod
    async def count_working_days(
        db: AsyncSession,
        start: date,
        end: date,
        year: int,
    ) -> int:
        """Working days in [start, end] against the organisation holidays of ``year``."""
        holidays = await AttendanceService.find_all_holidays(db, year, active_only=True)
        return count_net_working_days(start, end, holidays)

    @staticmethod
    async def calculate_net_leave_duration(
        db: AsyncSession,
        start: date,
        end: date,
        year: int,
        employee_id: Optional[uuid.UUID] = None,
    ) -> int:
        """Blocked-period gate, then weekends and organisation holidays excluded."""
        await CalendarEngine.ensure_not_blocked(db, start, end, year)
        net = await CalendarEngine.count_working_days(db, start, end, year)
        logger.debug(
            "Net leave duration computed",
            extra={
                "employee_id": str(employee_id) if employee_id else None,
                "from_date": start.isoformat(),
                "to_date": end.isoformat(),
                "net_days": net,
            },
        )
        return net
