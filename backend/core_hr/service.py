"""Core HR read service — employee and org-structure lookups for the leave engine.

Uses:
  - ``NotFoundException`` from backend.common.exceptions
"""

from __future__ import annotations

import uuid
from datetime import date
from typing import Optional, Sequence, Union

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import ContractType
from backend.common.exceptions import NotFoundException
from backend.core_hr.models import (
    Department,
    Employee,
    Location,
    Position,
    PositionAssignment,
)


def _as_uuid(value: Union[str, uuid.UUID]) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


# ═════════════════════════════════════════════════════════════════════
# OrgService
# ═════════════════════════════════════════════════════════════════════


class OrgService:
    """Async lookups over employees, positions and departments."""

    # ── Employees ───────────────────────────────────────────────────

    @staticmethod
    async def find_employee(
        db: AsyncSession,
        employee_ref: Union[str, uuid.UUID],
    ) -> Optional[Employee]:
        """Resolve an employee by UUID or by employee code."""
        employee_id = _as_uuid(employee_ref)
        if employee_id is not None:
            employee = await db.get(Employee, employee_id)
            if employee is not None:
                return employee
        result = await db.execute(
            select(Employee).where(Employee.employee_code == str(employee_ref)),
        )
        return result.scalars().first()

    @staticmethod
    async def get_employee(
        db: AsyncSession,
        employee_ref: Union[str, uuid.UUID],
    ) -> Employee:
        employee = await OrgService.find_employee(db, employee_ref)
        if employee is None:
            raise NotFoundException("Employee", employee_ref)
        return employee

    @staticmethod
    async def find_active_employee_ids(
        db: AsyncSession,
        *,
        department_ids: Optional[Sequence[uuid.UUID]] = None,
        position_ids: Optional[Sequence[uuid.UUID]] = None,
        location_names: Optional[Sequence[str]] = None,
        contract_types: Optional[Sequence[ContractType]] = None,
    ) -> list[uuid.UUID]:
        """Return ids of active employees matching every supplied criterion."""
        query = select(Employee.id).where(Employee.is_active.is_(True))
        if department_ids:
            query = query.where(Employee.department_id.in_(department_ids))
        if position_ids:
            query = query.where(Employee.position_id.in_(position_ids))
        if contract_types:
            query = query.where(Employee.contract_type.in_(contract_types))
        if location_names:
            query = query.join(Location, Employee.location_id == Location.id).where(
                Location.name.in_(location_names),
            )
        result = await db.execute(query.order_by(Employee.employee_code))
        return list(result.scalars().all())

    # ── Positions ───────────────────────────────────────────────────

    @staticmethod
    async def get_position(
        db: AsyncSession,
        position_id: uuid.UUID,
    ) -> Optional[Position]:
        return await db.get(Position, position_id)

    @staticmethod
    async def find_position_holders(
        db: AsyncSession,
        position_id: uuid.UUID,
    ) -> list[Employee]:
        """Employees currently seated in ``position_id``, in stable order."""
        result = await db.execute(
            select(Employee)
            .where(
                Employee.position_id == position_id,
                Employee.is_active.is_(True),
            )
            .order_by(Employee.date_of_joining, Employee.employee_code),
        )
        return list(result.scalars().all())

    @staticmethod
    async def find_valid_position_assignment(
        db: AsyncSession,
        employee_id: uuid.UUID,
        position_id: uuid.UUID,
        on: date,
    ) -> Optional[PositionAssignment]:
        """An assignment of the employee to the position that covers ``on``."""
        result = await db.execute(
            select(PositionAssignment).where(
                PositionAssignment.employee_id == employee_id,
                PositionAssignment.position_id == position_id,
                PositionAssignment.start_date <= on,
                or_(
                    PositionAssignment.end_date.is_(None),
                    PositionAssignment.end_date >= on,
                ),
            ),
        )
        return result.scalars().first()

    # ── Departments ─────────────────────────────────────────────────

    @staticmethod
    async def get_department(
        db: AsyncSession,
        department_id: uuid.UUID,
    ) -> Optional[Department]:
        return await db.get(Department, department_id)
