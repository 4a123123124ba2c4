"""Delegation resolver — persisted manager→delegate hand-offs and approver
resolution over the position hierarchy.

Business logic:
  - One delegation per manager; the named delegate accepts or rejects it
  - A delegation counts only while accepted, active and inside its window
  - Approvers are found through supervisor positions, walking up the
    ``reports_to`` chain at most ``LEAVE_HIERARCHY_MAX_DEPTH`` hops
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.audit import create_audit_entry
from backend.common.constants import DelegationStatus
from backend.common.exceptions import BadRequestException, NotFoundException
from backend.config import settings
from backend.core_hr.models import Employee
from backend.core_hr.service import OrgService
from backend.leave.models import Delegation
from backend.leave.schemas import DelegationOut, DelegationStatusOut
from backend.notifications.service import notify_delegation_assigned

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════
# DelegationResolver
# ═════════════════════════════════════════════════════════════════════


class DelegationResolver:
    """Delegation state transitions and approver resolution."""

    @staticmethod
    async def _find(db: AsyncSession, manager_id: uuid.UUID) -> Optional[Delegation]:
        result = await db.execute(
            select(Delegation).where(Delegation.manager_id == manager_id)
        )
        return result.scalars().first()

    @staticmethod
    async def _get(db: AsyncSession, manager_id: uuid.UUID) -> Delegation:
        delegation = await DelegationResolver._find(db, manager_id)
        if delegation is None:
            raise NotFoundException("Delegation", manager_id)
        return delegation

    # ── State transitions ───────────────────────────────────────────

    @staticmethod
    async def set_delegation(
        db: AsyncSession,
        manager_id: uuid.UUID,
        delegate_id: uuid.UUID,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Delegation:
        """Create or replace the manager's delegation as pending."""
        if manager_id == delegate_id:
            raise BadRequestException("A manager cannot delegate to themselves.", field="delegate_id")
        if start_date and end_date and end_date < start_date:
            raise BadRequestException("end_date must be on or after start_date.", field="end_date")

        await OrgService.get_employee(db, manager_id)
        await OrgService.get_employee(db, delegate_id)

        delegation = await DelegationResolver._find(db, manager_id)
        if delegation is None:
            delegation = Delegation(manager_id=manager_id)
            db.add(delegation)
        delegation.delegate_id = delegate_id
        delegation.start_date = start_date
        delegation.end_date = end_date
        delegation.is_active = True
        delegation.status = DelegationStatus.pending
        await db.flush()

        await create_audit_entry(
            db,
            action="delegate",
            entity_type="delegation",
            entity_id=delegation.id,
            actor_id=manager_id,
            new_values={
                "delegate_id": str(delegate_id),
                "start_date": start_date.isoformat() if start_date else None,
                "end_date": end_date.isoformat() if end_date else None,
            },
        )

        try:
            async with db.begin_nested():
                await notify_delegation_assigned(db, delegation)
        except Exception:
            logger.warning(
                "Delegation notification failed",
                exc_info=True,
                extra={"manager_id": str(manager_id), "delegate_id": str(delegate_id)},
            )
        return delegation

    @staticmethod
    async def revoke_delegation(db: AsyncSession, manager_id: uuid.UUID) -> Delegation:
        delegation = await DelegationResolver._find(db, manager_id)
        if delegation is None or not delegation.is_active:
            raise NotFoundException("Delegation", manager_id)
        delegation.is_active = False
        await db.flush()
        return delegation

    @staticmethod
    async def accept_delegation(
        db: AsyncSession,
        manager_id: uuid.UUID,
        delegate_id: uuid.UUID,
    ) -> Delegation:
        delegation = await DelegationResolver._get(db, manager_id)
        if delegation.delegate_id != delegate_id:
            raise BadRequestException("Only the named delegate can accept this delegation.")
        if delegation.status == DelegationStatus.rejected:
            raise BadRequestException("Delegation has already been rejected.")
        delegation.status = DelegationStatus.accepted
        await db.flush()
        return delegation

    @staticmethod
    async def reject_delegation(
        db: AsyncSession,
        manager_id: uuid.UUID,
        delegate_id: uuid.UUID,
    ) -> Delegation:
        delegation = await DelegationResolver._get(db, manager_id)
        if delegation.delegate_id != delegate_id:
            raise BadRequestException("Only the named delegate can reject this delegation.")
        delegation.status = DelegationStatus.rejected
        delegation.is_active = False
        await db.flush()
        return delegation

    @staticmethod
    async def get_delegation_status(
        db: AsyncSession,
        manager_id: uuid.UUID,
        at: Optional[date] = None,
    ) -> DelegationStatusOut:
        delegation = await DelegationResolver._find(db, manager_id)
        if delegation is None:
            return DelegationStatusOut(manager_id=manager_id, active=False)
        return DelegationStatusOut(
            manager_id=manager_id,
            active=delegation.covers(at or date.today()),
            delegation=DelegationOut.model_validate(delegation),
        )

    @staticmethod
    async def purge_expired_delegations(
        db: AsyncSession,
        today: Optional[date] = None,
    ) -> int:
        """Delete revoked, rejected and lapsed delegations."""
        today = today or date.today()
        result = await db.execute(
            delete(Delegation).where(
                or_(
                    Delegation.is_active.is_(False),
                    Delegation.end_date < today,
                )
            )
        )
        await db.flush()
        purged = result.rowcount or 0
        if purged:
            logger.info("Expired delegations purged", extra={"count": purged})
        return purged

    # ── Resolution ──────────────────────────────────────────────────

    @staticmethod
    async def get_active_delegate(
        db: AsyncSession,
        manager_id: uuid.UUID,
        check_date: date,
    ) -> uuid.UUID:
        """The delegate when one covers ``check_date``, else the manager."""
        delegation = await DelegationResolver._find(db, manager_id)
        if delegation is not None and delegation.covers(check_date):
            return delegation.delegate_id
        return manager_id

    @staticmethod
    async def find_upper_manager_in_hierarchy(
        db: AsyncSession,
        position_id: uuid.UUID,
        request_date: date,
        current_manager_id: Optional[uuid.UUID] = None,
    ) -> uuid.UUID:
        """Nearest holder of an ancestor of ``position_id`` (delegation applied)."""
        current = position_id
        for _ in range(settings.LEAVE_HIERARCHY_MAX_DEPTH):
            position = await OrgService.get_position(db, current)
            if position is None or position.reports_to_position_id is None:
                break
            parent_id = position.reports_to_position_id
            holders = await OrgService.find_position_holders(db, parent_id)
            if holders:
                return await DelegationResolver.get_active_delegate(
                    db, holders[0].id, request_date
                )
            current = parent_id
        else:
            raise NotFoundException(
                "Manager",
                f"above position {position_id} within {settings.LEAVE_HIERARCHY_MAX_DEPTH} levels",
            )

        if current_manager_id is not None:
            return current_manager_id
        raise NotFoundException("Manager", f"above position {position_id}")

    @staticmethod
    async def find_approver_with_delegation(
        db: AsyncSession,
        employee_id: uuid.UUID,
        request_date: date,
    ) -> uuid.UUID:
        employee = await OrgService.get_employee(db, employee_id)

        if employee.supervisor_position_id is not None:
            holders = await OrgService.find_position_holders(db, employee.supervisor_position_id)
            if holders:
                return await DelegationResolver.get_active_delegate(
                    db, holders[0].id, request_date
                )
            return await DelegationResolver.find_upper_manager_in_hierarchy(
                db, employee.supervisor_position_id, request_date
            )

        if employee.position_id is not None:
            return await DelegationResolver.find_upper_manager_in_hierarchy(
                db, employee.position_id, request_date
            )
        raise NotFoundException("Approver", employee_id)

    @staticmethod
    async def find_skip_level_manager(
        db: AsyncSession,
        employee: Employee,
        on: date,
    ) -> Optional[uuid.UUID]:
        """Holder one level above the employee's supervisor position."""
        if employee.supervisor_position_id is None:
            return None
        return await DelegationResolver.find_upper_manager_in_hierarchy(
            db, employee.supervisor_position_id, on
        )

    # ── Authorization ───────────────────────────────────────────────

    @staticmethod
    async def _is_authorized(
        db: AsyncSession,
        employee: Employee,
        manager_id: uuid.UUID,
        on: date,
    ) -> bool:
        manager = await OrgService.get_employee(db, manager_id)

        supervisors: list[Employee] = []
        if employee.supervisor_position_id is not None:
            supervisors = await OrgService.find_position_holders(
                db, employee.supervisor_position_id
            )
            if any(s.id == manager_id for s in supervisors):
                return True

        if employee.department_id is not None and manager.position_id is not None:
            department = await OrgService.get_department(db, employee.department_id)
            if department is not None and department.head_position_id == manager.position_id:
                return True

        if manager.position_id is not None:
            current = employee.position_id
            for _ in range(settings.LEAVE_HIERARCHY_MAX_DEPTH):
                if current is None:
                    break
                position = await OrgService.get_position(db, current)
                if position is None or position.reports_to_position_id is None:
                    break
                current = position.reports_to_position_id
                if current == manager.position_id:
                    return True

        for supervisor in supervisors:
            delegation = await DelegationResolver._find(db, supervisor.id)
            if (
                delegation is not None
                and delegation.delegate_id == manager_id
                and delegation.covers(on)
            ):
                return True

        if employee.supervisor_position_id is not None:
            assignment = await OrgService.find_valid_position_assignment(
                db, manager_id, employee.supervisor_position_id, on
            )
            if assignment is not None:
                return True

        return False

    @staticmethod
    async def verify_manager_authorization(
        db: AsyncSession,
        employee: Employee,
        manager_id: uuid.UUID,
        on: Optional[date] = None,
    ) -> bool:
        """Whether ``manager_id`` may decide for ``employee``. Lookup errors deny."""
        try:
            return await DelegationResolver._is_authorized(
                db, employee, manager_id, on or date.today()
            )
        except Exception:
            logger.warning(
                "Manager authorization lookup failed",
                exc_info=True,
                extra={"employee_id": str(employee.id), "manager_id": str(manager_id)},
            )
            return False
