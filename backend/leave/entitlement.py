"""Entitlement ledger — personalized yearly entitlements, balances and the
``taken`` / ``remaining`` bookkeeping applied at finalization."""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import AdjustmentType, LeaveStatus
from backend.common.exceptions import BadRequestException, NotFoundException
from backend.core_hr.service import OrgService
from backend.leave.accrual import AccrualCalculator, months_between
from backend.leave.models import LeaveAdjustment, LeaveEntitlement, LeaveRequest
from backend.leave.policy import PolicyStore
from backend.leave.schemas import GroupEntitlementRequest, GroupEntitlementResult

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════
# EntitlementLedger
# ═════════════════════════════════════════════════════════════════════


class EntitlementLedger:
    """Per (employee, leave type) entitlement records."""

    @staticmethod
    async def find_entitlement(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
    ) -> Optional[LeaveEntitlement]:
        result = await db.execute(
            select(LeaveEntitlement).where(
                LeaveEntitlement.employee_id == employee_id,
                LeaveEntitlement.leave_type_id == leave_type_id,
            )
        )
        return result.scalars().first()

    @staticmethod
    async def get_entitlement(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
    ) -> LeaveEntitlement:
        entitlement = await EntitlementLedger.find_entitlement(db, employee_id, leave_type_id)
        if entitlement is None:
            raise NotFoundException("LeaveEntitlement", f"{employee_id}/{leave_type_id}")
        return entitlement

    # ── Personalization ─────────────────────────────────────────────

    @staticmethod
    async def set_personalized_entitlement(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_ref: Union[str, uuid.UUID],
        yearly_entitlement: Decimal,
        reason: Optional[str] = None,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveEntitlement:
        """Upsert the yearly entitlement; ``taken`` and ``remaining`` are left alone."""
        leave_type = await PolicyStore.get_leave_type(db, leave_type_ref)
        yearly_entitlement = Decimal(yearly_entitlement)

        entitlement = await EntitlementLedger.find_entitlement(db, employee_id, leave_type.id)
        previous: Optional[Decimal] = None
        if entitlement is None:
            entitlement = LeaveEntitlement(
                employee_id=employee_id,
                leave_type_id=leave_type.id,
                yearly_entitlement=yearly_entitlement,
                taken=Decimal(0),
                remaining=yearly_entitlement,
                pending=Decimal(0),
            )
            db.add(entitlement)
        else:
            previous = entitlement.yearly_entitlement
            entitlement.yearly_entitlement = yearly_entitlement
        if reason is not None:
            entitlement.reason = reason

        db.add(
            LeaveAdjustment(
                employee_id=employee_id,
                leave_type_id=leave_type.id,
                adjustment_type=AdjustmentType.personalized_entitlement,
                amount=yearly_entitlement - (previous or Decimal(0)),
                previous_value=previous,
                new_value=yearly_entitlement,
                reason=reason,
                actor_id=actor_id,
            )
        )
        await db.flush()
        return entitlement

    @staticmethod
    async def set_personalized_entitlement_for_group(
        db: AsyncSession,
        data: GroupEntitlementRequest,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> GroupEntitlementResult:
        """Apply one entitlement to a single id, an explicit list, or a criteria match."""
        if data.employee_id is not None:
            employee_ids = [data.employee_id]
        elif data.employee_ids:
            employee_ids = list(dict.fromkeys(data.employee_ids))
        else:
            employee_ids = await OrgService.find_active_employee_ids(
                db,
                department_ids=data.department_ids,
                position_ids=data.position_ids,
                location_names=data.locations,
                contract_types=data.contract_types,
            )

        if not employee_ids:
            raise BadRequestException("No employees matched the given criteria.")

        for employee_id in employee_ids:
            await EntitlementLedger.set_personalized_entitlement(
                db,
                employee_id,
                data.leave_type,
                data.yearly_entitlement,
                data.reason,
                actor_id=actor_id,
            )

        logger.info(
            "Group entitlement applied",
            extra={"leave_type": data.leave_type, "count": len(employee_ids)},
        )
        return GroupEntitlementResult(count=len(employee_ids), employee_ids=employee_ids)

    # ── Balance ─────────────────────────────────────────────────────

    @staticmethod
    async def sum_approved_days(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        *,
        year: Optional[int] = None,
    ) -> Decimal:
        query = select(func.coalesce(func.sum(LeaveRequest.duration_days), 0)).where(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.leave_type_id == leave_type_id,
            LeaveRequest.status == LeaveStatus.approved,
        )
        if year is not None:
            query = query.where(
                LeaveRequest.from_date >= date(year, 1, 1),
                LeaveRequest.from_date <= date(year, 12, 31),
            )
        result = await db.execute(query)
        return Decimal(str(result.scalar_one()))

    @staticmethod
    async def get_leave_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        *,
        pause_during_unpaid: bool = True,
        today: Optional[date] = None,
    ) -> Decimal:
        """Accrued days to date minus every approved request of this type.

        ``pause_during_unpaid`` is independent of the stored policy flag of the
        same name.
        """
        employee = await OrgService.get_employee(db, employee_id)
        months_worked = months_between(employee.date_of_joining, today or date.today())

        accrued = await AccrualCalculator.calculate_accrued_leave(
            db, employee.id, leave_type_id, months_worked, pause_during_unpaid
        )
        used = await EntitlementLedger.sum_approved_days(db, employee.id, leave_type_id)
        return accrued - used

    @staticmethod
    async def update_leave_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        duration_days: Decimal,
    ) -> LeaveEntitlement:
        """``taken`` grows by ``d`` and ``remaining`` is recomputed as
        ``yearly_entitlement - taken``; it may go negative.
        """
        duration_days = Decimal(duration_days)
        entitlement = await EntitlementLedger.find_entitlement(db, employee_id, leave_type_id)
        if entitlement is None:
            entitlement = LeaveEntitlement(
                employee_id=employee_id,
                leave_type_id=leave_type_id,
                yearly_entitlement=Decimal(0),
                taken=duration_days,
                remaining=-duration_days,
                pending=Decimal(0),
            )
            db.add(entitlement)
        else:
            entitlement.taken = Decimal(entitlement.taken) + duration_days
            entitlement.remaining = Decimal(entitlement.yearly_entitlement) - entitlement.taken
        await db.flush()
        return entitlement
