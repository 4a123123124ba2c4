"""Accrual calculator — months-based accrual, unpaid-leave pause and rounding.

The numeric accrual is recomputed on every call; only the policy
configuration is persisted.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import (
    ACCRUAL_METHOD_ALIASES,
    CONTRACT_TO_EMPLOYEE_TYPE,
    RESET_EXPIRY_MONTHS,
    AccrualMethod,
    EmployeeType,
    LeaveStatus,
    RoundingRule,
)
from backend.common.exceptions import BadRequestException, NotFoundException
from backend.config import settings
from backend.core_hr.service import OrgService
from backend.leave.models import LeavePolicy, LeaveRequest, LeaveType
from backend.leave.schemas import (
    AccrualPolicyRequest,
    AccrualPolicyResult,
    LeavePolicyOut,
)

logger = logging.getLogger(__name__)


# ── Pure helpers ────────────────────────────────────────────────────


def months_between(start: date, end: date) -> int:
    """Whole calendar months elapsed from ``start`` to ``end`` (never negative)."""
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return max(months, 0)


def months_spanned(start: date, end: date) -> int:
    """Calendar months touched by [start, end], counting both ends."""
    return (end.year - start.year) * 12 + (end.month - start.month) + 1


def apply_rounding(value: Decimal, rule: RoundingRule) -> Decimal:
    """Apply a policy rounding rule. ``none`` returns the value untouched."""
    if rule == RoundingRule.round:
        return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    if rule == RoundingRule.round_up:
        return value.quantize(Decimal("1"), rounding=ROUND_CEILING)
    if rule == RoundingRule.round_down:
        return value.quantize(Decimal("1"), rounding=ROUND_FLOOR)
    return value


def parse_accrual_method(raw: str) -> AccrualMethod:
    try:
        return ACCRUAL_METHOD_ALIASES[raw.strip().lower()]
    except KeyError:
        raise BadRequestException(
            f"Unsupported accrual frequency '{raw}'. "
            f"Expected one of: {', '.join(sorted(ACCRUAL_METHOD_ALIASES))}.",
            field="accrual_frequency",
        )


# ═════════════════════════════════════════════════════════════════════
# AccrualCalculator
# ═════════════════════════════════════════════════════════════════════


class AccrualCalculator:
    """Accrued-days computation and accrual policy configuration."""

    @staticmethod
    async def get_unpaid_leave_months(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> int:
        """Calendar months spanned by the employee's approved unpaid leave."""
        result = await db.execute(
            select(LeaveRequest.from_date, LeaveRequest.to_date)
            .join(LeaveType, LeaveRequest.leave_type_id == LeaveType.id)
            .where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.status == LeaveStatus.approved,
                LeaveType.code == settings.UNPAID_LEAVE_TYPE_CODE,
            )
        )
        return sum(months_spanned(start, end) for start, end in result.all())

    @staticmethod
    async def calculate_accrued_leave(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        months_worked: int,
        pause_during_unpaid: bool,
    ) -> Decimal:
        """Days accrued so far: one per month worked on a monthly policy.

        Yearly and per-term policies accrue nothing through this path.
        """
        result = await db.execute(
            select(LeavePolicy).where(LeavePolicy.leave_type_id == leave_type_id)
        )
        policy = result.scalars().first()
        if policy is None:
            raise NotFoundException("LeavePolicy", leave_type_id)

        accrued = Decimal(0)
        if policy.accrual_method == AccrualMethod.monthly:
            accrued = Decimal(months_worked)

        if pause_during_unpaid:
            unpaid_months = await AccrualCalculator.get_unpaid_leave_months(db, employee_id)
            accrued -= unpaid_months

        return accrued

    @staticmethod
    async def configure_accrual_policy(
        db: AsyncSession,
        employee_ref: Union[str, uuid.UUID],
        leave_type_id: uuid.UUID,
        months_worked: int,
        data: AccrualPolicyRequest,
    ) -> AccrualPolicyResult:
        """Persist accrual settings and return this employee's raw and rounded accrual."""
        leave_type = await db.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise NotFoundException("LeaveType", leave_type_id)

        result = await db.execute(
            select(LeavePolicy).where(LeavePolicy.leave_type_id == leave_type_id)
        )
        policy: Optional[LeavePolicy] = result.scalars().first()
        if policy is None:
            policy = LeavePolicy(
                leave_type_id=leave_type_id,
                eligibility={},
                yearly_rate=Decimal(0),
                min_notice_days=0,
            )
            db.add(policy)

        employee = await OrgService.get_employee(db, employee_ref)

        employee_type = CONTRACT_TO_EMPLOYEE_TYPE.get(employee.contract_type)
        if employee_type is None:
            raise BadRequestException(
                f"Cannot determine employee type for contract type "
                f"'{employee.contract_type.value if employee.contract_type else None}'.",
                field="contract_type",
            )

        rate = Decimal(data.accrual_rate)
        if employee_type == EmployeeType.contract:
            rate = rate * Decimal(settings.LEAVE_CONTRACT_ACCRUAL_FACTOR)

        pre_rounded = Decimal(months_worked) * rate
        if data.pause_accrual_during_unpaid:
            unpaid_months = await AccrualCalculator.get_unpaid_leave_months(db, employee.id)
            pre_rounded -= Decimal(unpaid_months) * rate

        accrued = apply_rounding(pre_rounded, data.rounding_rule)

        policy.accrual_method = parse_accrual_method(data.accrual_frequency)
        policy.accrual_rate = Decimal(data.accrual_rate)
        policy.carry_forward_allowed = data.max_carry_forward > 0
        policy.max_carry_forward = data.max_carry_forward
        policy.expiry_after_months = RESET_EXPIRY_MONTHS.get(data.reset_date_type)
        policy.rounding_rule = data.rounding_rule
        policy.pause_accrual_during_unpaid = data.pause_accrual_during_unpaid
        await db.flush()

        logger.info(
            "Accrual policy configured",
            extra={
                "leave_type_id": str(leave_type_id),
                "employee_id": str(employee.id),
                "employee_type": employee_type.value,
                "pre_rounded": str(pre_rounded),
                "accrued": str(accrued),
            },
        )

        return AccrualPolicyResult(
            policy=LeavePolicyOut.model_validate(policy),
            employee_id=employee.id,
            effective_rate=rate,
            pre_rounded_accrual=pre_rounded,
            accrued_leave=accrued,
        )
