"""Payroll service layer — pay grades and the employee penalty ledger."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import PenaltyType
from backend.salary.models import EmployeePenalties, PayGrade


class PayrollService:
    """Business logic for payroll data the leave engine writes to."""

    # ── Pay grades ────────────────────────────────────────────────────

    @staticmethod
    async def get_pay_grade(
        db: AsyncSession,
        pay_grade_id: Optional[uuid.UUID],
    ) -> Optional[PayGrade]:
        if pay_grade_id is None:
            return None
        return await db.get(PayGrade, pay_grade_id)

    # ── Penalties ─────────────────────────────────────────────────────

    @staticmethod
    async def get_penalties(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> list[dict]:
        result = await db.execute(
            select(EmployeePenalties).where(EmployeePenalties.employee_id == employee_id)
        )
        ledger = result.scalar_one_or_none()
        return list(ledger.penalties or []) if ledger else []

    @staticmethod
    async def record_penalty(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        penalty_type: PenaltyType,
        amount: Decimal,
        reason: str,
        reference_id: Optional[uuid.UUID] = None,
    ) -> EmployeePenalties:
        """Append a penalty to the employee's ledger, creating it when absent."""
        result = await db.execute(
            select(EmployeePenalties).where(EmployeePenalties.employee_id == employee_id)
        )
        ledger = result.scalar_one_or_none()
        if ledger is None:
            ledger = EmployeePenalties(employee_id=employee_id, penalties=[])
            db.add(ledger)

        entry = {
            "type": penalty_type.value,
            "amount": str(amount),
            "reason": reason,
            "reference_id": str(reference_id) if reference_id else None,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        # Reassign so the JSON column is flagged dirty.
        ledger.penalties = [*(ledger.penalties or []), entry]
        await db.flush()
        return ledger
