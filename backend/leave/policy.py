"""Policy store — leave categories, leave types, entitlement rules and
per-type approval workflow configuration."""

from __future__ import annotations

import uuid
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.audit import create_audit_entry
from backend.common.exceptions import (
    BadRequestException,
    ConflictError,
    NotFoundException,
)
from backend.config import settings
from backend.leave.models import LeaveCategory, LeavePolicy, LeaveType
from backend.leave.schemas import (
    ApprovalStep,
    ApprovalWorkflowOut,
    ApprovalWorkflowRequest,
    EntitlementRuleCreate,
    LeaveCategoryCreate,
    LeaveTypeCreate,
    LeaveTypeUpdate,
)


def _as_uuid(value: Union[str, uuid.UUID]) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


# ═════════════════════════════════════════════════════════════════════
# PolicyStore
# ═════════════════════════════════════════════════════════════════════


class PolicyStore:
    """HR-maintained leave configuration."""

    # ── Categories ──────────────────────────────────────────────────

    @staticmethod
    async def create_leave_category(
        db: AsyncSession,
        data: LeaveCategoryCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveCategory:
        existing = await db.execute(
            select(LeaveCategory).where(LeaveCategory.name == data.name)
        )
        if existing.scalars().first() is not None:
            raise ConflictError("name", data.name)

        category = LeaveCategory(name=data.name, description=data.description)
        db.add(category)
        await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_category",
            entity_id=category.id,
            actor_id=actor_id,
            new_values={"name": data.name},
        )
        return category

    # ── Leave types ─────────────────────────────────────────────────

    @staticmethod
    async def create_leave_type(
        db: AsyncSession,
        data: LeaveTypeCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveType:
        category = await db.get(LeaveCategory, data.category_id)
        if category is None:
            raise BadRequestException("Leave category not found", field="category_id")

        existing = await db.execute(select(LeaveType).where(LeaveType.code == data.code))
        if existing.scalars().first() is not None:
            raise ConflictError("code", data.code)

        leave_type = LeaveType(**data.model_dump(), approval_workflow=[], is_active=True)
        db.add(leave_type)
        await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_type",
            entity_id=leave_type.id,
            actor_id=actor_id,
            new_values=data.model_dump(mode="json"),
        )
        return leave_type

    @staticmethod
    async def update_leave_type(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        patch: LeaveTypeUpdate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveType:
        """Apply only the fields present in ``patch``; ``code`` cannot change."""
        leave_type = await db.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise NotFoundException("LeaveType", leave_type_id)

        changes = patch.model_dump(exclude_unset=True)
        if "category_id" in changes and await db.get(LeaveCategory, changes["category_id"]) is None:
            raise BadRequestException("Leave category not found", field="category_id")

        old_values = {k: getattr(leave_type, k) for k in changes}
        for field, value in changes.items():
            setattr(leave_type, field, value)
        await db.flush()

        await create_audit_entry(
            db,
            action="update",
            entity_type="leave_type",
            entity_id=leave_type.id,
            actor_id=actor_id,
            old_values={k: str(v) if v is not None else None for k, v in old_values.items()},
            new_values=patch.model_dump(mode="json", exclude_unset=True),
        )
        return leave_type

    @staticmethod
    async def get_leave_type(
        db: AsyncSession,
        ref: Union[str, uuid.UUID],
    ) -> LeaveType:
        """Resolve a leave type by id, falling back to its code."""
        leave_type_id = _as_uuid(ref)
        if leave_type_id is not None:
            leave_type = await db.get(LeaveType, leave_type_id)
            if leave_type is not None:
                return leave_type

        result = await db.execute(select(LeaveType).where(LeaveType.code == str(ref)))
        leave_type = result.scalars().first()
        if leave_type is None:
            raise NotFoundException("LeaveType", ref)
        return leave_type

    @staticmethod
    async def get_unpaid_leave_type(db: AsyncSession) -> LeaveType:
        code = settings.UNPAID_LEAVE_TYPE_CODE
        result = await db.execute(select(LeaveType).where(LeaveType.code == code))
        leave_type = result.scalars().first()
        if leave_type is None:
            raise BadRequestException(
                f"No '{code}' leave type is configured for the unpaid portion.",
                field="leave_type_id",
            )
        return leave_type

    @staticmethod
    async def list_leave_types(
        db: AsyncSession,
        *,
        active_only: bool = True,
    ) -> list[LeaveType]:
        query = select(LeaveType).order_by(LeaveType.code)
        if active_only:
            query = query.where(LeaveType.is_active.is_(True))
        result = await db.execute(query)
        return list(result.scalars().all())

    # ── Entitlement rules ───────────────────────────────────────────

    @staticmethod
    async def get_policy(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
    ) -> Optional[LeavePolicy]:
        result = await db.execute(
            select(LeavePolicy).where(LeavePolicy.leave_type_id == leave_type_id)
        )
        return result.scalars().first()

    @staticmethod
    async def set_entitlement_rule(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        data: EntitlementRuleCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeavePolicy:
        """Upsert the single policy of a leave type with its eligibility and limits."""
        leave_type = await db.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise NotFoundException("LeaveType", leave_type_id)

        policy = await PolicyStore.get_policy(db, leave_type_id)
        if policy is None:
            policy = LeavePolicy(leave_type_id=leave_type_id)
            db.add(policy)

        policy.yearly_rate = data.days_per_year
        policy.eligibility = data.eligibility.model_dump(mode="json", exclude_none=True)
        policy.min_notice_days = data.min_notice_days
        policy.max_consecutive_days = data.max_consecutive_days
        await db.flush()

        await create_audit_entry(
            db,
            action="upsert",
            entity_type="leave_policy",
            entity_id=policy.id,
            actor_id=actor_id,
            new_values=data.model_dump(mode="json"),
        )
        return policy

    # ── Approval workflow / payroll code ────────────────────────────

    @staticmethod
    async def configure_approval_workflow(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        data: ApprovalWorkflowRequest,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> ApprovalWorkflowOut:
        leave_type = await db.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise NotFoundException("LeaveType", leave_type_id)

        steps = sorted(data.steps, key=lambda s: s.level)
        leave_type.approval_workflow = [s.model_dump(mode="json") for s in steps]
        if data.payroll_code is not None:
            leave_type.payroll_code = data.payroll_code
        await db.flush()

        await create_audit_entry(
            db,
            action="configure_workflow",
            entity_type="leave_type",
            entity_id=leave_type.id,
            actor_id=actor_id,
            new_values=data.model_dump(mode="json"),
        )
        return ApprovalWorkflowOut(
            leave_type_id=leave_type.id,
            steps=steps,
            payroll_code=leave_type.payroll_code,
        )

    @staticmethod
    async def get_approval_workflow(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
    ) -> ApprovalWorkflowOut:
        leave_type = await db.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise NotFoundException("LeaveType", leave_type_id)
        return ApprovalWorkflowOut(
            leave_type_id=leave_type.id,
            steps=[ApprovalStep.model_validate(s) for s in leave_type.approval_workflow or []],
            payroll_code=leave_type.payroll_code,
        )
