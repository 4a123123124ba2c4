"""Leave service layer — request submission, manager and HR decisions,
finalization, escalation and retroactive deductions.

Business logic:
  - Submission runs eligibility, attachment, notice, duration, limit, overlap
    and balance checks in a fixed order and fails closed on the first violation
  - A request short on balance is split into a paid and an unpaid request
  - Manager approval keeps the request pending; only HR approval finalizes it
  - Finalization always updates the ledger; notification, attendance and
    payroll effects are isolated and reported
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Sequence

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.attendance.service import AttendanceService
from backend.common.audit import create_audit_entry
from backend.common.constants import (
    ATTACHMENT_MIME_TYPES,
    DEFAULT_ATTACHMENT_MIME_TYPES,
    AdjustmentType,
    ApprovalRole,
    LeaveStatus,
    PenaltyType,
    SideEffectOutcome,
    TimeExceptionType,
)
from backend.common.exceptions import (
    BadRequestException,
    ForbiddenException,
    InternalServerException,
    NotFoundException,
)
from backend.config import settings
from backend.core_hr.models import Employee, Location
from backend.core_hr.service import OrgService
from backend.leave.accrual import months_between
from backend.leave.calendar import WEEKEND_DAYS, CalendarEngine
from backend.leave.delegation import DelegationResolver
from backend.leave.entitlement import EntitlementLedger
from backend.leave.models import (
    Attachment,
    LeaveAdjustment,
    LeavePolicy,
    LeaveRequest,
    LeaveType,
)
from backend.leave.policy import PolicyStore
from backend.leave.schemas import (
    EligibilityCriteria,
    FinalizationReport,
    LeaveRequestOut,
    LeaveReviewResult,
    LeaveSubmissionResult,
    SideEffectResult,
)
from backend.notifications.service import (
    notify_leave_approved,
    notify_leave_escalated,
    notify_leave_rejected,
    notify_leave_request,
)
from backend.salary.service import PayrollService

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _flow_entry(
    role: ApprovalRole,
    status: LeaveStatus,
    *,
    approver_id: Optional[uuid.UUID] = None,
    decided_by: Optional[uuid.UUID] = None,
    reason: Optional[str] = None,
) -> dict[str, Any]:
    decided = status != LeaveStatus.pending
    return {
        "role": role.value,
        "status": status.value,
        "approver_id": str(approver_id) if approver_id else None,
        "decided_by": str(decided_by) if decided_by else None,
        "decided_at": _utcnow().isoformat() if decided else None,
        "reason": reason,
    }


def _has_decision(request: LeaveRequest, role: ApprovalRole) -> bool:
    return any(
        entry.get("role") == role.value and entry.get("status") != LeaveStatus.pending.value
        for entry in request.approval_flow or []
    )


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Leave request lifecycle: submit → manager → HR → finalize."""

    # ─────────────────────────────────────────────────────────────────
    # Validation helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _check_eligibility(
        db: AsyncSession,
        employee: Employee,
        leave_type: LeaveType,
        policy: Optional[LeavePolicy],
        today: date,
    ) -> None:
        criteria = EligibilityCriteria()
        if policy is not None:
            criteria = EligibilityCriteria.model_validate(policy.eligibility or {})

        tenure = months_between(employee.date_of_joining, today)
        required = max(leave_type.min_tenure_months or 0, criteria.min_tenure_months or 0)
        if tenure < required:
            raise BadRequestException(
                f"Minimum tenure of {required} months required for {leave_type.name}. "
                f"Current tenure: {tenure} months.",
                field="leave_type_id",
            )

        if criteria.contract_types_allowed and employee.contract_type not in criteria.contract_types_allowed:
            raise BadRequestException(
                f"{leave_type.name} is not available for contract type "
                f"'{employee.contract_type.value if employee.contract_type else None}'.",
                field="leave_type_id",
            )

        if criteria.positions_allowed and employee.position_id not in criteria.positions_allowed:
            raise BadRequestException(
                f"{leave_type.name} is not available for the employee's position.",
                field="leave_type_id",
            )

        if criteria.locations_allowed:
            location = (
                await db.get(Location, employee.location_id) if employee.location_id else None
            )
            if location is None or location.name not in criteria.locations_allowed:
                raise BadRequestException(
                    f"{leave_type.name} is only available at: "
                    f"{', '.join(criteria.locations_allowed)}.",
                    field="leave_type_id",
                )

        if criteria.grade:
            pay_grade = await PayrollService.get_pay_grade(db, employee.pay_grade_id)
            if pay_grade is None or pay_grade.grade != criteria.grade:
                raise BadRequestException(
                    f"{leave_type.name} requires pay grade {criteria.grade}.",
                    field="leave_type_id",
                )

    @staticmethod
    async def _validate_attachment(
        db: AsyncSession,
        leave_type: LeaveType,
        attachment_id: Optional[uuid.UUID],
    ) -> None:
        if attachment_id is None:
            if leave_type.requires_attachment:
                raise BadRequestException(
                    f"{leave_type.name} requires a supporting attachment.",
                    field="attachment_id",
                )
            return

        attachment = await db.get(Attachment, attachment_id)
        if attachment is None:
            raise NotFoundException("Attachment", attachment_id)

        allowed = ATTACHMENT_MIME_TYPES.get(
            leave_type.attachment_type or "", DEFAULT_ATTACHMENT_MIME_TYPES
        )
        if attachment.mime_type not in allowed:
            raise BadRequestException(
                f"Attachment type '{attachment.mime_type}' is not allowed. "
                f"Allowed: {', '.join(allowed)}.",
                field="attachment_id",
            )
        if attachment.size_bytes > settings.max_attachment_bytes:
            raise BadRequestException(
                f"Attachment exceeds the {settings.LEAVE_MAX_ATTACHMENT_MB} MB limit.",
                field="attachment_id",
            )

    @staticmethod
    def _check_notice(policy: Optional[LeavePolicy], from_date: date, today: date) -> None:
        if policy is None or not policy.min_notice_days:
            return
        days_ahead = (from_date - today).days
        if days_ahead < 0:
            grace = settings.LEAVE_RETROACTIVE_GRACE_DAYS
            if -days_ahead > grace:
                raise BadRequestException(
                    f"Retroactive leave can only be submitted within {grace} days. "
                    f"Requested start was {-days_ahead} days ago.",
                    field="from_date",
                )
            return
        if days_ahead < policy.min_notice_days:
            raise BadRequestException(
                f"A minimum notice of {policy.min_notice_days} days is required. "
                f"Requested start is {days_ahead} day(s) away.",
                field="from_date",
            )

    @staticmethod
    def _check_duration_limits(
        leave_type: LeaveType,
        policy: Optional[LeavePolicy],
        duration: Decimal,
    ) -> None:
        if policy is not None and policy.max_consecutive_days and duration > policy.max_consecutive_days:
            raise BadRequestException(
                f"{leave_type.name} allows a maximum of {policy.max_consecutive_days} "
                f"consecutive days. Requested: {duration}.",
                field="to_date",
            )
        if leave_type.max_duration_days and duration > leave_type.max_duration_days:
            raise BadRequestException(
                f"{leave_type.name} allows at most {leave_type.max_duration_days} days "
                f"per request. Requested: {duration}.",
                field="to_date",
            )

    @staticmethod
    async def _check_cumulative_limit(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
        policy: Optional[LeavePolicy],
        year: int,
        duration: Decimal,
    ) -> None:
        if policy is None or not policy.yearly_rate:
            return
        approved = await EntitlementLedger.sum_approved_days(
            db, employee_id, leave_type.id, year=year
        )
        if approved + duration > Decimal(policy.yearly_rate):
            raise BadRequestException(
                f"Yearly limit of {policy.yearly_rate} days for {leave_type.name} exceeded. "
                f"Already approved: {approved}, requested: {duration}.",
                field="to_date",
            )

    @staticmethod
    async def _check_overlap(
        db: AsyncSession,
        employee_id: uuid.UUID,
        from_date: date,
        to_date: date,
    ) -> None:
        result = await db.execute(
            select(func.count()).select_from(LeaveRequest).where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.status.in_([LeaveStatus.pending, LeaveStatus.approved]),
                LeaveRequest.from_date <= to_date,
                LeaveRequest.to_date >= from_date,
            )
        )
        if result.scalar_one() > 0:
            raise BadRequestException(
                "A pending or approved leave request already overlaps "
                f"{from_date} to {to_date}.",
                field="from_date",
            )

    @staticmethod
    async def _warn_team_conflicts(
        db: AsyncSession,
        employee: Employee,
        from_date: date,
        to_date: date,
    ) -> None:
        if employee.department_id is None:
            return
        result = await db.execute(
            select(func.count())
            .select_from(LeaveRequest)
            .join(Employee, LeaveRequest.employee_id == Employee.id)
            .where(
                Employee.department_id == employee.department_id,
                Employee.id != employee.id,
                Employee.is_active.is_(True),
                LeaveRequest.status == LeaveStatus.approved,
                LeaveRequest.from_date <= to_date,
                LeaveRequest.to_date >= from_date,
            )
        )
        conflicts = result.scalar_one()
        if conflicts:
            logger.warning(
                "Team scheduling conflict",
                extra={
                    "employee_id": str(employee.id),
                    "department_id": str(employee.department_id),
                    "from_date": from_date.isoformat(),
                    "to_date": to_date.isoformat(),
                    "conflicts": conflicts,
                },
            )

    @staticmethod
    async def _notify_approver(
        db: AsyncSession,
        leave_request: LeaveRequest,
        approver_id: uuid.UUID,
    ) -> None:
        try:
            async with db.begin_nested():
                await notify_leave_request(db, leave_request, approver_id)
        except Exception:
            logger.warning(
                "Approver notification failed",
                exc_info=True,
                extra={"request_id": str(leave_request.id), "approver_id": str(approver_id)},
            )

    # ─────────────────────────────────────────────────────────────────
    # Submit
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def submit_leave_request(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        from_date: date,
        to_date: date,
        justification: Optional[str] = None,
        attachment_id: Optional[uuid.UUID] = None,
        *,
        today: Optional[date] = None,
    ) -> LeaveSubmissionResult:
        """Validate and persist a leave request, splitting off an unpaid
        portion when the balance does not cover the whole duration."""
        today = today or date.today()

        if from_date > to_date:
            raise BadRequestException("from_date must be on or before to_date.", field="from_date")

        employee = await OrgService.get_employee(db, employee_id)
        leave_type = await db.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise NotFoundException("LeaveType", leave_type_id)
        policy = await PolicyStore.get_policy(db, leave_type.id)

        await LeaveService._check_eligibility(db, employee, leave_type, policy, today)
        await LeaveService._validate_attachment(db, leave_type, attachment_id)
        LeaveService._check_notice(policy, from_date, today)

        net_days = await CalendarEngine.calculate_net_leave_duration(
            db, from_date, to_date, from_date.year, employee.id
        )
        if net_days <= 0:
            raise BadRequestException(
                "No working days found in the selected range "
                "(all days are weekends or holidays).",
                field="from_date",
            )
        duration = Decimal(net_days)

        approver_id = await DelegationResolver.find_approver_with_delegation(
            db, employee.id, today
        )
        seed = [_flow_entry(ApprovalRole.manager, LeaveStatus.pending, approver_id=approver_id)]

        LeaveService._check_duration_limits(leave_type, policy, duration)
        await LeaveService._check_cumulative_limit(
            db, employee.id, leave_type, policy, from_date.year, duration
        )
        await LeaveService._check_overlap(db, employee.id, from_date, to_date)

        if leave_type.deductible and policy is not None:
            balance = await EntitlementLedger.get_leave_balance(
                db, employee.id, leave_type.id, today=today
            )
            if balance < duration:
                return await LeaveService._submit_split(
                    db, employee, leave_type, from_date, to_date, justification,
                    attachment_id, duration, balance, seed, approver_id,
                )

        await LeaveService._warn_team_conflicts(db, employee, from_date, to_date)

        leave_request = LeaveRequest(
            employee_id=employee.id,
            leave_type_id=leave_type.id,
            from_date=from_date,
            to_date=to_date,
            duration_days=duration,
            justification=justification,
            attachment_id=attachment_id,
            status=LeaveStatus.pending,
            approval_flow=list(seed),
        )
        db.add(leave_request)
        await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_request",
            entity_id=leave_request.id,
            actor_id=employee.id,
            new_values={
                "leave_type": leave_type.code,
                "from_date": from_date.isoformat(),
                "to_date": to_date.isoformat(),
                "duration_days": str(duration),
            },
        )
        await LeaveService._notify_approver(db, leave_request, approver_id)

        return LeaveSubmissionResult(
            kind="single",
            request=LeaveRequestOut.model_validate(leave_request),
        )

    @staticmethod
    async def _submit_split(
        db: AsyncSession,
        employee: Employee,
        leave_type: LeaveType,
        from_date: date,
        to_date: date,
        justification: Optional[str],
        attachment_id: Optional[uuid.UUID],
        duration: Decimal,
        balance: Decimal,
        seed: list[dict[str, Any]],
        approver_id: uuid.UUID,
    ) -> LeaveSubmissionResult:
        unpaid_type = await PolicyStore.get_unpaid_leave_type(db)

        paid_days = balance if balance > 0 else Decimal(0)
        unpaid_days = duration - paid_days

        paid_request: Optional[LeaveRequest] = None
        if paid_days > 0:
            paid_request = LeaveRequest(
                employee_id=employee.id,
                leave_type_id=leave_type.id,
                from_date=from_date,
                to_date=to_date,
                duration_days=paid_days,
                justification=justification,
                attachment_id=attachment_id,
                status=LeaveStatus.pending,
                approval_flow=list(seed),
            )
            db.add(paid_request)

        unpaid_request = LeaveRequest(
            employee_id=employee.id,
            leave_type_id=unpaid_type.id,
            from_date=from_date,
            to_date=to_date,
            duration_days=unpaid_days,
            justification=f"Unpaid portion: {justification or leave_type.name}",
            status=LeaveStatus.pending,
            approval_flow=list(seed),
        )
        db.add(unpaid_request)
        await db.flush()

        logger.info(
            "Leave request split into paid and unpaid portions",
            extra={
                "employee_id": str(employee.id),
                "leave_type": leave_type.code,
                "balance": str(balance),
                "paid_days": str(paid_days),
                "unpaid_days": str(unpaid_days),
            },
        )

        for created in (paid_request, unpaid_request):
            if created is None:
                continue
            await create_audit_entry(
                db,
                action="create",
                entity_type="leave_request",
                entity_id=created.id,
                actor_id=employee.id,
                new_values={
                    "leave_type_id": str(created.leave_type_id),
                    "duration_days": str(created.duration_days),
                    "split": True,
                },
            )
            await LeaveService._notify_approver(db, created, approver_id)

        return LeaveSubmissionResult(
            kind="split",
            paid_request=LeaveRequestOut.model_validate(paid_request) if paid_request else None,
            unpaid_request=LeaveRequestOut.model_validate(unpaid_request),
        )

    # ─────────────────────────────────────────────────────────────────
    # Manager decision
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def approve_leave_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        manager_id: uuid.UUID,
        status: LeaveStatus,
        reason: Optional[str] = None,
    ) -> LeaveRequest:
        """Record the manager's decision. Approval leaves the request pending for HR."""
        if status == LeaveStatus.pending:
            raise BadRequestException("status must be approved or rejected.", field="status")

        leave_request = await LeaveService.get_leave_request(db, request_id)
        if leave_request.status != LeaveStatus.pending:
            raise BadRequestException(
                f"Leave request is already {leave_request.status.value}.", field="status"
            )

        employee = await OrgService.get_employee(db, leave_request.employee_id)
        if not await DelegationResolver.verify_manager_authorization(db, employee, manager_id):
            raise ForbiddenException("You are not authorized to decide on this leave request.")

        leave_request.approval_flow = [
            *(leave_request.approval_flow or []),
            _flow_entry(ApprovalRole.manager, status, decided_by=manager_id, reason=reason),
        ]
        if status == LeaveStatus.rejected:
            leave_request.status = LeaveStatus.rejected
        await db.flush()

        await create_audit_entry(
            db,
            action="approve" if status == LeaveStatus.approved else "reject",
            entity_type="leave_request",
            entity_id=leave_request.id,
            actor_id=manager_id,
            old_values={"status": LeaveStatus.pending.value},
            new_values={"manager_decision": status.value, "reason": reason},
        )

        if status == LeaveStatus.rejected:
            try:
                async with db.begin_nested():
                    await notify_leave_rejected(db, leave_request, reason)
            except Exception:
                logger.warning(
                    "Rejection notification failed",
                    exc_info=True,
                    extra={"request_id": str(leave_request.id)},
                )
        return leave_request

    # ─────────────────────────────────────────────────────────────────
    # HR review
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def review_leave_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        hr_id: uuid.UUID,
        status: LeaveStatus,
        override_reason: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> LeaveReviewResult:
        """Final HR decision. HR may also overturn a manager rejection.

        Only ``override_reason`` lifts the balance check; ``reason`` is a plain
        comment recorded on the approval flow.
        """
        if status == LeaveStatus.pending:
            raise BadRequestException("status must be approved or rejected.", field="status")

        leave_request = await LeaveService.get_leave_request(db, request_id)
        reviewable = leave_request.status == LeaveStatus.pending or (
            leave_request.status == LeaveStatus.rejected
            and not _has_decision(leave_request, ApprovalRole.hr)
        )
        if not reviewable:
            raise BadRequestException(
                f"Leave request is already {leave_request.status.value} and cannot be reviewed.",
                field="status",
            )

        previous_status = leave_request.status
        if status == LeaveStatus.approved:
            leave_type = await db.get(LeaveType, leave_request.leave_type_id)
            if leave_type is None:
                raise NotFoundException("LeaveType", leave_request.leave_type_id)
            policy = await PolicyStore.get_policy(db, leave_type.id)
            duration = Decimal(leave_request.duration_days)

            await LeaveService._validate_attachment(db, leave_type, leave_request.attachment_id)
            await LeaveService._check_cumulative_limit(
                db, leave_request.employee_id, leave_type, policy,
                leave_request.from_date.year, duration,
            )
            if leave_type.deductible and policy is not None:
                balance = await EntitlementLedger.get_leave_balance(
                    db, leave_request.employee_id, leave_type.id
                )
                if balance < duration:
                    if not override_reason:
                        raise BadRequestException(
                            f"Insufficient {leave_type.name} balance. "
                            f"Available: {balance}, requested: {duration}.",
                            field="status",
                        )
                    logger.warning(
                        "HR approved leave over balance",
                        extra={
                            "request_id": str(leave_request.id),
                            "hr_id": str(hr_id),
                            "balance": str(balance),
                            "duration_days": str(duration),
                            "override_reason": override_reason,
                        },
                    )

        leave_request.approval_flow = [
            *(leave_request.approval_flow or []),
            _flow_entry(ApprovalRole.hr, status, decided_by=hr_id, reason=reason or override_reason),
        ]
        leave_request.status = status
        await db.flush()

        await create_audit_entry(
            db,
            action="review",
            entity_type="leave_request",
            entity_id=leave_request.id,
            actor_id=hr_id,
            old_values={"status": previous_status.value},
            new_values={"status": status.value, "override_reason": override_reason},
        )

        report: Optional[FinalizationReport] = None
        if status == LeaveStatus.approved:
            report = await LeaveService.finalize_leave_request(db, leave_request)
        else:
            try:
                async with db.begin_nested():
                    await notify_leave_rejected(db, leave_request, reason or override_reason)
            except Exception:
                logger.warning(
                    "Rejection notification failed",
                    exc_info=True,
                    extra={"request_id": str(leave_request.id)},
                )

        return LeaveReviewResult(
            request=LeaveRequestOut.model_validate(leave_request),
            finalization=report,
        )

    # ─────────────────────────────────────────────────────────────────
    # Finalization
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _isolated(
        db: AsyncSession,
        name: str,
        request_id: uuid.UUID,
        action: Callable[[], Awaitable[Optional[str]]],
    ) -> SideEffectResult:
        """Run one side effect inside a savepoint; a returned string means it was skipped.

        A failure rolls back only that savepoint, so the ledger update and the
        other effects stay in the surrounding transaction.
        """
        try:
            async with db.begin_nested():
                skipped = await action()
        except Exception as exc:
            logger.warning(
                "Finalization side effect failed",
                exc_info=True,
                extra={"effect": name, "request_id": str(request_id)},
            )
            return SideEffectResult(name=name, outcome=SideEffectOutcome.failed, detail=str(exc))
        if skipped:
            return SideEffectResult(name=name, outcome=SideEffectOutcome.skipped, detail=skipped)
        return SideEffectResult(name=name, outcome=SideEffectOutcome.succeeded)

    @staticmethod
    async def _block_attendance(db: AsyncSession, leave_request: LeaveRequest) -> Optional[str]:
        day = leave_request.from_date
        blocked = 0
        while day <= leave_request.to_date:
            if day.weekday() not in WEEKEND_DAYS:
                record = await AttendanceService.get_attendance_record(
                    db, leave_request.employee_id, day
                )
                if record is None:
                    record = await AttendanceService.create_attendance_record(
                        db,
                        leave_request.employee_id,
                        day,
                        remarks=f"Approved leave {leave_request.id}",
                    )
                await AttendanceService.create_time_exception(
                    db,
                    employee_id=leave_request.employee_id,
                    attendance_record_id=record.id,
                    exception_type=TimeExceptionType.manual_adjustment,
                    reason=f"Approved leave {leave_request.id}",
                )
                blocked += 1
            day += timedelta(days=1)
        if not blocked:
            return "no working days in the leave window"
        return None

    @staticmethod
    async def _record_unpaid_penalty(db: AsyncSession, leave_request: LeaveRequest) -> Optional[str]:
        leave_type = await db.get(LeaveType, leave_request.leave_type_id)
        if leave_type is None or leave_type.code != settings.UNPAID_LEAVE_TYPE_CODE:
            return "not unpaid leave"

        employee = await OrgService.get_employee(db, leave_request.employee_id)
        pay_grade = await PayrollService.get_pay_grade(db, employee.pay_grade_id)
        if pay_grade is None:
            logger.warning(
                "No pay grade for unpaid leave deduction",
                extra={"employee_id": str(employee.id), "request_id": str(leave_request.id)},
            )
            return "employee has no pay grade"

        daily_rate = Decimal(pay_grade.base_salary) / settings.PAYROLL_WORKING_DAYS_PER_MONTH
        amount = (Decimal(leave_request.duration_days) * daily_rate).quantize(Decimal("0.01"))
        await PayrollService.record_penalty(
            db,
            employee.id,
            penalty_type=PenaltyType.unpaid_leave,
            amount=amount,
            reason=(
                f"Unpaid leave {leave_request.from_date} to {leave_request.to_date} "
                f"({leave_request.duration_days} day(s))"
            ),
            reference_id=leave_request.id,
        )
        return None

    @staticmethod
    async def finalize_leave_request(
        db: AsyncSession,
        leave_request: LeaveRequest,
    ) -> FinalizationReport:
        """Apply an approved request to the ledger, then run the integrations.

        The ledger update propagates its errors; every other effect is
        reported in the returned :class:`FinalizationReport`.
        """
        duration = Decimal(leave_request.duration_days)
        existing = await EntitlementLedger.find_entitlement(
            db, leave_request.employee_id, leave_request.leave_type_id
        )
        previous = Decimal(existing.remaining) if existing is not None else Decimal(0)
        entitlement = await EntitlementLedger.update_leave_balance(
            db, leave_request.employee_id, leave_request.leave_type_id, duration
        )
        db.add(
            LeaveAdjustment(
                employee_id=leave_request.employee_id,
                leave_type_id=leave_request.leave_type_id,
                adjustment_type=AdjustmentType.finalization,
                amount=-duration,
                previous_value=previous,
                new_value=entitlement.remaining,
                reason=f"Leave request {leave_request.id}",
            )
        )
        await db.flush()

        report = FinalizationReport(
            request_id=leave_request.id,
            effects=[SideEffectResult(name="entitlement", outcome=SideEffectOutcome.succeeded)],
        )

        async def _notify() -> Optional[str]:
            await notify_leave_approved(db, leave_request)
            return None

        report.effects.append(
            await LeaveService._isolated(db, "notification", leave_request.id, _notify)
        )
        report.effects.append(
            await LeaveService._isolated(
                db,
                "attendance",
                leave_request.id,
                lambda: LeaveService._block_attendance(db, leave_request),
            )
        )
        report.effects.append(
            await LeaveService._isolated(
                db,
                "payroll",
                leave_request.id,
                lambda: LeaveService._record_unpaid_penalty(db, leave_request),
            )
        )

        logger.info(
            "Leave request finalized",
            extra={
                "request_id": str(leave_request.id),
                "effects": {e.name: e.outcome.value for e in report.effects},
            },
        )
        return report

    # ─────────────────────────────────────────────────────────────────
    # Escalation
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def check_auto_escalation(
        db: AsyncSession,
        now: Optional[datetime] = None,
    ) -> int:
        """Notify skip-level managers about requests stuck without a manager decision."""
        now = now or _utcnow()
        cutoff = now - timedelta(hours=settings.LEAVE_ESCALATION_HOURS)

        result = await db.execute(
            select(LeaveRequest).where(LeaveRequest.status == LeaveStatus.pending)
        )
        escalated = 0
        for leave_request in result.scalars().all():
            created_at = leave_request.created_at
            if created_at.tzinfo is None:
                created_at = created_at.replace(tzinfo=timezone.utc)
            if created_at > cutoff or _has_decision(leave_request, ApprovalRole.manager):
                continue

            employee = await OrgService.get_employee(db, leave_request.employee_id)
            try:
                recipient_id = await DelegationResolver.find_skip_level_manager(
                    db, employee, now.date()
                )
            except NotFoundException:
                recipient_id = None
            if recipient_id is None:
                logger.warning(
                    "No skip-level manager for escalation",
                    extra={"request_id": str(leave_request.id), "employee_id": str(employee.id)},
                )
                continue

            await notify_leave_escalated(
                db, leave_request, recipient_id, settings.LEAVE_ESCALATION_HOURS
            )
            escalated += 1

        if escalated:
            logger.info("Leave requests escalated", extra={"count": escalated})
        return escalated

    # ─────────────────────────────────────────────────────────────────
    # Retroactive deduction
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def apply_retroactive_deduction(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        from_date: str,
        to_date: str,
        reason: str,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveReviewResult:
        """Record already-taken leave as approved and finalize it immediately."""
        try:
            start = date.fromisoformat(from_date)
            end = date.fromisoformat(to_date)
        except (TypeError, ValueError) as exc:
            raise InternalServerException(f"Retroactive deduction failed: {exc}") from exc
        if start > end:
            raise BadRequestException("from_date must be on or before to_date.", field="from_date")

        employee = await OrgService.get_employee(db, employee_id)
        leave_type = await db.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise NotFoundException("LeaveType", leave_type_id)

        duration = Decimal(await CalendarEngine.count_working_days(db, start, end, start.year))

        leave_request = LeaveRequest(
            employee_id=employee.id,
            leave_type_id=leave_type.id,
            from_date=start,
            to_date=end,
            duration_days=duration,
            justification=reason,
            status=LeaveStatus.approved,
            approval_flow=[
                _flow_entry(
                    ApprovalRole.hr_system,
                    LeaveStatus.approved,
                    decided_by=actor_id,
                    reason=reason,
                )
            ],
        )
        db.add(leave_request)
        await db.flush()

        report = await LeaveService.finalize_leave_request(db, leave_request)

        db.add(
            LeaveAdjustment(
                employee_id=employee.id,
                leave_type_id=leave_type.id,
                adjustment_type=AdjustmentType.retroactive_deduction,
                amount=-duration,
                reason=reason,
                actor_id=actor_id,
            )
        )
        await db.flush()

        await create_audit_entry(
            db,
            action="retroactive_deduction",
            entity_type="leave_request",
            entity_id=leave_request.id,
            actor_id=actor_id,
            new_values={
                "from_date": start.isoformat(),
                "to_date": end.isoformat(),
                "duration_days": str(duration),
                "reason": reason,
            },
        )
        return LeaveReviewResult(
            request=LeaveRequestOut.model_validate(leave_request),
            finalization=report,
        )

    # ─────────────────────────────────────────────────────────────────
    # Read paths
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_leave_request(db: AsyncSession, request_id: uuid.UUID) -> LeaveRequest:
        leave_request = await db.get(LeaveRequest, request_id)
        if leave_request is None:
            raise NotFoundException("LeaveRequest", request_id)
        return leave_request

    @staticmethod
    def leave_requests_query(
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[LeaveStatus] = None,
    ) -> Select:
        query = select(LeaveRequest).order_by(
            LeaveRequest.from_date.desc(), LeaveRequest.created_at.desc()
        )
        if employee_id is not None:
            query = query.where(LeaveRequest.employee_id == employee_id)
        if status is not None:
            query = query.where(LeaveRequest.status == status)
        return query

    @staticmethod
    async def list_leave_requests(
        db: AsyncSession,
        employee_id: uuid.UUID,
        status: Optional[LeaveStatus] = None,
    ) -> Sequence[LeaveRequest]:
        result = await db.execute(LeaveService.leave_requests_query(employee_id, status))
        return result.scalars().all()
