"""Leave request lifecycle tests — submission checks, paid/unpaid split,
manager and HR decisions, finalization, escalation and retroactive deductions.

Tests run against SQLite via the shared conftest.py fixtures. Submission is
pinned to ``TODAY`` (employees join on 2024-01-15, so four months have
accrued by then).
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.attendance.models import AttendanceRecord, TimeException
from backend.attendance.service import AttendanceService
from backend.common.constants import (
    AccrualMethod,
    AdjustmentType,
    ApprovalRole,
    LeaveStatus,
    SideEffectOutcome,
)
from backend.common.exceptions import (
    BadRequestException,
    ForbiddenException,
    InternalServerException,
    NotFoundException,
)
from backend.leave.entitlement import EntitlementLedger
from backend.leave.models import Attachment, LeaveAdjustment, LeaveRequest, LeaveType
from backend.leave.policy import PolicyStore
from backend.leave.service import LeaveService
from backend.notifications.service import NotificationService
from backend.salary.models import PayGrade
from backend.salary.service import PayrollService
from tests.conftest import seed_leave_type, seed_policy

TODAY = date(2024, 6, 3)  # Monday
MON = date(2024, 6, 10)
WED = date(2024, 6, 12)


# ═════════════════════════════════════════════════════════════════════
# Helpers — seed data for leave tests
# ═════════════════════════════════════════════════════════════════════


async def _annual(db: AsyncSession, org, **policy_kwargs) -> LeaveType:
    leave_type = await seed_leave_type(db)
    await seed_policy(db, leave_type.id, **policy_kwargs)
    await EntitlementLedger.set_personalized_entitlement(
        db, org.staff.id, leave_type.id, Decimal("20"),
    )
    return leave_type


async def _unpaid(db: AsyncSession) -> LeaveType:
    return await seed_leave_type(
        db, code="UNPAID", name="Unpaid Leave", deductible=False, paid=False,
    )


async def _submit(db: AsyncSession, employee_id, leave_type_id, start=MON, end=WED, **kwargs):
    return await LeaveService.submit_leave_request(
        db, employee_id, leave_type_id, start, end, today=kwargs.pop("today", TODAY), **kwargs,
    )


async def _seed_request(
    db: AsyncSession,
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    start: date,
    end: date,
    *,
    days: str = "3",
    status: LeaveStatus = LeaveStatus.approved,
) -> LeaveRequest:
    request = LeaveRequest(
        id=uuid.uuid4(),
        employee_id=employee_id,
        leave_type_id=leave_type_id,
        from_date=start,
        to_date=end,
        duration_days=Decimal(days),
        status=status,
        approval_flow=[],
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )
    db.add(request)
    await db.flush()
    return request


async def _attachment(db: AsyncSession, *, mime_type="application/pdf", size_bytes=1024) -> Attachment:
    attachment = Attachment(
        id=uuid.uuid4(),
        file_name="certificate.pdf",
        mime_type=mime_type,
        size_bytes=size_bytes,
    )
    db.add(attachment)
    await db.flush()
    return attachment


async def _approved_by_manager(db: AsyncSession, org, leave_type_id) -> uuid.UUID:
    result = await _submit(db, org.staff.id, leave_type_id)
    await LeaveService.approve_leave_request(
        db, result.request.id, org.manager.id, LeaveStatus.approved,
    )
    return result.request.id


# ═════════════════════════════════════════════════════════════════════
# Submission
# ═════════════════════════════════════════════════════════════════════


class TestSubmitLeaveRequest:

    async def test_happy_path(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        result = await _submit(db, org.staff.id, leave_type.id, justification="Family trip")

        assert result.kind == "single"
        request = result.request
        assert request.status == LeaveStatus.pending
        assert request.duration_days == Decimal("3")
        assert len(request.approval_flow) == 1
        seed = request.approval_flow[0]
        assert seed.role == ApprovalRole.manager
        assert seed.status == LeaveStatus.pending
        assert seed.approver_id == org.manager.id
        assert seed.decided_at is None

        notifications = await NotificationService.list_for_recipient(db, org.manager.id)
        assert [n.entity_id for n in notifications] == [request.id]

    async def test_submission_does_not_touch_ledger(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        await _submit(db, org.staff.id, leave_type.id)
        entitlement = await EntitlementLedger.get_entitlement(db, org.staff.id, leave_type.id)
        assert entitlement.taken == Decimal("0")
        assert entitlement.remaining == Decimal("20")

    async def test_inverted_range(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        with pytest.raises(BadRequestException):
            await _submit(db, org.staff.id, leave_type.id, WED, MON)

    async def test_unknown_leave_type(self, db: AsyncSession, org):
        with pytest.raises(NotFoundException):
            await _submit(db, org.staff.id, uuid.uuid4())

    async def test_weekend_only_range(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        with pytest.raises(BadRequestException) as exc_info:
            await _submit(db, org.staff.id, leave_type.id, date(2024, 6, 8), date(2024, 6, 9))
        assert "No working days" in exc_info.value.detail

    async def test_no_approver(self, db: AsyncSession, org):
        leave_type = await seed_leave_type(db)
        with pytest.raises(NotFoundException):
            await _submit(db, org.hr.id, leave_type.id)


class TestEligibility:

    async def test_leave_type_tenure(self, db: AsyncSession, org):
        leave_type = await seed_leave_type(db, min_tenure_months=12)
        with pytest.raises(BadRequestException) as exc_info:
            await _submit(db, org.staff.id, leave_type.id)
        assert exc_info.value.detail == (
            "Minimum tenure of 12 months required for Annual Leave. Current tenure: 4 months."
        )

    async def test_policy_tenure_takes_the_stricter_minimum(self, db: AsyncSession, org):
        leave_type = await seed_leave_type(db, min_tenure_months=2)
        await seed_policy(db, leave_type.id, eligibility={"min_tenure_months": 6})
        with pytest.raises(BadRequestException) as exc_info:
            await _submit(db, org.staff.id, leave_type.id)
        assert "Minimum tenure of 6 months" in exc_info.value.detail

    async def test_contract_type_not_allowed(self, db: AsyncSession, org):
        leave_type = await seed_leave_type(db)
        await seed_policy(
            db, leave_type.id, eligibility={"contract_types_allowed": ["full_time_contract"]},
        )
        with pytest.raises(BadRequestException):
            await _submit(db, org.staff.id, leave_type.id)

    async def test_location_restriction(self, db: AsyncSession, org):
        leave_type = await seed_leave_type(db, deductible=False)
        policy = await seed_policy(db, leave_type.id, eligibility={"locations_allowed": ["Porto"]})
        with pytest.raises(BadRequestException):
            await _submit(db, org.staff.id, leave_type.id)

        policy.eligibility = {"locations_allowed": ["Head Office"]}
        await db.flush()
        result = await _submit(db, org.staff.id, leave_type.id)
        assert result.kind == "single"

    async def test_position_restriction(self, db: AsyncSession, org):
        leave_type = await seed_leave_type(db, deductible=False)
        await seed_policy(
            db, leave_type.id, eligibility={"positions_allowed": [str(org.manager_position.id)]},
        )
        with pytest.raises(BadRequestException):
            await _submit(db, org.staff.id, leave_type.id)

    async def test_grade_restriction(self, db: AsyncSession, org):
        leave_type = await seed_leave_type(db, deductible=False)
        await seed_policy(db, leave_type.id, eligibility={"grade": "G7"})
        with pytest.raises(BadRequestException) as exc_info:
            await _submit(db, org.staff.id, leave_type.id)
        assert "pay grade G7" in exc_info.value.detail


class TestAttachments:

    async def test_required_but_missing(self, db: AsyncSession, org):
        leave_type = await seed_leave_type(db, requires_attachment=True, deductible=False)
        with pytest.raises(BadRequestException):
            await _submit(db, org.staff.id, leave_type.id)

    async def test_unknown_attachment(self, db: AsyncSession, org):
        leave_type = await seed_leave_type(db, deductible=False)
        with pytest.raises(NotFoundException):
            await _submit(db, org.staff.id, leave_type.id, attachment_id=uuid.uuid4())

    async def test_disallowed_mime_type(self, db: AsyncSession, org):
        leave_type = await seed_leave_type(
            db, requires_attachment=True, attachment_type="image", deductible=False,
        )
        attachment = await _attachment(db)
        with pytest.raises(BadRequestException) as exc_info:
            await _submit(db, org.staff.id, leave_type.id, attachment_id=attachment.id)
        assert "application/pdf" in exc_info.value.detail

    async def test_oversized(self, db: AsyncSession, org):
        leave_type = await seed_leave_type(db, requires_attachment=True, deductible=False)
        attachment = await _attachment(db, size_bytes=6 * 1024 * 1024)
        with pytest.raises(BadRequestException):
            await _submit(db, org.staff.id, leave_type.id, attachment_id=attachment.id)

    async def test_valid_attachment(self, db: AsyncSession, org):
        leave_type = await seed_leave_type(
            db, requires_attachment=True, attachment_type="medical", deductible=False,
        )
        attachment = await _attachment(db)
        result = await _submit(db, org.staff.id, leave_type.id, attachment_id=attachment.id)
        assert result.request.attachment_id == attachment.id


class TestNoticeAndLimits:

    async def test_minimum_notice(self, db: AsyncSession, org):
        leave_type = await _annual(db, org, min_notice_days=5)
        with pytest.raises(BadRequestException) as exc_info:
            await _submit(db, org.staff.id, leave_type.id, date(2024, 6, 5), date(2024, 6, 5))
        assert exc_info.value.detail == (
            "A minimum notice of 5 days is required. Requested start is 2 day(s) away."
        )
        result = await _submit(db, org.staff.id, leave_type.id)
        assert result.kind == "single"

    async def test_retroactive_within_grace(self, db: AsyncSession, org):
        leave_type = await _annual(db, org, min_notice_days=5)
        result = await _submit(
            db, org.staff.id, leave_type.id, date(2024, 5, 27), date(2024, 5, 28),
        )
        assert result.request.duration_days == Decimal("2")

    async def test_retroactive_beyond_grace(self, db: AsyncSession, org):
        leave_type = await _annual(db, org, min_notice_days=5)
        with pytest.raises(BadRequestException) as exc_info:
            await _submit(db, org.staff.id, leave_type.id, date(2024, 4, 1), date(2024, 4, 2))
        assert "within 30 days" in exc_info.value.detail

    async def test_max_consecutive_days(self, db: AsyncSession, org):
        leave_type = await _annual(db, org, max_consecutive_days=2)
        with pytest.raises(BadRequestException) as exc_info:
            await _submit(db, org.staff.id, leave_type.id)
        assert "consecutive" in exc_info.value.detail

    async def test_max_duration_per_request(self, db: AsyncSession, org):
        leave_type = await seed_leave_type(db, max_duration_days=2, deductible=False)
        with pytest.raises(BadRequestException):
            await _submit(db, org.staff.id, leave_type.id)

    async def test_yearly_limit(self, db: AsyncSession, org):
        leave_type = await _annual(db, org, yearly_rate=Decimal("5"))
        await _seed_request(db, org.staff.id, leave_type.id, date(2024, 3, 4), date(2024, 3, 6))
        with pytest.raises(BadRequestException) as exc_info:
            await _submit(db, org.staff.id, leave_type.id)
        assert "Yearly limit" in exc_info.value.detail

    async def test_yearly_limit_counts_only_that_year(self, db: AsyncSession, org):
        leave_type = await _annual(db, org, yearly_rate=Decimal("5"))
        await _seed_request(db, org.staff.id, leave_type.id, date(2023, 3, 6), date(2023, 3, 8))
        result = await _submit(db, org.staff.id, leave_type.id, MON, MON)
        assert result.kind == "single"


class TestOverlap:

    @pytest.mark.parametrize(
        "start,end",
        [
            (date(2024, 6, 12), date(2024, 6, 14)),  # overlaps the tail
            (date(2024, 6, 5), date(2024, 6, 10)),   # overlaps the head
            (date(2024, 6, 11), date(2024, 6, 11)),  # inside
        ],
    )
    async def test_overlap_with_pending(self, db: AsyncSession, org, start, end):
        leave_type = await _annual(db, org)
        await _submit(db, org.staff.id, leave_type.id)
        with pytest.raises(BadRequestException) as exc_info:
            await _submit(db, org.staff.id, leave_type.id, start, end)
        assert "overlaps" in exc_info.value.detail

    async def test_rejected_request_does_not_block(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        await _seed_request(
            db, org.staff.id, leave_type.id, MON, WED, status=LeaveStatus.rejected,
        )
        result = await _submit(db, org.staff.id, leave_type.id)
        assert result.kind == "single"


class TestSplit:

    async def test_split_when_balance_short(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        unpaid = await _unpaid(db)

        # Mon 10 .. Mon 17 June: six working days against a balance of four
        result = await _submit(db, org.staff.id, leave_type.id, MON, date(2024, 6, 17))

        assert result.kind == "split"
        assert result.request is None
        assert result.paid_request.leave_type_id == leave_type.id
        assert result.paid_request.duration_days == Decimal("4")
        assert result.unpaid_request.leave_type_id == unpaid.id
        assert result.unpaid_request.duration_days == Decimal("2")
        assert result.unpaid_request.justification.startswith("Unpaid portion:")

    async def test_split_sums_to_duration(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        await _unpaid(db)
        await _seed_request(db, org.staff.id, leave_type.id, date(2024, 2, 5), date(2024, 2, 5), days="1")

        result = await _submit(db, org.staff.id, leave_type.id, MON, date(2024, 6, 14))
        paid = result.paid_request.duration_days
        unpaid = result.unpaid_request.duration_days
        assert paid == Decimal("3")
        assert paid + unpaid == Decimal("5")

    async def test_no_balance_is_fully_unpaid(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        await _unpaid(db)
        result = await _submit(
            db, org.staff.id, leave_type.id,
            date(2024, 1, 29), date(2024, 1, 31), today=date(2024, 1, 20),
        )
        assert result.kind == "split"
        assert result.paid_request is None
        assert result.unpaid_request.duration_days == Decimal("3")

    async def test_split_requires_unpaid_type(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        with pytest.raises(BadRequestException):
            await _submit(db, org.staff.id, leave_type.id, MON, date(2024, 6, 17))

    async def test_non_deductible_never_splits(self, db: AsyncSession, org):
        leave_type = await seed_leave_type(db, deductible=False)
        await seed_policy(db, leave_type.id)
        result = await _submit(db, org.staff.id, leave_type.id, MON, date(2024, 6, 17))
        assert result.kind == "single"
        assert result.request.duration_days == Decimal("6")


# ═════════════════════════════════════════════════════════════════════
# Manager decision
# ═════════════════════════════════════════════════════════════════════


class TestManagerDecision:

    async def test_approval_keeps_request_pending(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        submitted = await _submit(db, org.staff.id, leave_type.id)

        request = await LeaveService.approve_leave_request(
            db, submitted.request.id, org.manager.id, LeaveStatus.approved, "Enjoy",
        )
        assert request.status == LeaveStatus.pending
        assert len(request.approval_flow) == 2
        decision = request.approval_flow[-1]
        assert decision["role"] == ApprovalRole.manager.value
        assert decision["status"] == LeaveStatus.approved.value
        assert decision["decided_by"] == str(org.manager.id)
        assert decision["decided_at"] is not None

    async def test_rejection_is_terminal_for_manager(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        submitted = await _submit(db, org.staff.id, leave_type.id)

        request = await LeaveService.approve_leave_request(
            db, submitted.request.id, org.manager.id, LeaveStatus.rejected, "Busy quarter",
        )
        assert request.status == LeaveStatus.rejected
        notifications = await NotificationService.list_for_recipient(db, org.staff.id)
        assert notifications[0].title == "Leave Request Rejected"

        with pytest.raises(BadRequestException):
            await LeaveService.approve_leave_request(
                db, submitted.request.id, org.manager.id, LeaveStatus.approved,
            )

    async def test_department_head_may_decide(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        submitted = await _submit(db, org.staff.id, leave_type.id)
        request = await LeaveService.approve_leave_request(
            db, submitted.request.id, org.director.id, LeaveStatus.approved,
        )
        assert request.approval_flow[-1]["decided_by"] == str(org.director.id)

    async def test_unauthorized_manager(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        submitted = await _submit(db, org.staff.id, leave_type.id)
        with pytest.raises(ForbiddenException):
            await LeaveService.approve_leave_request(
                db, submitted.request.id, org.hr.id, LeaveStatus.approved,
            )

    async def test_pending_is_not_a_decision(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        submitted = await _submit(db, org.staff.id, leave_type.id)
        with pytest.raises(BadRequestException):
            await LeaveService.approve_leave_request(
                db, submitted.request.id, org.manager.id, LeaveStatus.pending,
            )

    async def test_unknown_request(self, db: AsyncSession, org):
        with pytest.raises(NotFoundException):
            await LeaveService.approve_leave_request(
                db, uuid.uuid4(), org.manager.id, LeaveStatus.approved,
            )


# ═════════════════════════════════════════════════════════════════════
# HR review and finalization
# ═════════════════════════════════════════════════════════════════════


class TestHrReview:

    async def test_approval_finalizes(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        request_id = await _approved_by_manager(db, org, leave_type.id)

        result = await LeaveService.review_leave_request(
            db, request_id, org.hr.id, LeaveStatus.approved,
        )
        assert result.request.status == LeaveStatus.approved
        assert [e.role for e in result.request.approval_flow] == [
            ApprovalRole.manager, ApprovalRole.manager, ApprovalRole.hr,
        ]

        report = result.finalization
        assert report.outcome_of("entitlement") == SideEffectOutcome.succeeded
        assert report.outcome_of("notification") == SideEffectOutcome.succeeded
        assert report.outcome_of("attendance") == SideEffectOutcome.succeeded
        assert report.outcome_of("payroll") == SideEffectOutcome.skipped

        entitlement = await EntitlementLedger.get_entitlement(db, org.staff.id, leave_type.id)
        assert entitlement.taken == Decimal("3")
        assert entitlement.remaining == Decimal("17")

    async def test_attendance_blocked_for_each_working_day(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        # An existing record for the first day is reused, not duplicated
        await AttendanceService.create_attendance_record(db, org.staff.id, MON)
        request_id = await _approved_by_manager(db, org, leave_type.id)

        await LeaveService.review_leave_request(db, request_id, org.hr.id, LeaveStatus.approved)

        records = (
            await db.execute(
                select(AttendanceRecord).where(AttendanceRecord.employee_id == org.staff.id)
            )
        ).scalars().all()
        exceptions = (
            await db.execute(
                select(TimeException).where(TimeException.employee_id == org.staff.id)
            )
        ).scalars().all()
        assert sorted(r.attendance_date for r in records) == [
            date(2024, 6, 10), date(2024, 6, 11), date(2024, 6, 12),
        ]
        assert len(exceptions) == 3

    async def test_hr_may_overturn_manager_rejection(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        submitted = await _submit(db, org.staff.id, leave_type.id)
        await LeaveService.approve_leave_request(
            db, submitted.request.id, org.manager.id, LeaveStatus.rejected,
        )
        result = await LeaveService.review_leave_request(
            db, submitted.request.id, org.hr.id, LeaveStatus.approved,
        )
        assert result.request.status == LeaveStatus.approved

    async def test_second_review_rejected(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        request_id = await _approved_by_manager(db, org, leave_type.id)
        await LeaveService.review_leave_request(db, request_id, org.hr.id, LeaveStatus.rejected)
        with pytest.raises(BadRequestException):
            await LeaveService.review_leave_request(db, request_id, org.hr.id, LeaveStatus.approved)

    async def test_hr_rejection_does_not_finalize(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        request_id = await _approved_by_manager(db, org, leave_type.id)
        result = await LeaveService.review_leave_request(
            db, request_id, org.hr.id, LeaveStatus.rejected, reason="Coverage gap",
        )
        assert result.request.status == LeaveStatus.rejected
        assert result.finalization is None
        entitlement = await EntitlementLedger.get_entitlement(db, org.staff.id, leave_type.id)
        assert entitlement.taken == Decimal("0")

    async def test_insufficient_balance_needs_override(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        request_id = await _approved_by_manager(db, org, leave_type.id)

        # Nothing accrues on a yearly policy, so the balance is now zero
        policy = await PolicyStore.get_policy(db, leave_type.id)
        policy.accrual_method = AccrualMethod.yearly
        await db.flush()

        with pytest.raises(BadRequestException) as exc_info:
            await LeaveService.review_leave_request(db, request_id, org.hr.id, LeaveStatus.approved)
        assert "Insufficient" in exc_info.value.detail

        # A decision comment is not an override
        with pytest.raises(BadRequestException):
            await LeaveService.review_leave_request(
                db, request_id, org.hr.id, LeaveStatus.approved, reason="Looks fine",
            )

        result = await LeaveService.review_leave_request(
            db, request_id, org.hr.id, LeaveStatus.approved, "Approved by director",
        )
        assert result.request.status == LeaveStatus.approved
        assert result.request.approval_flow[-1].reason == "Approved by director"


class TestFinalization:

    async def test_failing_notifier_is_isolated(self, db: AsyncSession, org, monkeypatch):
        async def _boom(*args, **kwargs):
            raise RuntimeError("mail relay down")

        monkeypatch.setattr("backend.leave.service.notify_leave_approved", _boom)

        leave_type = await _annual(db, org)
        request_id = await _approved_by_manager(db, org, leave_type.id)
        result = await LeaveService.review_leave_request(
            db, request_id, org.hr.id, LeaveStatus.approved,
        )

        report = result.finalization
        assert report.outcome_of("notification") == SideEffectOutcome.failed
        failed = next(e for e in report.effects if e.name == "notification")
        assert failed.detail == "mail relay down"
        assert report.outcome_of("entitlement") == SideEffectOutcome.succeeded
        assert report.outcome_of("attendance") == SideEffectOutcome.succeeded

        entitlement = await EntitlementLedger.get_entitlement(db, org.staff.id, leave_type.id)
        assert entitlement.taken == Decimal("3")

    async def test_attendance_write_failure_rolls_back_only_that_effect(
        self, db: AsyncSession, org, monkeypatch,
    ):
        leave_type = await _annual(db, org)
        request_id = await _approved_by_manager(db, org, leave_type.id)
        # Another writer already holds the record for the last day
        await AttendanceService.create_attendance_record(db, org.staff.id, WED)

        async def _missing(*args, **kwargs):
            return None

        monkeypatch.setattr(
            AttendanceService, "get_attendance_record", staticmethod(_missing),
        )

        result = await LeaveService.review_leave_request(
            db, request_id, org.hr.id, LeaveStatus.approved,
        )
        report = result.finalization
        assert report.outcome_of("attendance") == SideEffectOutcome.failed
        assert report.outcome_of("notification") == SideEffectOutcome.succeeded
        assert report.outcome_of("entitlement") == SideEffectOutcome.succeeded

        await db.commit()

        entitlement = await EntitlementLedger.get_entitlement(db, org.staff.id, leave_type.id)
        await db.refresh(entitlement)
        assert entitlement.taken == Decimal("3")
        assert entitlement.remaining == Decimal("17")

        leave_request = await db.get(LeaveRequest, request_id)
        await db.refresh(leave_request)
        assert leave_request.status == LeaveStatus.approved

        # Monday and Tuesday rows written before the conflict are discarded
        records = (
            await db.execute(
                select(AttendanceRecord).where(AttendanceRecord.employee_id == org.staff.id)
            )
        ).scalars().all()
        assert [r.attendance_date for r in records] == [WED]
        exceptions = (
            await db.execute(
                select(TimeException).where(TimeException.employee_id == org.staff.id)
            )
        ).scalars().all()
        assert exceptions == []

    async def test_finalization_adjustment_recorded(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        request_id = await _approved_by_manager(db, org, leave_type.id)
        await LeaveService.review_leave_request(db, request_id, org.hr.id, LeaveStatus.approved)

        adjustment = (
            await db.execute(
                select(LeaveAdjustment).where(
                    LeaveAdjustment.adjustment_type == AdjustmentType.finalization,
                )
            )
        ).scalars().one()
        assert adjustment.amount == Decimal("-3")
        assert adjustment.previous_value == Decimal("20")
        assert adjustment.new_value == Decimal("17")

    async def test_unpaid_leave_penalty(self, db: AsyncSession, org):
        grade = PayGrade(id=uuid.uuid4(), grade="G3", base_salary=Decimal("4400"))
        db.add(grade)
        await db.flush()
        org.staff.pay_grade_id = grade.id
        await db.flush()

        unpaid = await _unpaid(db)
        submitted = await _submit(db, org.staff.id, unpaid.id, MON, date(2024, 6, 11))
        await LeaveService.approve_leave_request(
            db, submitted.request.id, org.manager.id, LeaveStatus.approved,
        )
        result = await LeaveService.review_leave_request(
            db, submitted.request.id, org.hr.id, LeaveStatus.approved,
        )
        assert result.finalization.outcome_of("payroll") == SideEffectOutcome.succeeded

        penalties = await PayrollService.get_penalties(db, org.staff.id)
        assert len(penalties) == 1
        # 2 days at 4400 / 22 per day
        assert penalties[0]["amount"] == "400.00"
        assert penalties[0]["reference_id"] == str(submitted.request.id)

    async def test_unpaid_leave_without_pay_grade(self, db: AsyncSession, org):
        unpaid = await _unpaid(db)
        submitted = await _submit(db, org.staff.id, unpaid.id, MON, date(2024, 6, 11))
        result = await LeaveService.review_leave_request(
            db, submitted.request.id, org.hr.id, LeaveStatus.approved,
        )
        assert result.finalization.outcome_of("payroll") == SideEffectOutcome.skipped
        assert await PayrollService.get_penalties(db, org.staff.id) == []


# ═════════════════════════════════════════════════════════════════════
# Escalation
# ═════════════════════════════════════════════════════════════════════


class TestEscalation:

    async def test_stale_request_escalated_to_skip_level(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        submitted = await _submit(db, org.staff.id, leave_type.id)

        later = datetime.now(timezone.utc) + timedelta(hours=49)
        assert await LeaveService.check_auto_escalation(db, now=later) == 1

        notifications = await NotificationService.list_for_recipient(db, org.director.id)
        assert [n.title for n in notifications] == ["Leave Request Escalated"]
        assert notifications[0].entity_id == submitted.request.id

    async def test_fresh_request_not_escalated(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        await _submit(db, org.staff.id, leave_type.id)
        assert await LeaveService.check_auto_escalation(db) == 0

    async def test_manager_decision_stops_escalation(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        await _approved_by_manager(db, org, leave_type.id)
        later = datetime.now(timezone.utc) + timedelta(hours=49)
        assert await LeaveService.check_auto_escalation(db, now=later) == 0

    async def test_no_skip_level_manager(self, db: AsyncSession, org):
        leave_type = await seed_leave_type(db, deductible=False)
        # The manager reports to the director, who has nobody above
        await _submit(db, org.manager.id, leave_type.id)
        later = datetime.now(timezone.utc) + timedelta(hours=49)
        assert await LeaveService.check_auto_escalation(db, now=later) == 0


# ═════════════════════════════════════════════════════════════════════
# Retroactive deduction
# ═════════════════════════════════════════════════════════════════════


class TestRetroactiveDeduction:

    async def test_deduction_is_approved_and_finalized(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        result = await LeaveService.apply_retroactive_deduction(
            db, org.staff.id, leave_type.id, "2024-05-06", "2024-05-08",
            "Unrecorded absence", actor_id=org.hr.id,
        )
        assert result.request.status == LeaveStatus.approved
        assert result.request.duration_days == Decimal("3")
        assert result.request.approval_flow[0].role == ApprovalRole.hr_system
        assert result.finalization.outcome_of("entitlement") == SideEffectOutcome.succeeded

        entitlement = await EntitlementLedger.get_entitlement(db, org.staff.id, leave_type.id)
        assert entitlement.taken == Decimal("3")

        kinds = {
            a.adjustment_type
            for a in (
                await db.execute(
                    select(LeaveAdjustment).where(LeaveAdjustment.employee_id == org.staff.id)
                )
            ).scalars().all()
        }
        assert AdjustmentType.retroactive_deduction in kinds
        assert AdjustmentType.finalization in kinds

    async def test_unparseable_date(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        with pytest.raises(InternalServerException) as exc_info:
            await LeaveService.apply_retroactive_deduction(
                db, org.staff.id, leave_type.id, "2024-13-01", "2024-05-08", "Typo",
            )
        assert exc_info.value.detail.startswith("Retroactive deduction failed:")

    async def test_inverted_range(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        with pytest.raises(BadRequestException):
            await LeaveService.apply_retroactive_deduction(
                db, org.staff.id, leave_type.id, "2024-05-08", "2024-05-06", "Typo",
            )


# ═════════════════════════════════════════════════════════════════════
# Read paths
# ═════════════════════════════════════════════════════════════════════


class TestReadPaths:

    async def test_list_by_status(self, db: AsyncSession, org):
        leave_type = await _annual(db, org)
        await _submit(db, org.staff.id, leave_type.id)
        await _seed_request(
            db, org.staff.id, leave_type.id, date(2024, 2, 5), date(2024, 2, 5),
            days="1", status=LeaveStatus.rejected,
        )

        everything = await LeaveService.list_leave_requests(db, org.staff.id)
        pending = await LeaveService.list_leave_requests(db, org.staff.id, LeaveStatus.pending)
        assert len(everything) == 2
        assert [r.from_date for r in pending] == [MON]
