"""Leave router — policy configuration, calendar, entitlements, requests and
delegations.

Configuration endpoints require hr_admin or system_admin. Everything else
only needs an authenticated employee; decisions are gated by permission.
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.dependencies import (
    effective_permissions,
    get_current_user,
    require_permission,
    require_role,
)
from backend.common.constants import LeaveStatus, UserRole
from backend.common.exceptions import ForbiddenException
from backend.common.pagination import PaginatedResponse, PaginationParams, paginate
from backend.core_hr.models import Employee
from backend.database import get_db
from backend.leave.accrual import AccrualCalculator
from backend.leave.calendar import CalendarEngine
from backend.leave.delegation import DelegationResolver
from backend.leave.entitlement import EntitlementLedger
from backend.leave.models import LeaveRequest
from backend.leave.policy import PolicyStore
from backend.leave.schemas import (
    AccrualPolicyRequest,
    AccrualPolicyResult,
    ApprovalWorkflowOut,
    ApprovalWorkflowRequest,
    BlockedPeriodCreate,
    DelegationCreate,
    DelegationOut,
    DelegationRespond,
    DelegationStatusOut,
    EntitlementRuleCreate,
    EscalationResult,
    GroupEntitlementRequest,
    GroupEntitlementResult,
    HolidayCreate,
    HrReviewRequest,
    LeaveBalanceOut,
    LeaveCalendarOut,
    LeaveCategoryCreate,
    LeaveCategoryOut,
    LeaveDecisionRequest,
    LeaveEntitlementOut,
    LeavePolicyOut,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveReviewResult,
    LeaveSubmissionResult,
    LeaveTypeCreate,
    LeaveTypeOut,
    LeaveTypeUpdate,
    NetDurationOut,
    PersonalizedEntitlementRequest,
    PurgeResult,
    RetroactiveDeductionRequest,
)
from backend.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])

_admin_dep = require_role(UserRole.system_admin, UserRole.hr_admin)


# ═══════════════════════════════════════════════════════════════════
# POLICY STORE
# ═══════════════════════════════════════════════════════════════════

@router.post("/categories", response_model=LeaveCategoryOut, status_code=201)
async def create_leave_category(
    body: LeaveCategoryCreate,
    user: Employee = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    return await PolicyStore.create_leave_category(db, body, actor_id=user.id)


@router.get("/types", response_model=list[LeaveTypeOut])
async def list_leave_types(
    _user: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Active leave types."""
    return await PolicyStore.list_leave_types(db)


@router.post("/types", response_model=LeaveTypeOut, status_code=201)
async def create_leave_type(
    body: LeaveTypeCreate,
    user: Employee = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    return await PolicyStore.create_leave_type(db, body, actor_id=user.id)


@router.patch("/types/{leave_type_id}", response_model=LeaveTypeOut)
async def update_leave_type(
    leave_type_id: uuid.UUID,
    body: LeaveTypeUpdate,
    user: Employee = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    """Partial update; the leave type code cannot be changed."""
    return await PolicyStore.update_leave_type(db, leave_type_id, body, actor_id=user.id)


@router.put("/types/{leave_type_id}/entitlement-rule", response_model=LeavePolicyOut)
async def set_entitlement_rule(
    leave_type_id: uuid.UUID,
    body: EntitlementRuleCreate,
    user: Employee = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    return await PolicyStore.set_entitlement_rule(db, leave_type_id, body, actor_id=user.id)


@router.put("/types/{leave_type_id}/accrual-policy", response_model=AccrualPolicyResult)
async def configure_accrual_policy(
    leave_type_id: uuid.UUID,
    body: AccrualPolicyRequest,
    employee: str = Query(..., description="Employee id or employee code"),
    months_worked: int = Query(..., ge=0),
    _user: Employee = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    """Store the accrual settings and preview the accrual for one employee."""
    return await AccrualCalculator.configure_accrual_policy(
        db, employee, leave_type_id, months_worked, body,
    )


@router.put("/types/{leave_type_id}/workflow", response_model=ApprovalWorkflowOut)
async def configure_approval_workflow(
    leave_type_id: uuid.UUID,
    body: ApprovalWorkflowRequest,
    user: Employee = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    return await PolicyStore.configure_approval_workflow(db, leave_type_id, body, actor_id=user.id)


@router.get("/types/{leave_type_id}/workflow", response_model=ApprovalWorkflowOut)
async def get_approval_workflow(
    leave_type_id: uuid.UUID,
    _user: Employee = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    return await PolicyStore.get_approval_workflow(db, leave_type_id)


# ═══════════════════════════════════════════════════════════════════
# ENTITLEMENTS
# ═══════════════════════════════════════════════════════════════════

@router.patch("/entitlements/{employee_id}", response_model=LeaveEntitlementOut)
async def set_personalized_entitlement(
    employee_id: uuid.UUID,
    body: PersonalizedEntitlementRequest,
    user: Employee = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    return await EntitlementLedger.set_personalized_entitlement(
        db, employee_id, body.leave_type, body.yearly_entitlement, body.reason,
        actor_id=user.id,
    )


@router.post("/entitlements/group", response_model=GroupEntitlementResult)
async def set_group_entitlement(
    body: GroupEntitlementRequest,
    user: Employee = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    return await EntitlementLedger.set_personalized_entitlement_for_group(
        db, body, actor_id=user.id,
    )


@router.get("/balance/{leave_type_id}", response_model=LeaveBalanceOut)
async def get_my_balance(
    leave_type_id: uuid.UUID,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Accrued minus approved days for the authenticated employee."""
    balance = await EntitlementLedger.get_leave_balance(db, employee.id, leave_type_id)
    return LeaveBalanceOut(employee_id=employee.id, leave_type_id=leave_type_id, balance=balance)


# ═══════════════════════════════════════════════════════════════════
# CALENDAR
# ═══════════════════════════════════════════════════════════════════

@router.post("/calendar/{year}/holidays", response_model=LeaveCalendarOut, status_code=201)
async def add_holiday(
    year: int,
    body: HolidayCreate,
    _user: Employee = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    return await CalendarEngine.add_holiday(db, year, body)


@router.post("/calendar/{year}/blocked-periods", response_model=LeaveCalendarOut, status_code=201)
async def add_blocked_period(
    year: int,
    body: BlockedPeriodCreate,
    _user: Employee = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    return await CalendarEngine.add_blocked_period(db, year, body)


@router.get("/calendar/{year}", response_model=LeaveCalendarOut)
async def get_calendar(
    year: int,
    _user: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await CalendarEngine.get_calendar(db, year)


@router.get("/net-duration", response_model=NetDurationOut)
async def net_leave_duration(
    from_date: date = Query(...),
    to_date: date = Query(...),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Working days in the range; fails when it touches a blocked period."""
    net_days = await CalendarEngine.calculate_net_leave_duration(
        db, from_date, to_date, from_date.year, employee.id,
    )
    return NetDurationOut(from_date=from_date, to_date=to_date, net_days=net_days)


# ═══════════════════════════════════════════════════════════════════
# REQUESTS
# ═══════════════════════════════════════════════════════════════════

@router.post("/requests", response_model=LeaveSubmissionResult, status_code=201)
async def submit_leave_request(
    body: LeaveRequestCreate,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.submit_leave_request(
        db,
        employee.id,
        body.leave_type_id,
        body.from_date,
        body.to_date,
        body.justification,
        body.attachment_id,
    )


@router.get("/requests/mine", response_model=PaginatedResponse[LeaveRequestOut])
async def my_leave_requests(
    status: Optional[LeaveStatus] = Query(None),
    params: PaginationParams = Depends(),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    rows, meta = await paginate(
        db, LeaveService.leave_requests_query(employee.id, status), params, model=LeaveRequest,
    )
    return PaginatedResponse[LeaveRequestOut](
        data=[LeaveRequestOut.model_validate(r) for r in rows], meta=meta,
    )


@router.get("/requests", response_model=PaginatedResponse[LeaveRequestOut])
async def all_leave_requests(
    status: Optional[LeaveStatus] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    params: PaginationParams = Depends(),
    _user: Employee = Depends(require_permission("leave:read_all")),
    db: AsyncSession = Depends(get_db),
):
    rows, meta = await paginate(
        db, LeaveService.leave_requests_query(employee_id, status), params, model=LeaveRequest,
    )
    return PaginatedResponse[LeaveRequestOut](
        data=[LeaveRequestOut.model_validate(r) for r in rows], meta=meta,
    )


@router.get("/requests/{request_id}", response_model=LeaveRequestOut)
async def get_leave_request(
    request_id: uuid.UUID,
    request: Request,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    leave_request = await LeaveService.get_leave_request(db, request_id)
    if (
        leave_request.employee_id != employee.id
        and "leave:read_all" not in effective_permissions(request.state.user_role)
    ):
        raise ForbiddenException(detail="You may only view your own leave requests.")
    return leave_request


@router.post("/requests/{request_id}/manager-decision", response_model=LeaveRequestOut)
async def manager_decision(
    request_id: uuid.UUID,
    body: LeaveDecisionRequest,
    manager: Employee = Depends(require_permission("leave:approve")),
    db: AsyncSession = Depends(get_db),
):
    """Manager approval keeps the request pending until HR reviews it."""
    return await LeaveService.approve_leave_request(
        db, request_id, manager.id, body.status, body.reason,
    )


@router.post("/requests/{request_id}/hr-review", response_model=LeaveReviewResult)
async def hr_review(
    request_id: uuid.UUID,
    body: HrReviewRequest,
    hr: Employee = Depends(require_permission("leave:review")),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.review_leave_request(
        db, request_id, hr.id, body.status,
        override_reason=body.override_reason, reason=body.reason,
    )


@router.post("/retroactive-deductions", response_model=LeaveReviewResult, status_code=201)
async def retroactive_deduction(
    body: RetroactiveDeductionRequest,
    user: Employee = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.apply_retroactive_deduction(
        db,
        body.employee_id,
        body.leave_type_id,
        body.from_date,
        body.to_date,
        body.reason,
        actor_id=user.id,
    )


@router.post("/escalations/check", response_model=EscalationResult)
async def check_escalations(
    _user: Employee = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    escalated = await LeaveService.check_auto_escalation(db)
    return EscalationResult(escalated=escalated)


# ═══════════════════════════════════════════════════════════════════
# DELEGATIONS
# ═══════════════════════════════════════════════════════════════════

@router.put("/delegations", response_model=DelegationOut)
async def set_delegation(
    body: DelegationCreate,
    manager: Employee = Depends(require_permission("delegation:manage")),
    db: AsyncSession = Depends(get_db),
):
    """Hand the authenticated manager's approvals to ``delegate_id``."""
    return await DelegationResolver.set_delegation(
        db, manager.id, body.delegate_id, body.start_date, body.end_date,
    )


@router.delete("/delegations", response_model=DelegationOut)
async def revoke_delegation(
    manager: Employee = Depends(require_permission("delegation:manage")),
    db: AsyncSession = Depends(get_db),
):
    return await DelegationResolver.revoke_delegation(db, manager.id)


@router.post("/delegations/accept", response_model=DelegationOut)
async def accept_delegation(
    body: DelegationRespond,
    delegate: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await DelegationResolver.accept_delegation(db, body.manager_id, delegate.id)


@router.post("/delegations/reject", response_model=DelegationOut)
async def reject_delegation(
    body: DelegationRespond,
    delegate: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await DelegationResolver.reject_delegation(db, body.manager_id, delegate.id)


@router.get("/delegations/status", response_model=DelegationStatusOut)
async def delegation_status(
    manager: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await DelegationResolver.get_delegation_status(db, manager.id)


@router.post("/delegations/purge", response_model=PurgeResult)
async def purge_delegations(
    _user: Employee = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    purged = await DelegationResolver.purge_expired_delegations(db)
    return PurgeResult(purged=purged)
