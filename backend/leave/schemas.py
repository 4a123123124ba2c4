"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Out / *Result      → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from backend.common.constants import (
    AccrualMethod,
    ApprovalRole,
    ContractType,
    DelegationStatus,
    LeaveStatus,
    ResetDateType,
    RoundingRule,
    SideEffectOutcome,
)


# ═════════════════════════════════════════════════════════════════════
# Categories / Types
# ═════════════════════════════════════════════════════════════════════


class LeaveCategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None


class LeaveCategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: Optional[str] = None


class LeaveTypeCreate(BaseModel):
    """Payload for defining a leave type."""

    code: str = Field(..., min_length=1, max_length=30)
    name: str = Field(..., min_length=1, max_length=100)
    category_id: uuid.UUID
    description: Optional[str] = None
    paid: bool = True
    deductible: bool = True
    requires_attachment: bool = False
    attachment_type: Optional[str] = None
    min_tenure_months: Optional[int] = Field(None, ge=0)
    max_duration_days: Optional[int] = Field(None, gt=0)
    payroll_code: Optional[str] = None


class LeaveTypeUpdate(BaseModel):
    """Partial update — ``code`` is immutable and therefore absent."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    category_id: Optional[uuid.UUID] = None
    description: Optional[str] = None
    paid: Optional[bool] = None
    deductible: Optional[bool] = None
    requires_attachment: Optional[bool] = None
    attachment_type: Optional[str] = None
    min_tenure_months: Optional[int] = Field(None, ge=0)
    max_duration_days: Optional[int] = Field(None, gt=0)
    payroll_code: Optional[str] = None
    is_active: Optional[bool] = None


class LeaveTypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    code: str
    name: str
    category_id: uuid.UUID
    description: Optional[str] = None
    paid: bool
    deductible: bool
    requires_attachment: bool
    attachment_type: Optional[str] = None
    min_tenure_months: Optional[int] = None
    max_duration_days: Optional[int] = None
    payroll_code: Optional[str] = None
    is_active: bool = True


# ═════════════════════════════════════════════════════════════════════
# Policy
# ═════════════════════════════════════════════════════════════════════


class EligibilityCriteria(BaseModel):
    """Who may take a leave type. Absent lists mean no restriction."""

    min_tenure_months: Optional[int] = Field(None, ge=0)
    contract_types_allowed: Optional[list[ContractType]] = None
    grade: Optional[str] = None
    positions_allowed: Optional[list[uuid.UUID]] = None
    locations_allowed: Optional[list[str]] = None


class EntitlementRuleCreate(BaseModel):
    days_per_year: Decimal = Field(..., ge=0)
    eligibility: EligibilityCriteria = Field(default_factory=EligibilityCriteria)
    min_notice_days: int = Field(0, ge=0)
    max_consecutive_days: Optional[int] = Field(None, gt=0)


class LeavePolicyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    leave_type_id: uuid.UUID
    eligibility: EligibilityCriteria
    yearly_rate: Decimal
    accrual_method: AccrualMethod
    accrual_rate: Optional[Decimal] = None
    carry_forward_allowed: bool
    max_carry_forward: Decimal
    expiry_after_months: Optional[int] = None
    rounding_rule: RoundingRule
    min_notice_days: int
    max_consecutive_days: Optional[int] = None
    pause_accrual_during_unpaid: bool

    @field_validator("eligibility", mode="before")
    @classmethod
    def _empty_eligibility(cls, v):
        return v or {}


class AccrualPolicyRequest(BaseModel):
    """Accrual configuration for one leave type evaluated for one employee."""

    accrual_rate: Decimal = Field(..., ge=0)
    accrual_frequency: str = Field("monthly", description="monthly | yearly | per_term")
    max_carry_forward: Decimal = Field(Decimal("0"), ge=0)
    reset_date_type: ResetDateType = ResetDateType.annual
    rounding_rule: RoundingRule = RoundingRule.none
    pause_accrual_during_unpaid: bool = True


class AccrualPolicyResult(BaseModel):
    policy: LeavePolicyOut
    employee_id: uuid.UUID
    effective_rate: Decimal
    pre_rounded_accrual: Decimal
    accrued_leave: Decimal


class ApprovalStep(BaseModel):
    role: ApprovalRole
    level: int = Field(..., ge=1)


class ApprovalWorkflowRequest(BaseModel):
    steps: list[ApprovalStep] = Field(..., min_length=1)
    payroll_code: Optional[str] = None


class ApprovalWorkflowOut(BaseModel):
    leave_type_id: uuid.UUID
    steps: list[ApprovalStep]
    payroll_code: Optional[str] = None


# ═════════════════════════════════════════════════════════════════════
# Entitlements
# ═════════════════════════════════════════════════════════════════════


class PersonalizedEntitlementRequest(BaseModel):
    leave_type: str = Field(..., description="Leave type id or code")
    yearly_entitlement: Decimal = Field(..., ge=0)
    reason: Optional[str] = None


class GroupEntitlementRequest(BaseModel):
    """Target one employee, an explicit list, or everyone matching criteria."""

    leave_type: str
    yearly_entitlement: Decimal = Field(..., ge=0)
    reason: Optional[str] = None
    employee_id: Optional[uuid.UUID] = None
    employee_ids: Optional[list[uuid.UUID]] = None
    department_ids: Optional[list[uuid.UUID]] = None
    position_ids: Optional[list[uuid.UUID]] = None
    locations: Optional[list[str]] = None
    contract_types: Optional[list[ContractType]] = None


class GroupEntitlementResult(BaseModel):
    count: int
    employee_ids: list[uuid.UUID]


class LeaveEntitlementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    yearly_entitlement: Decimal
    taken: Decimal
    remaining: Decimal
    pending: Decimal
    reason: Optional[str] = None


class LeaveBalanceOut(BaseModel):
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    balance: Decimal


# ═════════════════════════════════════════════════════════════════════
# Calendar
# ═════════════════════════════════════════════════════════════════════


class HolidayCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    holiday_date: date
    is_recurring: bool = False
    type: Optional[str] = None
    region: Optional[str] = None


class BlockedPeriodCreate(BaseModel):
    name: Optional[str] = None
    from_date: date
    to_date: date
    reason: Optional[str] = None

    @model_validator(mode="after")
    def validate_dates(self) -> "BlockedPeriodCreate":
        if self.from_date > self.to_date:
            raise ValueError("from_date must be on or before to_date.")
        return self


class CalendarHolidayOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    holiday_date: date
    is_recurring: bool
    holiday_type: Optional[str] = None
    region: Optional[str] = None


class BlockedPeriodOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    from_date: date
    to_date: date
    reason: Optional[str] = None


class LeaveCalendarOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    year: int
    holidays: list[CalendarHolidayOut] = []
    blocked_periods: list[BlockedPeriodOut] = []


class NetDurationOut(BaseModel):
    from_date: date
    to_date: date
    net_days: int


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for submitting a leave request."""

    leave_type_id: uuid.UUID
    from_date: date = Field(..., description="Leave start date (inclusive)")
    to_date: date = Field(..., description="Leave end date (inclusive)")
    justification: Optional[str] = Field(None, max_length=1000)
    attachment_id: Optional[uuid.UUID] = None


class ApprovalEntry(BaseModel):
    role: ApprovalRole
    status: LeaveStatus
    approver_id: Optional[uuid.UUID] = None
    decided_by: Optional[uuid.UUID] = None
    decided_at: Optional[datetime] = None
    reason: Optional[str] = None


class LeaveRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    from_date: date
    to_date: date
    duration_days: Decimal
    justification: Optional[str] = None
    attachment_id: Optional[uuid.UUID] = None
    status: LeaveStatus
    approval_flow: list[ApprovalEntry] = []
    created_at: datetime
    updated_at: datetime


class LeaveSubmissionResult(BaseModel):
    """Either one request, or a paid/unpaid split when the balance ran short."""

    kind: Literal["single", "split"]
    request: Optional[LeaveRequestOut] = None
    paid_request: Optional[LeaveRequestOut] = None
    unpaid_request: Optional[LeaveRequestOut] = None


class LeaveDecisionRequest(BaseModel):
    status: LeaveStatus
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator("status")
    @classmethod
    def _decisive(cls, v: LeaveStatus) -> LeaveStatus:
        if v == LeaveStatus.pending:
            raise ValueError("status must be approved or rejected.")
        return v


class HrReviewRequest(LeaveDecisionRequest):
    override_reason: Optional[str] = Field(None, max_length=500)


class SideEffectResult(BaseModel):
    name: str
    outcome: SideEffectOutcome
    detail: Optional[str] = None


class FinalizationReport(BaseModel):
    request_id: uuid.UUID
    effects: list[SideEffectResult] = []

    def outcome_of(self, name: str) -> Optional[SideEffectOutcome]:
        for effect in self.effects:
            if effect.name == name:
                return effect.outcome
        return None


class LeaveReviewResult(BaseModel):
    request: LeaveRequestOut
    finalization: Optional[FinalizationReport] = None


class EscalationResult(BaseModel):
    escalated: int


class RetroactiveDeductionRequest(BaseModel):
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    from_date: str = Field(..., description="ISO date, YYYY-MM-DD")
    to_date: str = Field(..., description="ISO date, YYYY-MM-DD")
    reason: str = Field(..., min_length=1, max_length=500)


# ═════════════════════════════════════════════════════════════════════
# Delegation
# ═════════════════════════════════════════════════════════════════════


class DelegationCreate(BaseModel):
    delegate_id: uuid.UUID
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class DelegationRespond(BaseModel):
    manager_id: uuid.UUID


class DelegationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    manager_id: uuid.UUID
    delegate_id: uuid.UUID
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: bool
    status: DelegationStatus


class DelegationStatusOut(BaseModel):
    manager_id: uuid.UUID
    active: bool
    delegation: Optional[DelegationOut] = None


class PurgeResult(BaseModel):
    purged: int
