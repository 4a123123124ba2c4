"""Enums and constants for the leave subsystem — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Employee / Core HR ──────────────────────────────────────────────

class EmploymentStatus(str, enum.Enum):
    active = "active"
    notice_period = "notice_period"
    relieved = "relieved"
    absconding = "absconding"


class ContractType(str, enum.Enum):
    full_time_permanent = "full_time_permanent"
    part_time_permanent = "part_time_permanent"
    full_time_contract = "full_time_contract"
    part_time_contract = "part_time_contract"
    internship = "internship"


class EmployeeType(str, enum.Enum):
    permanent = "permanent"
    contract = "contract"


# Contract types without an entry here cannot accrue leave.
CONTRACT_TO_EMPLOYEE_TYPE: dict[ContractType, EmployeeType] = {
    ContractType.full_time_permanent: EmployeeType.permanent,
    ContractType.part_time_permanent: EmployeeType.permanent,
    ContractType.full_time_contract: EmployeeType.contract,
    ContractType.part_time_contract: EmployeeType.contract,
}


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr_admin = "hr_admin"
    system_admin = "system_admin"


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class ApprovalRole(str, enum.Enum):
    manager = "manager"
    hr = "hr"
    hr_system = "hr_system"


class AccrualMethod(str, enum.Enum):
    monthly = "monthly"
    yearly = "yearly"
    per_term = "per_term"


class RoundingRule(str, enum.Enum):
    none = "none"
    round = "round"
    round_up = "round_up"
    round_down = "round_down"


class ResetDateType(str, enum.Enum):
    annual = "annual"
    quarterly = "quarterly"
    monthly = "monthly"


RESET_EXPIRY_MONTHS: dict[ResetDateType, int] = {
    ResetDateType.annual: 12,
    ResetDateType.quarterly: 3,
    ResetDateType.monthly: 1,
}

# Accepted spellings for the accrual frequency in policy configuration.
ACCRUAL_METHOD_ALIASES: dict[str, AccrualMethod] = {
    "monthly": AccrualMethod.monthly,
    "yearly": AccrualMethod.yearly,
    "annually": AccrualMethod.yearly,
    "per_term": AccrualMethod.per_term,
    "quarterly": AccrualMethod.per_term,
}


class DelegationStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"


class AdjustmentType(str, enum.Enum):
    personalized_entitlement = "personalized_entitlement"
    retroactive_deduction = "retroactive_deduction"
    finalization = "finalization"


class SideEffectOutcome(str, enum.Enum):
    succeeded = "succeeded"
    failed = "failed"
    skipped = "skipped"


ATTACHMENT_MIME_TYPES: dict[str, list[str]] = {
    "medical": ["application/pdf", "image/jpeg", "image/png"],
    "document": [
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ],
    "image": ["image/jpeg", "image/png"],
}
DEFAULT_ATTACHMENT_MIME_TYPES = ["application/pdf", "image/jpeg", "image/png"]


# ── Attendance / Time management ────────────────────────────────────

class AttendanceStatus(str, enum.Enum):
    present = "present"
    absent = "absent"
    half_day = "half_day"
    weekend = "weekend"
    holiday = "holiday"
    on_leave = "on_leave"


class TimeExceptionType(str, enum.Enum):
    manual_adjustment = "manual_adjustment"


# ── Payroll ─────────────────────────────────────────────────────────

class PenaltyType(str, enum.Enum):
    unpaid_leave = "unpaid_leave"


# ── Notifications ───────────────────────────────────────────────────

class NotificationType(str, enum.Enum):
    info = "info"
    action_required = "action_required"
    approval = "approval"
    reminder = "reminder"
    alert = "alert"


# ── Role-based permissions ──────────────────────────────────────────

PERMISSIONS: dict[UserRole, list[str]] = {
    UserRole.employee: [
        "leave:request",
        "leave:read_own",
        "delegation:respond",
    ],
    UserRole.manager: [
        "leave:request",
        "leave:read_own",
        "leave:approve",
        "leave:reject",
        "delegation:manage",
        "delegation:respond",
    ],
    UserRole.hr_admin: [
        "leave:read_all",
        "leave:approve",
        "leave:reject",
        "leave:review",
        "leave:configure",
        "leave:adjust",
        "calendar:configure",
        "delegation:manage",
    ],
    UserRole.system_admin: [
        "leave:read_all",
        "leave:approve",
        "leave:reject",
        "leave:review",
        "leave:configure",
        "leave:adjust",
        "calendar:configure",
        "delegation:manage",
        "delegation:purge",
        "system:configure",
    ],
}
