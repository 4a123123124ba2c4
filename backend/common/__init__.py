"""Common module — audit, enums, errors, logging and pagination shared by
every leave sub-module."""

from backend.common.audit import AuditTrail, create_audit_entry, list_audit_entries
from backend.common.constants import (
    PERMISSIONS,
    ApprovalRole,
    DelegationStatus,
    LeaveStatus,
    NotificationType,
    UserRole,
)
from backend.common.exceptions import (
    AppException,
    BadRequestException,
    ConflictError,
    ForbiddenException,
    InternalServerException,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)
from backend.common.logging import setup_logging
from backend.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    "list_audit_entries",
    # Constants / Enums
    "ApprovalRole",
    "DelegationStatus",
    "LeaveStatus",
    "NotificationType",
    "UserRole",
    "PERMISSIONS",
    # Exceptions
    "AppException",
    "BadRequestException",
    "ConflictError",
    "ForbiddenException",
    "InternalServerException",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
    # Logging
    "setup_logging",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
