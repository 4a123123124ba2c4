"""Notification service — row creation and leave-specific helper dispatchers."""

from __future__ import annotations

import uuid
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import NotificationType
from backend.notifications.models import Notification


# ── Core service ────────────────────────────────────────────────────


class NotificationService:
    """Async notification operations."""

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        *,
        recipient_id: uuid.UUID,
        type: NotificationType = NotificationType.info,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        """Create a new notification and flush to DB."""
        notification = Notification(
            recipient_id=recipient_id,
            type=type,
            title=title,
            message=message,
            action_url=action_url,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.add(notification)
        await db.flush()
        return notification

    @staticmethod
    async def list_for_recipient(
        db: AsyncSession,
        recipient_id: uuid.UUID,
        *,
        entity_type: Optional[str] = None,
    ) -> Sequence[Notification]:
        """Notifications addressed to an employee, newest first."""
        query = (
            select(Notification)
            .where(Notification.recipient_id == recipient_id)
            .order_by(Notification.created_at.desc())
        )
        if entity_type is not None:
            query = query.where(Notification.entity_type == entity_type)
        result = await db.execute(query)
        return result.scalars().all()


# ── Leave helper dispatchers ────────────────────────────────────────
# They accept the ORM object directly to avoid tight schema coupling.


async def notify_leave_request(
    db: AsyncSession,
    leave_request,  # backend.leave.models.LeaveRequest
    approver_id: uuid.UUID,
) -> Notification:
    """Notify the approver that a new leave request needs review."""
    return await NotificationService.create_notification(
        db,
        recipient_id=approver_id,
        type=NotificationType.action_required,
        title="New Leave Request",
        message=(
            f"A leave request from {leave_request.from_date} to "
            f"{leave_request.to_date} ({leave_request.duration_days} day(s)) "
            f"requires your approval."
        ),
        action_url=f"/leave/requests/{leave_request.id}",
        entity_type="leave_request",
        entity_id=leave_request.id,
    )


async def notify_leave_approved(
    db: AsyncSession,
    leave_request,  # backend.leave.models.LeaveRequest
) -> Notification:
    """Notify the employee that their leave request was approved."""
    return await NotificationService.create_notification(
        db,
        recipient_id=leave_request.employee_id,
        type=NotificationType.approval,
        title="Leave Request Approved",
        message=(
            f"Your leave request from {leave_request.from_date} to "
            f"{leave_request.to_date} has been approved."
        ),
        action_url=f"/leave/requests/{leave_request.id}",
        entity_type="leave_request",
        entity_id=leave_request.id,
    )


async def notify_leave_rejected(
    db: AsyncSession,
    leave_request,  # backend.leave.models.LeaveRequest
    reason: Optional[str],
) -> Notification:
    """Notify the employee that their leave request was rejected."""
    return await NotificationService.create_notification(
        db,
        recipient_id=leave_request.employee_id,
        type=NotificationType.alert,
        title="Leave Request Rejected",
        message=(
            f"Your leave request from {leave_request.from_date} to "
            f"{leave_request.to_date} was rejected. Reason: {reason or 'not given'}"
        ),
        action_url=f"/leave/requests/{leave_request.id}",
        entity_type="leave_request",
        entity_id=leave_request.id,
    )


async def notify_leave_escalated(
    db: AsyncSession,
    leave_request,  # backend.leave.models.LeaveRequest
    recipient_id: uuid.UUID,
    hours: int,
) -> Notification:
    """Notify a skip-level manager about a request stuck at the first step."""
    return await NotificationService.create_notification(
        db,
        recipient_id=recipient_id,
        type=NotificationType.reminder,
        title="Leave Request Escalated",
        message=(
            f"A leave request from {leave_request.from_date} to "
            f"{leave_request.to_date} has had no manager decision for "
            f"more than {hours} hours."
        ),
        action_url=f"/leave/requests/{leave_request.id}",
        entity_type="leave_request",
        entity_id=leave_request.id,
    )


async def notify_delegation_assigned(
    db: AsyncSession,
    delegation,  # backend.leave.models.Delegation
) -> Notification:
    """Ask the delegate to accept or reject approval authority."""
    window = f"from {delegation.start_date}" if delegation.start_date else "immediately"
    if delegation.end_date:
        window += f" until {delegation.end_date}"
    return await NotificationService.create_notification(
        db,
        recipient_id=delegation.delegate_id,
        type=NotificationType.action_required,
        title="Approval Delegation",
        message=f"You have been asked to approve leave on a manager's behalf {window}.",
        action_url=f"/leave/delegations/{delegation.manager_id}",
        entity_type="delegation",
        entity_id=delegation.id,
    )
