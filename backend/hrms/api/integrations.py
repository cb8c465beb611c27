"""
HRMS Suite - Integrations API
=============================

Messaging connector settings (Teams/Slack), their administrative approval
workflow, and the notifications sent through them.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, HTTPException, Query, status
from sqlalchemy import select

from hrms.api.deps import DbSession
from hrms.core.models import (
    ApprovalStatus,
    Integration,
    IntegrationApproval,
    IntegrationNotification,
    IntegrationSetting,
    IntegrationStatus,
    NotificationStatus,
)
from hrms.core.schemas import (
    IntegrationApprovalCreate,
    IntegrationApprovalResponse,
    IntegrationApprovalUpdate,
    IntegrationNotificationCreate,
    IntegrationNotificationResponse,
    IntegrationNotificationUpdate,
    IntegrationSettingResponse,
    IntegrationSettingUpdate,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/integrations", tags=["Integrations"])

KNOWN_INTEGRATIONS = ("teams", "slack", "github")


# ==========================================================================
# Helpers
# ==========================================================================

async def is_integration_enabled(integration: str, db: DbSession) -> bool:
    """Integrations without a settings row are enabled."""
    result = await db.execute(
        select(IntegrationSetting.enabled).where(IntegrationSetting.integration == integration)
    )
    enabled = result.scalar_one_or_none()
    return True if enabled is None else enabled


async def get_approval_or_404(approval_id: UUID, db: DbSession) -> IntegrationApproval:
    result = await db.execute(
        select(IntegrationApproval).where(IntegrationApproval.id == approval_id)
    )
    approval = result.scalar_one_or_none()
    if not approval:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Approval not found",
        )
    return approval


async def get_notification_or_404(notification_id: UUID, db: DbSession) -> IntegrationNotification:
    result = await db.execute(
        select(IntegrationNotification).where(IntegrationNotification.id == notification_id)
    )
    notification = result.scalar_one_or_none()
    if not notification:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        )
    return notification


# ==========================================================================
# Settings
# ==========================================================================

@router.get(
    "",
    response_model=list[IntegrationSettingResponse],
    summary="Integration enable flags",
)
async def list_settings(db: DbSession) -> list[IntegrationSettingResponse]:
    result = await db.execute(select(IntegrationSetting))
    stored = {s.integration: s for s in result.scalars().all()}

    names = list(KNOWN_INTEGRATIONS) + sorted(set(stored) - set(KNOWN_INTEGRATIONS))
    return [
        IntegrationSettingResponse(
            integration=name,
            enabled=stored[name].enabled if name in stored else True,
            updated_by=stored[name].updated_by if name in stored else None,
        )
        for name in names
    ]


@router.put(
    "",
    response_model=IntegrationSettingResponse,
    summary="Enable or disable an integration",
    responses={400: {"description": "Validation error"}},
)
async def update_setting(data: IntegrationSettingUpdate, db: DbSession) -> IntegrationSettingResponse:
    result = await db.execute(
        select(IntegrationSetting).where(IntegrationSetting.integration == data.integration)
    )
    setting = result.scalar_one_or_none()
    if setting is None:
        setting = IntegrationSetting(integration=data.integration)
        db.add(setting)

    setting.enabled = data.enabled
    setting.updated_by = data.updated_by
    await db.flush()

    logger.info(
        "integration_setting_updated",
        integration=data.integration,
        enabled=data.enabled,
        updated_by=data.updated_by,
    )
    return IntegrationSettingResponse.model_validate(setting)


# ==========================================================================
# Approvals
# ==========================================================================

@router.get(
    "/approvals",
    response_model=list[IntegrationApprovalResponse],
    summary="List integration approval requests",
)
async def list_approvals(
    db: DbSession,
    status_filter: Optional[ApprovalStatus] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(20, ge=1, le=100, description="Maximum items"),
) -> list[IntegrationApprovalResponse]:
    query = select(IntegrationApproval)
    if status_filter:
        query = query.where(IntegrationApproval.status == status_filter)
    result = await db.execute(query.order_by(IntegrationApproval.created_at.desc()).limit(limit))
    return [IntegrationApprovalResponse.model_validate(a) for a in result.scalars().all()]


@router.post(
    "/approvals",
    response_model=IntegrationApprovalResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request an integration approval",
)
async def create_approval(data: IntegrationApprovalCreate, db: DbSession) -> IntegrationApprovalResponse:
    approval = IntegrationApproval(
        integration_id=data.integration_id,
        request_type=data.request_type,
        title=data.title,
        description=data.description,
        requested_by=data.requested_by,
        expires_at=data.expires_at,
        details=data.metadata,
        status=ApprovalStatus.PENDING,
    )
    db.add(approval)
    await db.flush()
    logger.info("integration_approval_requested", approval_id=str(approval.id), title=data.title)
    return IntegrationApprovalResponse.model_validate(approval)


@router.put(
    "/approvals/{approval_id}",
    response_model=IntegrationApprovalResponse,
    summary="Approve or reject a request",
    responses={
        404: {"description": "Approval not found"},
        409: {"description": "Approval already decided"},
    },
)
async def decide_approval(
    approval_id: UUID,
    data: IntegrationApprovalUpdate,
    db: DbSession,
) -> IntegrationApprovalResponse:
    """Approving activates the related integration."""
    approval = await get_approval_or_404(approval_id, db)
    if approval.status != ApprovalStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Approval already {approval.status.value}",
        )

    now = datetime.now(timezone.utc)
    approval.status = data.status
    approval.approved_by = data.approved_by
    approval.reviewed_at = now
    if data.reviewer_notes:
        approval.details = {**(approval.details or {}), "reviewer_notes": data.reviewer_notes}

    if data.status == ApprovalStatus.APPROVED and approval.integration_id is not None:
        integration = await db.get(Integration, approval.integration_id)
        if integration is not None:
            integration.status = IntegrationStatus.ACTIVE
            integration.approved_by = data.approved_by
            integration.approved_at = now

    await db.flush()
    await db.refresh(approval)
    logger.info(
        "integration_approval_decided",
        approval_id=str(approval_id),
        status=data.status.value,
        approved_by=data.approved_by,
    )
    return IntegrationApprovalResponse.model_validate(approval)


# ==========================================================================
# Notifications
# ==========================================================================

@router.get(
    "/notifications",
    response_model=list[IntegrationNotificationResponse],
    summary="List integration notifications",
)
async def list_notifications(
    db: DbSession,
    status_filter: Optional[NotificationStatus] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(20, ge=1, le=100, description="Maximum items"),
) -> list[IntegrationNotificationResponse]:
    query = select(IntegrationNotification)
    if status_filter:
        query = query.where(IntegrationNotification.status == status_filter)
    result = await db.execute(query.order_by(IntegrationNotification.created_at.desc()).limit(limit))
    return [IntegrationNotificationResponse.model_validate(n) for n in result.scalars().all()]


@router.post(
    "/notifications",
    response_model=IntegrationNotificationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send a notification through an integration",
    responses={409: {"description": "Integration disabled"}},
)
async def create_notification(
    data: IntegrationNotificationCreate,
    db: DbSession,
) -> IntegrationNotificationResponse:
    if not await is_integration_enabled(data.integration, db):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Integration '{data.integration}' is disabled",
        )

    notification = IntegrationNotification(
        integration_id=data.integration_id,
        type=data.type,
        title=data.title,
        message=data.message,
        priority=data.priority,
        status=NotificationStatus.SENT,
        sent_at=datetime.now(timezone.utc),
        details={**data.metadata, "integration": data.integration},
    )
    db.add(notification)
    await db.flush()
    logger.info(
        "integration_notification_sent",
        notification_id=str(notification.id),
        integration=data.integration,
    )
    return IntegrationNotificationResponse.model_validate(notification)


@router.put(
    "/notifications/{notification_id}",
    response_model=IntegrationNotificationResponse,
    summary="Update notification status",
    responses={404: {"description": "Notification not found"}},
)
async def update_notification(
    notification_id: UUID,
    data: IntegrationNotificationUpdate,
    db: DbSession,
) -> IntegrationNotificationResponse:
    notification = await get_notification_or_404(notification_id, db)
    notification.status = data.status
    if data.status == NotificationStatus.SENT and notification.sent_at is None:
        notification.sent_at = datetime.now(timezone.utc)
    await db.flush()
    await db.refresh(notification)
    return IntegrationNotificationResponse.model_validate(notification)
