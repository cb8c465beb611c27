"""
HRMS Suite - Merge Requests API
===============================

Dashboard view of merge requests with the admin approve/reject workflow.

Dashboard approvals use the same atomic write as provider reviews. Unlike a
provider review, reaching the threshold from the dashboard also merges.
"""

from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, HTTPException, Query, status
from sqlalchemy import func, select

from hrms.api.deps import DbSession
from hrms.core.devops.approvals import ApprovalNotAllowed, record_approval, record_rejection
from hrms.core.models import (
    MergeApproval,
    MergeRequest,
    MergeRequestStatus,
    Notification,
    NotificationType,
)
from hrms.core.schemas import (
    MergeApprovalResponse,
    MergeRequestCreate,
    MergeRequestListResponse,
    MergeRequestResponse,
    MergeRequestUpdate,
    MessageResponse,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/devops/merge-requests", tags=["DevOps - Merge Requests"])


async def get_merge_request_or_404(merge_request_id: UUID, db: DbSession) -> MergeRequest:
    """Get merge request by ID or raise 404."""
    result = await db.execute(
        select(MergeRequest)
        .where(MergeRequest.id == merge_request_id)
        .execution_options(populate_existing=True)
    )
    merge_request = result.scalar_one_or_none()

    if not merge_request:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Merge request not found",
        )

    return merge_request


def awaiting_approval():
    return (MergeRequest.status == MergeRequestStatus.OPEN) & (
        MergeRequest.approvals < MergeRequest.required_approvals
    )


# ==========================================================================
# Merge Request CRUD
# ==========================================================================

@router.get(
    "",
    response_model=MergeRequestListResponse,
    summary="List merge requests",
)
async def list_merge_requests(
    db: DbSession,
    status_filter: Optional[MergeRequestStatus] = Query(None, alias="status", description="Filter by status"),
    target_branch: Optional[str] = Query(None, description="Filter by target branch"),
    pending_approval: bool = Query(False, description="Only open merge requests still short of approvals"),
    limit: int = Query(20, ge=1, le=100, description="Maximum items"),
) -> MergeRequestListResponse:
    query = select(MergeRequest)
    if status_filter:
        query = query.where(MergeRequest.status == status_filter)
    if target_branch:
        query = query.where(MergeRequest.target_branch == target_branch)
    if pending_approval:
        query = query.where(awaiting_approval())

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    pending = (
        await db.execute(select(func.count()).select_from(MergeRequest).where(awaiting_approval()))
    ).scalar() or 0

    result = await db.execute(query.order_by(MergeRequest.created_at.desc()).limit(limit))

    return MergeRequestListResponse(
        items=[MergeRequestResponse.model_validate(mr) for mr in result.scalars().all()],
        total=total,
        pending_approvals=pending,
    )


@router.get(
    "/{merge_request_id}",
    response_model=MergeRequestResponse,
    summary="Get merge request",
    responses={404: {"description": "Merge request not found"}},
)
async def get_merge_request(merge_request_id: UUID, db: DbSession) -> MergeRequestResponse:
    return MergeRequestResponse.model_validate(await get_merge_request_or_404(merge_request_id, db))


@router.get(
    "/{merge_request_id}/approvals",
    response_model=list[MergeApprovalResponse],
    summary="Approval history",
    responses={404: {"description": "Merge request not found"}},
)
async def list_approvals(merge_request_id: UUID, db: DbSession) -> list[MergeApprovalResponse]:
    await get_merge_request_or_404(merge_request_id, db)
    result = await db.execute(
        select(MergeApproval)
        .where(MergeApproval.merge_request_id == merge_request_id)
        .order_by(MergeApproval.created_at.desc())
    )
    return [MergeApprovalResponse.model_validate(a) for a in result.scalars().all()]


@router.post(
    "",
    response_model=MergeRequestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create merge request",
    responses={
        400: {"description": "Validation error"},
        409: {"description": "External id already tracked"},
    },
)
async def create_merge_request(data: MergeRequestCreate, db: DbSession) -> MergeRequestResponse:
    if data.external_id:
        existing = await db.execute(
            select(MergeRequest.id).where(MergeRequest.external_id == data.external_id)
        )
        if existing.scalar_one_or_none():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Merge request already exists for this external id",
            )

    merge_request = MergeRequest(
        external_id=data.external_id,
        title=data.title,
        description=data.description,
        author=data.author,
        source_branch=data.source_branch,
        target_branch=data.target_branch,
        status=data.status,
        required_approvals=data.required_approvals,
    )
    db.add(merge_request)
    await db.flush()

    db.add(
        Notification(
            type=NotificationType.MERGE_REQUEST,
            title="New merge request requires approval",
            message=f'"{data.title}" by {data.author} needs review',
            recipient="team",
            details={"merge_request_id": str(merge_request.id), "target_branch": data.target_branch},
        )
    )
    await db.flush()

    logger.info("merge_request_created", merge_request_id=str(merge_request.id))
    return MergeRequestResponse.model_validate(await get_merge_request_or_404(merge_request.id, db))


@router.patch(
    "/{merge_request_id}",
    response_model=MergeRequestResponse,
    summary="Approve, reject, or edit a merge request",
    responses={
        400: {"description": "Merge request is not open, or validation error"},
        404: {"description": "Merge request not found"},
    },
)
async def update_merge_request(
    merge_request_id: UUID,
    data: MergeRequestUpdate,
    db: DbSession,
) -> MergeRequestResponse:
    """
    `action=approve` counts one approval and merges once the required count
    is reached; `action=reject` closes the merge request. Both need an open
    merge request and record an approval history entry plus a notification.
    Without an action the remaining fields are applied as a plain edit.
    """
    merge_request = await get_merge_request_or_404(merge_request_id, db)

    if data.action is None:
        changes = data.model_dump(
            exclude_unset=True, exclude_none=True, exclude={"action", "approver", "comment"}
        )
        for field, value in changes.items():
            setattr(merge_request, field, value)
        await db.flush()
        return MergeRequestResponse.model_validate(await get_merge_request_or_404(merge_request_id, db))

    approver = data.approver or "admin"
    try:
        if data.action == "approve":
            outcome = await record_approval(
                db, merge_request_id, approver, data.comment, merge_on_threshold=True
            )
        else:
            outcome = await record_rejection(
                db, merge_request_id, approver, data.comment, close=True
            )
    except ApprovalNotAllowed as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e

    merge_request = outcome.merge_request
    if data.action == "approve":
        title = "Merge request merged" if merge_request.status == MergeRequestStatus.MERGED else "Merge request approved"
    else:
        title = "Merge request rejected"
    db.add(
        Notification(
            type=NotificationType.MERGE_REQUEST,
            title=title,
            message=f'"{merge_request.title}" {data.action}d by {approver}',
            recipient=merge_request.author,
            details={
                "merge_request_id": str(merge_request.id),
                "approvals": merge_request.approvals,
                "required_approvals": merge_request.required_approvals,
            },
        )
    )
    await db.flush()

    return MergeRequestResponse.model_validate(await get_merge_request_or_404(merge_request_id, db))


@router.delete(
    "/{merge_request_id}",
    response_model=MessageResponse,
    summary="Delete merge request",
    responses={404: {"description": "Merge request not found"}},
)
async def delete_merge_request(merge_request_id: UUID, db: DbSession) -> MessageResponse:
    merge_request = await get_merge_request_or_404(merge_request_id, db)
    await db.delete(merge_request)
    await db.flush()
    logger.info("merge_request_deleted", merge_request_id=str(merge_request_id))
    return MessageResponse(message="Merge request deleted")
