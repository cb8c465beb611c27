"""
Merge Request Approvals
=======================

Approval writes shared by the webhook receiver and the admin dashboard.

Each write is a single conditional UPDATE: the counter increment, the
threshold check, and (for the dashboard) the status flip happen in one
statement, so concurrent approvals from either path cannot lose or
double-count an increment.

Provider reviews carry the provider's review id. The dashboard records a
review it submitted, and the provider later echoes the same review as a
webhook; the id makes the second arrival a no-op. `merge_approvals.review_id`
is unique, so two deliveries racing past the existence check fail the later
transaction on insert and its increment is rolled back with it.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import DateTime, and_, case, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hrms.core.models import ApprovalAction, MergeApproval, MergeRequest, MergeRequestStatus

logger = structlog.get_logger()


class ApprovalNotAllowed(Exception):
    """Merge request is missing or not in a state that accepts approvals."""


@dataclass
class ApprovalOutcome:
    merge_request: MergeRequest
    approval: MergeApproval
    threshold_reached: bool
    duplicate: bool = False


async def _reload(db: AsyncSession, merge_request_id: UUID) -> MergeRequest:
    result = await db.execute(
        select(MergeRequest)
        .where(MergeRequest.id == merge_request_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _recorded_review(db: AsyncSession, review_id: Optional[int]) -> Optional[MergeApproval]:
    if review_id is None:
        return None
    result = await db.execute(select(MergeApproval).where(MergeApproval.review_id == review_id))
    return result.scalar_one_or_none()


async def _already_recorded(db: AsyncSession, approval: MergeApproval) -> ApprovalOutcome:
    merge_request = await _reload(db, approval.merge_request_id)
    logger.info(
        "review_already_recorded",
        merge_request_id=str(approval.merge_request_id),
        review_id=approval.review_id,
    )
    return ApprovalOutcome(
        merge_request,
        approval,
        threshold_reached=merge_request.approvals >= merge_request.required_approvals,
        duplicate=True,
    )


async def record_approval(
    db: AsyncSession,
    merge_request_id: UUID,
    approver: str,
    comment: Optional[str] = None,
    *,
    review_id: Optional[int] = None,
    merge_on_threshold: bool = False,
    allowed_statuses: Sequence[MergeRequestStatus] = (MergeRequestStatus.OPEN,),
) -> ApprovalOutcome:
    """
    Count one approval.

    Reaching `required_approvals` stamps `approved_at` (first time only).
    With `merge_on_threshold` the same statement also sets status to merged;
    provider-driven approvals leave the merge to the provider's own event.
    A `review_id` that is already recorded returns a duplicate outcome and
    changes nothing.
    """
    existing = await _recorded_review(db, review_id)
    if existing is not None:
        return await _already_recorded(db, existing)

    now = datetime.now(timezone.utc)
    new_count = MergeRequest.approvals + 1
    reached = new_count >= MergeRequest.required_approvals

    values = {
        MergeRequest.approvals: new_count,
        MergeRequest.approved_at: case(
            (and_(reached, MergeRequest.approved_at.is_(None)), literal(now, DateTime(timezone=True))),
            else_=MergeRequest.approved_at,
        ),
    }
    if merge_on_threshold:
        values[MergeRequest.status] = case(
            (reached, literal(MergeRequestStatus.MERGED, MergeRequest.__table__.c.status.type)),
            else_=MergeRequest.status,
        )

    result = await db.execute(
        update(MergeRequest)
        .where(
            MergeRequest.id == merge_request_id,
            MergeRequest.status.in_(list(allowed_statuses)),
        )
        .values(values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ApprovalNotAllowed("Merge request is not open for approval")

    approval = MergeApproval(
        merge_request_id=merge_request_id,
        approver=approver,
        action=ApprovalAction.APPROVE,
        comment=comment,
        review_id=review_id,
    )
    db.add(approval)
    await db.flush()

    merge_request = await _reload(db, merge_request_id)
    threshold_reached = merge_request.approvals >= merge_request.required_approvals

    logger.info(
        "merge_request_approved",
        merge_request_id=str(merge_request_id),
        approver=approver,
        review_id=review_id,
        approvals=merge_request.approvals,
        required=merge_request.required_approvals,
        status=merge_request.status.value,
    )
    return ApprovalOutcome(merge_request, approval, threshold_reached)


async def record_rejection(
    db: AsyncSession,
    merge_request_id: UUID,
    approver: str,
    comment: Optional[str] = None,
    *,
    review_id: Optional[int] = None,
    close: bool = False,
) -> ApprovalOutcome:
    """
    Record a rejection without touching the counter.

    With `close` the merge request must be open and is closed in the same
    conditional UPDATE.
    """
    existing = await _recorded_review(db, review_id)
    if existing is not None:
        return await _already_recorded(db, existing)

    if close:
        result = await db.execute(
            update(MergeRequest)
            .where(
                MergeRequest.id == merge_request_id,
                MergeRequest.status == MergeRequestStatus.OPEN,
            )
            .values(status=MergeRequestStatus.CLOSED)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ApprovalNotAllowed("Merge request is not open for review")

    approval = MergeApproval(
        merge_request_id=merge_request_id,
        approver=approver,
        action=ApprovalAction.REJECT,
        comment=comment,
        review_id=review_id,
    )
    db.add(approval)
    await db.flush()

    merge_request = await _reload(db, merge_request_id)
    logger.info(
        "merge_request_rejected",
        merge_request_id=str(merge_request_id),
        approver=approver,
        review_id=review_id,
        closed=close,
    )
    return ApprovalOutcome(merge_request, approval, threshold_reached=False)
