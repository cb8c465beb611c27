"""
HRMS Suite - Pipelines API
==========================

DevOps dashboard view of CI pipelines and their jobs, with the composite
retry/cancel transitions and manual triggers.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

import structlog
from fastapi import APIRouter, HTTPException, Query, status
from sqlalchemy import func, select

from hrms.api.deps import DbSession
from hrms.core.devops.normalizer import create_pipeline
from hrms.core.models import Environment, Pipeline, PipelineStatus
from hrms.core.schemas import (
    MessageResponse,
    PipelineCreate,
    PipelineListResponse,
    PipelineResponse,
    PipelineTriggerRequest,
    PipelineUpdate,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/devops/pipelines", tags=["DevOps - Pipelines"])


# ==========================================================================
# Helpers
# ==========================================================================

async def get_pipeline_or_404(pipeline_id: UUID, db: DbSession) -> Pipeline:
    """Get pipeline by ID or raise 404."""
    result = await db.execute(
        select(Pipeline)
        .where(Pipeline.id == pipeline_id)
        .execution_options(populate_existing=True)
    )
    pipeline = result.scalar_one_or_none()

    if not pipeline:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Pipeline not found",
        )

    return pipeline


def retry_pipeline(pipeline: Pipeline) -> None:
    """Back to pending with every job reset."""
    pipeline.status = PipelineStatus.PENDING
    pipeline.started_at = None
    pipeline.finished_at = None
    for job in pipeline.jobs:
        job.status = PipelineStatus.PENDING
        job.started_at = None
        job.finished_at = None
        job.duration = None


def cancel_pipeline(pipeline: Pipeline, now: datetime) -> None:
    """Cancel the pipeline and any job that has not finished."""
    pipeline.status = PipelineStatus.CANCELLED
    pipeline.finished_at = now
    for job in pipeline.jobs:
        if job.status in (PipelineStatus.PENDING, PipelineStatus.RUNNING):
            job.status = PipelineStatus.CANCELLED
            job.finished_at = now


def set_pipeline_status(pipeline: Pipeline, new_status: PipelineStatus, now: datetime) -> None:
    pipeline.status = new_status
    if new_status == PipelineStatus.RUNNING:
        pipeline.started_at = now
    elif new_status.is_terminal:
        pipeline.finished_at = now


# ==========================================================================
# Pipeline CRUD
# ==========================================================================

@router.get(
    "",
    response_model=PipelineListResponse,
    summary="List pipelines",
)
async def list_pipelines(
    db: DbSession,
    status_filter: Optional[PipelineStatus] = Query(None, alias="status", description="Filter by status"),
    environment: Optional[Environment] = Query(None, description="Filter by environment"),
    limit: int = Query(20, ge=1, le=100, description="Maximum items"),
) -> PipelineListResponse:
    """Most recent pipelines first, jobs embedded."""
    query = select(Pipeline)
    if status_filter:
        query = query.where(Pipeline.status == status_filter)
    if environment:
        query = query.where(Pipeline.environment == environment)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0

    result = await db.execute(query.order_by(Pipeline.created_at.desc()).limit(limit))
    pipelines = result.scalars().all()

    return PipelineListResponse(
        items=[PipelineResponse.model_validate(p) for p in pipelines],
        total=total,
    )


@router.get(
    "/{pipeline_id}",
    response_model=PipelineResponse,
    summary="Get pipeline",
    responses={404: {"description": "Pipeline not found"}},
)
async def get_pipeline(pipeline_id: UUID, db: DbSession) -> PipelineResponse:
    return PipelineResponse.model_validate(await get_pipeline_or_404(pipeline_id, db))


@router.post(
    "",
    response_model=PipelineResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create pipeline",
    responses={400: {"description": "Validation error"}},
)
async def create_pipeline_endpoint(data: PipelineCreate, db: DbSession) -> PipelineResponse:
    pipeline = await create_pipeline(
        db,
        branch=data.branch,
        commit_sha=data.commit_sha,
        author=data.author,
        message=data.message,
        environment=data.environment,
    )
    return PipelineResponse.model_validate(await get_pipeline_or_404(pipeline.id, db))


@router.post(
    "/trigger",
    response_model=PipelineResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Trigger a manual pipeline",
)
async def trigger_pipeline(data: PipelineTriggerRequest, db: DbSession) -> PipelineResponse:
    """Runs the push path with a synthetic commit for the branch."""
    pipeline = await create_pipeline(
        db,
        branch=data.branch,
        commit_sha=uuid4().hex[:12],
        author="Admin User",
        message=data.reason or "Manual pipeline trigger",
    )
    logger.info("pipeline_triggered", pipeline_id=str(pipeline.id), branch=data.branch)
    return PipelineResponse.model_validate(await get_pipeline_or_404(pipeline.id, db))


@router.patch(
    "/{pipeline_id}",
    response_model=PipelineResponse,
    summary="Retry, cancel, or set pipeline status",
    responses={
        400: {"description": "Validation error"},
        404: {"description": "Pipeline not found"},
    },
)
async def update_pipeline(
    pipeline_id: UUID,
    data: PipelineUpdate,
    db: DbSession,
) -> PipelineResponse:
    """
    `action=retry` resets the pipeline and its jobs to pending;
    `action=cancel` cancels the pipeline and any unfinished job;
    a plain `status` sets the status and stamps started_at/finished_at.
    """
    pipeline = await get_pipeline_or_404(pipeline_id, db)
    now = datetime.now(timezone.utc)

    if data.action == "retry":
        retry_pipeline(pipeline)
    elif data.action == "cancel":
        cancel_pipeline(pipeline, now)
    else:
        set_pipeline_status(pipeline, data.status, now)

    await db.flush()
    logger.info(
        "pipeline_updated",
        pipeline_id=str(pipeline_id),
        action=data.action,
        status=pipeline.status.value,
    )
    return PipelineResponse.model_validate(await get_pipeline_or_404(pipeline_id, db))


@router.delete(
    "/{pipeline_id}",
    response_model=MessageResponse,
    summary="Delete pipeline",
    responses={404: {"description": "Pipeline not found"}},
)
async def delete_pipeline(pipeline_id: UUID, db: DbSession) -> MessageResponse:
    pipeline = await get_pipeline_or_404(pipeline_id, db)
    await db.delete(pipeline)
    await db.flush()
    logger.info("pipeline_deleted", pipeline_id=str(pipeline_id))
    return MessageResponse(message="Pipeline deleted")
