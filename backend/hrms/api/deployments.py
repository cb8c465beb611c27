"""
HRMS Suite - Deployments API
============================

Deployment records per environment with status and health tracking.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, HTTPException, Query, status
from sqlalchemy import func, select

from hrms.api.deps import DbSession
from hrms.core.models import Deployment, DeploymentHealth, DeploymentStatus, Environment, Pipeline
from hrms.core.schemas import (
    DeploymentCreate,
    DeploymentListResponse,
    DeploymentResponse,
    DeploymentUpdate,
    MessageResponse,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/devops/deployments", tags=["DevOps - Deployments"])


async def get_deployment_or_404(deployment_id: UUID, db: DbSession) -> Deployment:
    """Get deployment by ID or raise 404."""
    result = await db.execute(
        select(Deployment)
        .where(Deployment.id == deployment_id)
        .execution_options(populate_existing=True)
    )
    deployment = result.scalar_one_or_none()

    if not deployment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Deployment not found",
        )

    return deployment


@router.get(
    "",
    response_model=DeploymentListResponse,
    summary="List deployments",
)
async def list_deployments(
    db: DbSession,
    environment: Optional[Environment] = Query(None, description="Filter by environment"),
    status_filter: Optional[DeploymentStatus] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(20, ge=1, le=100, description="Maximum items"),
) -> DeploymentListResponse:
    query = select(Deployment)
    if environment:
        query = query.where(Deployment.environment == environment)
    if status_filter:
        query = query.where(Deployment.status == status_filter)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    result = await db.execute(query.order_by(Deployment.created_at.desc()).limit(limit))

    return DeploymentListResponse(
        items=[DeploymentResponse.model_validate(d) for d in result.scalars().all()],
        total=total,
    )


@router.get(
    "/{deployment_id}",
    response_model=DeploymentResponse,
    summary="Get deployment",
    responses={404: {"description": "Deployment not found"}},
)
async def get_deployment(deployment_id: UUID, db: DbSession) -> DeploymentResponse:
    return DeploymentResponse.model_validate(await get_deployment_or_404(deployment_id, db))


@router.post(
    "",
    response_model=DeploymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create deployment",
    responses={
        400: {"description": "Validation error"},
        404: {"description": "Referenced pipeline not found"},
    },
)
async def create_deployment(data: DeploymentCreate, db: DbSession) -> DeploymentResponse:
    """New deployments start pending with unknown health."""
    if data.pipeline_id is not None:
        found = await db.execute(select(Pipeline.id).where(Pipeline.id == data.pipeline_id))
        if found.scalar_one_or_none() is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Pipeline not found",
            )

    deployment = Deployment(
        environment=data.environment,
        version=data.version,
        pipeline_id=data.pipeline_id,
        deployed_by=data.deployed_by,
        status=DeploymentStatus.PENDING,
        health=DeploymentHealth.UNKNOWN,
    )
    db.add(deployment)
    await db.flush()

    logger.info(
        "deployment_created",
        deployment_id=str(deployment.id),
        environment=data.environment.value,
        version=data.version,
    )
    return DeploymentResponse.model_validate(await get_deployment_or_404(deployment.id, db))


@router.patch(
    "/{deployment_id}",
    response_model=DeploymentResponse,
    summary="Update deployment status or health",
    responses={404: {"description": "Deployment not found"}},
)
async def update_deployment(
    deployment_id: UUID,
    data: DeploymentUpdate,
    db: DbSession,
) -> DeploymentResponse:
    deployment = await get_deployment_or_404(deployment_id, db)

    if data.status is not None:
        deployment.status = data.status
        if data.status == DeploymentStatus.SUCCESS:
            deployment.deployed_at = datetime.now(timezone.utc)
    if data.health is not None:
        deployment.health = data.health

    await db.flush()
    logger.info(
        "deployment_updated",
        deployment_id=str(deployment_id),
        status=deployment.status.value,
        health=deployment.health.value,
    )
    return DeploymentResponse.model_validate(await get_deployment_or_404(deployment_id, db))


@router.delete(
    "/{deployment_id}",
    response_model=MessageResponse,
    summary="Delete deployment",
    responses={404: {"description": "Deployment not found"}},
)
async def delete_deployment(deployment_id: UUID, db: DbSession) -> MessageResponse:
    deployment = await get_deployment_or_404(deployment_id, db)
    await db.delete(deployment)
    await db.flush()
    return MessageResponse(message="Deployment deleted")
