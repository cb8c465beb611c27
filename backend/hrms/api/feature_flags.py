"""
HRMS Suite - Feature Flags API
==============================

Flag CRUD and per-context evaluation.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, HTTPException, Query, status
from sqlalchemy import select

from hrms.api.deps import DbSession
from hrms.core.devops.flags import evaluate_flag
from hrms.core.models import Environment, FeatureFlag
from hrms.core.schemas import (
    FeatureFlagCreate,
    FeatureFlagResponse,
    FeatureFlagUpdate,
    FlagEvaluationContext,
    FlagEvaluationResponse,
    MessageResponse,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/devops/feature-flags", tags=["DevOps - Feature Flags"])


async def get_flag_or_404(name: str, db: DbSession) -> FeatureFlag:
    """Get flag by name or raise 404."""
    result = await db.execute(
        select(FeatureFlag)
        .where(FeatureFlag.name == name)
        .execution_options(populate_existing=True)
    )
    flag = result.scalar_one_or_none()

    if not flag:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Feature flag not found",
        )

    return flag


@router.get(
    "",
    response_model=list[FeatureFlagResponse],
    summary="List feature flags",
)
async def list_flags(
    db: DbSession,
    environment: Optional[Environment] = Query(None, description="Filter by environment"),
    enabled: Optional[bool] = Query(None, description="Filter by enabled state"),
    limit: int = Query(20, ge=1, le=100, description="Maximum items"),
) -> list[FeatureFlagResponse]:
    query = select(FeatureFlag)
    if environment:
        query = query.where(FeatureFlag.environment == environment)
    if enabled is not None:
        query = query.where(FeatureFlag.enabled == enabled)

    result = await db.execute(query.order_by(FeatureFlag.name).limit(limit))
    return [FeatureFlagResponse.model_validate(f) for f in result.scalars().all()]


@router.get(
    "/{name}",
    response_model=FeatureFlagResponse,
    summary="Get feature flag",
    responses={404: {"description": "Feature flag not found"}},
)
async def get_flag(name: str, db: DbSession) -> FeatureFlagResponse:
    return FeatureFlagResponse.model_validate(await get_flag_or_404(name, db))


@router.post(
    "",
    response_model=FeatureFlagResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create feature flag",
    responses={
        400: {"description": "Validation error"},
        409: {"description": "Flag name already exists"},
    },
)
async def create_flag(data: FeatureFlagCreate, db: DbSession) -> FeatureFlagResponse:
    existing = await db.execute(select(FeatureFlag.id).where(FeatureFlag.name == data.name))
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Feature flag already exists",
        )

    flag = FeatureFlag(
        name=data.name,
        description=data.description,
        enabled=data.enabled,
        environment=data.environment,
        rollout_percentage=data.rollout_percentage,
        conditions=[c.model_dump() for c in data.conditions],
        flag_metadata=data.metadata,
        created_by=data.created_by,
    )
    db.add(flag)
    await db.flush()

    logger.info("feature_flag_created", name=flag.name, enabled=flag.enabled)
    return FeatureFlagResponse.model_validate(flag)


@router.patch(
    "/{name}",
    response_model=FeatureFlagResponse,
    summary="Update feature flag",
    responses={404: {"description": "Feature flag not found"}},
)
async def update_flag(name: str, data: FeatureFlagUpdate, db: DbSession) -> FeatureFlagResponse:
    flag = await get_flag_or_404(name, db)

    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    if "metadata" in changes:
        flag.flag_metadata = changes.pop("metadata")
    for field, value in changes.items():
        setattr(flag, field, value)

    await db.flush()
    logger.info("feature_flag_updated", name=name, fields=sorted(data.model_fields_set))
    return FeatureFlagResponse.model_validate(await get_flag_or_404(name, db))


@router.delete(
    "/{name}",
    response_model=MessageResponse,
    summary="Delete feature flag",
    responses={404: {"description": "Feature flag not found"}},
)
async def delete_flag(name: str, db: DbSession) -> MessageResponse:
    flag = await get_flag_or_404(name, db)
    await db.delete(flag)
    await db.flush()
    logger.info("feature_flag_deleted", name=name)
    return MessageResponse(message="Feature flag deleted")


@router.post(
    "/{name}/evaluate",
    response_model=FlagEvaluationResponse,
    summary="Evaluate a flag for a context",
    responses={404: {"description": "Feature flag not found"}},
)
async def evaluate(
    name: str,
    context: FlagEvaluationContext,
    db: DbSession,
) -> FlagEvaluationResponse:
    flag = await get_flag_or_404(name, db)
    return FlagEvaluationResponse(name=name, enabled=evaluate_flag(flag, context))
