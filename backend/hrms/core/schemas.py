"""
HRMS Suite - Pydantic Schemas
=============================

Request and response schemas for API validation, plus the shared session
shape that travels between applications.
"""

from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from hrms.core.models import (
    ApprovalAction,
    ApprovalStatus,
    DeploymentHealth,
    DeploymentStatus,
    Environment,
    MergeRequestStatus,
    NotificationPriority,
    NotificationStatus,
    NotificationType,
    PipelineStatus,
)


AppName = Literal["auth", "portal", "hrms", "admin", "status"]


# ==========================================================================
# Base Schemas
# ==========================================================================

class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class TimestampSchema(BaseSchema):
    """Schema with timestamp fields."""

    created_at: datetime
    updated_at: datetime


# ==========================================================================
# Shared Session
# ==========================================================================

class SessionUser(BaseModel):
    """Identity attached to a session; provider metadata is kept as extra keys."""

    model_config = ConfigDict(extra="allow")

    id: str
    email: str
    role: Optional[str] = None


class SharedSession(BaseModel):
    """
    Bearer-token bundle shared across applications.

    Timestamps are epoch milliseconds. `expires_at` starts at
    `created_at + session duration` and only moves forward on refresh.
    """

    access_token: str
    refresh_token: str
    user: SessionUser
    expires_at: int
    created_at: int


# ==========================================================================
# Auth Schemas
# ==========================================================================

class LoginRequest(BaseSchema):
    email: EmailStr
    password: str = Field(min_length=1, max_length=200)
    target: Optional[AppName] = Field(
        None, description="Application to land on; defaults to the user's role app"
    )


class LoginResponse(BaseSchema):
    session: SharedSession
    redirect_url: str


class HandoffExchangeRequest(BaseSchema):
    code: str = Field(min_length=1)
    app: Optional[AppName] = Field(None, description="Redeeming application, checked against the code")


class HandoffIssueRequest(BaseSchema):
    """The access token comes from the Authorization header."""

    refresh_token: str = Field(min_length=1)
    expires_at: Optional[int] = None
    target: AppName


class HandoffIssueResponse(BaseSchema):
    code: str
    redirect_url: str
    expires_in: int  # seconds


class RefreshRequest(BaseSchema):
    refresh_token: str = Field(min_length=1)


class LogoutResponse(BaseSchema):
    redirect_url: str


# ==========================================================================
# Pipeline Schemas
# ==========================================================================

class PipelineJobResponse(TimestampSchema):
    id: UUID
    name: str
    position: int
    status: PipelineStatus
    duration: Optional[int] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class PipelineCreate(BaseSchema):
    branch: str = Field(min_length=1, max_length=255)
    commit_sha: str = Field(min_length=1, max_length=64)
    author: str = Field(min_length=1, max_length=255)
    message: Optional[str] = None
    environment: Optional[Environment] = None


class PipelineUpdate(BaseSchema):
    """Either a composite `action` or a plain `status` change."""

    action: Optional[Literal["retry", "cancel"]] = None
    status: Optional[PipelineStatus] = None

    @model_validator(mode="after")
    def check_one_change(self) -> "PipelineUpdate":
        if self.action is None and self.status is None:
            raise ValueError("Either action or status is required")
        return self


class PipelineTriggerRequest(BaseSchema):
    branch: str = Field("main", min_length=1, max_length=255)
    reason: Optional[str] = Field(None, max_length=500)


class PipelineResponse(TimestampSchema):
    id: UUID
    branch: str
    commit_sha: str
    author: str
    message: Optional[str] = None
    status: PipelineStatus
    environment: Environment
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    jobs: list[PipelineJobResponse] = []


class PipelineSummary(BaseSchema):
    id: UUID
    branch: str
    commit_sha: str
    status: PipelineStatus


class PipelineListResponse(BaseSchema):
    items: list[PipelineResponse]
    total: int


# ==========================================================================
# Merge Request Schemas
# ==========================================================================

class MergeApprovalResponse(TimestampSchema):
    id: UUID
    approver: str
    action: ApprovalAction
    comment: Optional[str] = None
    review_id: Optional[int] = None


class MergeRequestCreate(BaseSchema):
    title: str = Field(min_length=1, max_length=500)
    description: Optional[str] = None
    author: str = Field(min_length=1, max_length=255)
    source_branch: str = Field(min_length=1, max_length=255)
    target_branch: str = Field(min_length=1, max_length=255)
    external_id: Optional[str] = Field(None, max_length=50)
    required_approvals: int = Field(1, ge=1, le=10)
    status: MergeRequestStatus = MergeRequestStatus.OPEN

    @field_validator("status")
    @classmethod
    def validate_initial_status(cls, v: MergeRequestStatus) -> MergeRequestStatus:
        if v not in (MergeRequestStatus.OPEN, MergeRequestStatus.DRAFT):
            raise ValueError("New merge requests must be open or draft")
        return v


class MergeRequestUpdate(BaseSchema):
    """
    Partial update.

    With `action` set, the approval workflow runs and `approver`/`comment`
    are recorded; without it, the remaining fields are plain edits.
    """

    action: Optional[Literal["approve", "reject"]] = None
    approver: Optional[str] = Field(None, max_length=255)
    comment: Optional[str] = None

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[MergeRequestStatus] = None
    required_approvals: Optional[int] = Field(None, ge=1, le=10)
    pipeline_status: Optional[PipelineStatus] = None
    conflicts: Optional[bool] = None


class MergeRequestResponse(TimestampSchema):
    id: UUID
    external_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    author: str
    source_branch: str
    target_branch: str
    status: MergeRequestStatus
    approvals: int
    required_approvals: int
    approved_at: Optional[datetime] = None
    pipeline_status: Optional[PipelineStatus] = None
    additions: int
    deletions: int
    files_changed: int
    conflicts: bool
    approval_history: list[MergeApprovalResponse] = Field(
        default_factory=list, validation_alias="approval_records"
    )

    @computed_field  # type: ignore[misc]
    @property
    def pending_approvals(self) -> int:
        return max(self.required_approvals - self.approvals, 0)


class MergeRequestListResponse(BaseSchema):
    items: list[MergeRequestResponse]
    total: int
    pending_approvals: int


# ==========================================================================
# Deployment Schemas
# ==========================================================================

class DeploymentCreate(BaseSchema):
    environment: Environment
    version: str = Field(min_length=1, max_length=100)
    pipeline_id: Optional[UUID] = None
    deployed_by: str = Field("system", min_length=1, max_length=255)


class DeploymentUpdate(BaseSchema):
    status: Optional[DeploymentStatus] = None
    health: Optional[DeploymentHealth] = None


class DeploymentResponse(TimestampSchema):
    id: UUID
    environment: Environment
    version: str
    status: DeploymentStatus
    health: DeploymentHealth
    pipeline_id: Optional[UUID] = None
    deployed_by: str
    deployed_at: Optional[datetime] = None
    pipeline: Optional[PipelineSummary] = None


class DeploymentListResponse(BaseSchema):
    items: list[DeploymentResponse]
    total: int


# ==========================================================================
# Feature Flag Schemas
# ==========================================================================

class FlagCondition(BaseSchema):
    type: Literal["user_id", "user_group", "company_id", "custom"]
    operator: Literal["in", "not_in", "equals", "not_equals", "contains"]
    values: list[str] = []


class FeatureFlagCreate(BaseSchema):
    name: str = Field(min_length=1, max_length=100, pattern=r"^[A-Za-z0-9_.\-]+$")
    description: Optional[str] = None
    enabled: bool = False
    environment: Environment = Environment.DEVELOPMENT
    rollout_percentage: int = Field(0, ge=0, le=100)
    conditions: list[FlagCondition] = []
    metadata: dict[str, Any] = {}
    created_by: str = Field("system", min_length=1, max_length=255)


class FeatureFlagUpdate(BaseSchema):
    description: Optional[str] = None
    enabled: Optional[bool] = None
    environment: Optional[Environment] = None
    rollout_percentage: Optional[int] = Field(None, ge=0, le=100)
    conditions: Optional[list[FlagCondition]] = None
    metadata: Optional[dict[str, Any]] = None


class FeatureFlagResponse(TimestampSchema):
    id: UUID
    name: str
    description: Optional[str] = None
    enabled: bool
    environment: Environment
    rollout_percentage: int
    conditions: Optional[list[dict[str, Any]]] = None
    metadata: Optional[dict[str, Any]] = Field(None, validation_alias="flag_metadata")
    created_by: str


class FlagEvaluationContext(BaseSchema):
    user_id: Optional[str] = None
    user_groups: list[str] = []
    company_id: Optional[str] = None
    environment: Optional[Environment] = None
    custom: dict[str, Any] = {}


class FlagEvaluationResponse(BaseSchema):
    name: str
    enabled: bool


# ==========================================================================
# GitHub Live View Schemas
# ==========================================================================

class GitHubPullRequest(BaseSchema):
    number: int
    title: str
    author: str
    state: str
    draft: bool = False
    source_branch: str
    target_branch: str
    html_url: Optional[str] = None
    additions: Optional[int] = None
    deletions: Optional[int] = None
    changed_files: Optional[int] = None
    mergeable: Optional[bool] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class GitHubWorkflowRun(BaseSchema):
    id: int
    name: Optional[str] = None
    workflow_file: Optional[str] = None
    branch: Optional[str] = None
    commit_sha: str
    status: PipelineStatus
    event: Optional[str] = None
    html_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class GitHubReviewRequest(BaseSchema):
    pull_number: int = Field(ge=1)
    action: Literal["approve", "reject", "comment"] = "approve"
    body: Optional[str] = None
    approver: str = Field("admin", min_length=1, max_length=255)


class GitHubReviewResponse(BaseSchema):
    review_id: int
    state: str
    merge_request_id: Optional[UUID] = None


# ==========================================================================
# Notification & Integration Schemas
# ==========================================================================

class NotificationResponse(BaseSchema):
    id: UUID
    type: NotificationType
    title: str
    message: str
    recipient: str
    status: NotificationStatus
    created_at: datetime


class IntegrationSettingResponse(BaseSchema):
    integration: str
    enabled: bool
    updated_by: Optional[str] = None


class IntegrationSettingUpdate(BaseSchema):
    integration: str = Field(min_length=1, max_length=50)
    enabled: bool
    updated_by: str = Field("admin", min_length=1, max_length=255)


class IntegrationApprovalCreate(BaseSchema):
    integration_id: Optional[UUID] = None
    request_type: str = Field(min_length=1, max_length=50)
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    requested_by: str = Field(min_length=1, max_length=255)
    expires_at: Optional[datetime] = None
    metadata: dict[str, Any] = {}


class IntegrationApprovalUpdate(BaseSchema):
    status: ApprovalStatus
    approved_by: str = Field(min_length=1, max_length=255)
    reviewer_notes: Optional[str] = None

    @field_validator("status")
    @classmethod
    def validate_decision(cls, v: ApprovalStatus) -> ApprovalStatus:
        if v == ApprovalStatus.PENDING:
            raise ValueError("Status must be approved or rejected")
        return v


class IntegrationApprovalResponse(TimestampSchema):
    id: UUID
    integration_id: Optional[UUID] = None
    request_type: str
    title: str
    description: Optional[str] = None
    requested_by: str
    approved_by: Optional[str] = None
    status: ApprovalStatus
    reviewed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    metadata: Optional[dict[str, Any]] = Field(None, validation_alias="details")


class IntegrationNotificationCreate(BaseSchema):
    integration: str = Field("teams", min_length=1, max_length=50)
    integration_id: Optional[UUID] = None
    type: str = Field(min_length=1, max_length=50)
    title: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    metadata: dict[str, Any] = {}


class IntegrationNotificationUpdate(BaseSchema):
    status: NotificationStatus


class IntegrationNotificationResponse(TimestampSchema):
    id: UUID
    integration_id: Optional[UUID] = None
    type: str
    title: str
    message: str
    priority: NotificationPriority
    status: NotificationStatus
    sent_at: Optional[datetime] = None
    metadata: Optional[dict[str, Any]] = Field(None, validation_alias="details")


# ==========================================================================
# Common Response Schemas
# ==========================================================================

class MessageResponse(BaseSchema):
    """Simple message response."""

    message: str
    success: bool = True


class FieldError(BaseSchema):
    field: str
    message: str


class ErrorResponse(BaseSchema):
    """Error response schema."""

    error: str
    detail: Optional[str] = None
    code: Optional[str] = None
    fields: Optional[list[FieldError]] = None


class HealthResponse(BaseSchema):
    """Health check response."""

    status: str
    version: str
    environment: str
    database: str
