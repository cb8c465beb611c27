"""
HRMS Suite - Database Models
============================

SQLAlchemy models for the DevOps dashboard, integrations, and the
cross-application hand-off codes.
"""

import enum
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hrms.core.database import Base


def _enum(enum_cls: type[enum.Enum]) -> Enum:
    """Store enum values (not member names) so rows read the same as the API."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
    )


# ==========================================================================
# Enums
# ==========================================================================

class PipelineStatus(str, enum.Enum):
    """Internal five-state CI status."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineStatus.SUCCESS, PipelineStatus.FAILED, PipelineStatus.CANCELLED)


class Environment(str, enum.Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class MergeRequestStatus(str, enum.Enum):
    DRAFT = "draft"
    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"


class ApprovalAction(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


class DeploymentStatus(str, enum.Enum):
    PENDING = "pending"
    DEPLOYING = "deploying"
    SUCCESS = "success"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class DeploymentHealth(str, enum.Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class NotificationType(str, enum.Enum):
    PIPELINE = "pipeline"
    MERGE_REQUEST = "merge_request"
    DEPLOYMENT = "deployment"
    SYSTEM = "system"


class NotificationStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


class NotificationPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class IntegrationType(str, enum.Enum):
    TEAMS = "teams"
    SLACK = "slack"
    GITHUB = "github"


class IntegrationStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"


class ApprovalStatus(str, enum.Enum):
    """Administrative approval workflow state."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# ==========================================================================
# Mixins
# ==========================================================================

class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    # Fetch server-generated timestamps during flush; async sessions cannot lazy load
    __mapper_args__ = {"eager_defaults": True}

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# ==========================================================================
# Pipelines
# ==========================================================================

class Pipeline(Base, TimestampMixin):
    """One CI run for a branch/commit."""

    __tablename__ = "pipelines"

    id: Mapped[UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    branch: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    commit_sha: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    author: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[PipelineStatus] = mapped_column(
        _enum(PipelineStatus),
        default=PipelineStatus.PENDING,
        nullable=False,
        index=True,
    )
    environment: Mapped[Environment] = mapped_column(
        _enum(Environment),
        default=Environment.DEVELOPMENT,
        nullable=False,
        index=True,
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    jobs: Mapped[list["PipelineJob"]] = relationship(
        back_populates="pipeline",
        cascade="all, delete-orphan",
        order_by="PipelineJob.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Pipeline {self.branch}@{self.commit_sha[:8]} {self.status.value}>"


class PipelineJob(Base, TimestampMixin):
    """One named stage of a pipeline."""

    __tablename__ = "pipeline_jobs"

    id: Mapped[UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    pipeline_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("pipelines.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[PipelineStatus] = mapped_column(
        _enum(PipelineStatus),
        default=PipelineStatus.PENDING,
        nullable=False,
    )
    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # seconds
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    pipeline: Mapped[Pipeline] = relationship(back_populates="jobs")


# ==========================================================================
# Merge requests
# ==========================================================================

class MergeRequest(Base, TimestampMixin):
    """
    Internal mirror of a provider pull request.

    `approved_at` records approval sufficiency; `status == merged` records
    the merge itself. The two are written by different events.
    """

    __tablename__ = "merge_requests"

    id: Mapped[UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    external_id: Mapped[Optional[str]] = mapped_column(
        String(50),
        unique=True,
        index=True,
        nullable=True,
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    author: Mapped[str] = mapped_column(String(255), nullable=False)
    source_branch: Mapped[str] = mapped_column(String(255), nullable=False)
    target_branch: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[MergeRequestStatus] = mapped_column(
        _enum(MergeRequestStatus),
        default=MergeRequestStatus.OPEN,
        nullable=False,
        index=True,
    )
    approvals: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    required_approvals: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    pipeline_status: Mapped[Optional[PipelineStatus]] = mapped_column(
        _enum(PipelineStatus),
        default=PipelineStatus.PENDING,
        nullable=True,
    )
    additions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    deletions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    files_changed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    conflicts: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    approval_records: Mapped[list["MergeApproval"]] = relationship(
        back_populates="merge_request",
        cascade="all, delete-orphan",
        order_by="MergeApproval.created_at.desc()",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<MergeRequest {self.external_id or self.id} {self.status.value}>"


class MergeApproval(Base, TimestampMixin):
    __tablename__ = "merge_approvals"

    id: Mapped[UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    merge_request_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("merge_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    approver: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[ApprovalAction] = mapped_column(_enum(ApprovalAction), nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Provider review id; one review is counted at most once
    review_id: Mapped[Optional[int]] = mapped_column(BigInteger, unique=True, nullable=True)

    merge_request: Mapped[MergeRequest] = relationship(back_populates="approval_records")


# ==========================================================================
# Deployments
# ==========================================================================

class Deployment(Base, TimestampMixin):
    __tablename__ = "deployments"

    id: Mapped[UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    environment: Mapped[Environment] = mapped_column(_enum(Environment), nullable=False, index=True)
    version: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[DeploymentStatus] = mapped_column(
        _enum(DeploymentStatus),
        default=DeploymentStatus.PENDING,
        nullable=False,
        index=True,
    )
    health: Mapped[DeploymentHealth] = mapped_column(
        _enum(DeploymentHealth),
        default=DeploymentHealth.UNKNOWN,
        nullable=False,
    )
    pipeline_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("pipelines.id", ondelete="SET NULL"),
        nullable=True,
    )
    deployed_by: Mapped[str] = mapped_column(String(255), default="system", nullable=False)
    deployed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    pipeline: Mapped[Optional[Pipeline]] = relationship(lazy="selectin")


# ==========================================================================
# Feature flags
# ==========================================================================

class FeatureFlag(Base, TimestampMixin):
    __tablename__ = "feature_flags"

    id: Mapped[UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(100), unique=True, index=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    environment: Mapped[Environment] = mapped_column(
        _enum(Environment),
        default=Environment.DEVELOPMENT,
        nullable=False,
    )
    rollout_percentage: Mapped[int] = mapped_column(Integer, default=0, nullable=False)  # 0-100
    conditions: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSON, nullable=True)
    # `metadata` is reserved on declarative classes
    flag_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)
    created_by: Mapped[str] = mapped_column(String(255), default="system", nullable=False)

    def __repr__(self) -> str:
        return f"<FeatureFlag {self.name} enabled={self.enabled}>"


# ==========================================================================
# Notifications
# ==========================================================================

class Notification(Base, TimestampMixin):
    """Team notification produced by webhook events and dashboard actions."""

    __tablename__ = "automation_notifications"

    id: Mapped[UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    type: Mapped[NotificationType] = mapped_column(_enum(NotificationType), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    recipient: Mapped[str] = mapped_column(String(255), default="team", nullable=False)
    status: Mapped[NotificationStatus] = mapped_column(
        _enum(NotificationStatus),
        default=NotificationStatus.SENT,
        nullable=False,
    )
    details: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)


# ==========================================================================
# Integrations
# ==========================================================================

class Integration(Base, TimestampMixin):
    """Teams/Slack-style connector configuration."""

    __tablename__ = "integrations"

    id: Mapped[UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[IntegrationType] = mapped_column(_enum(IntegrationType), nullable=False)
    webhook_url: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    status: Mapped[IntegrationStatus] = mapped_column(
        _enum(IntegrationStatus),
        default=IntegrationStatus.PENDING,
        nullable=False,
    )
    approved_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class IntegrationSetting(Base, TimestampMixin):
    __tablename__ = "integration_settings"

    id: Mapped[UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    integration: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    updated_by: Mapped[str] = mapped_column(String(255), default="system", nullable=False)


class IntegrationApproval(Base, TimestampMixin):
    __tablename__ = "integration_approvals"

    id: Mapped[UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    integration_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("integrations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    request_type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    requested_by: Mapped[str] = mapped_column(String(255), nullable=False)
    approved_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[ApprovalStatus] = mapped_column(
        _enum(ApprovalStatus),
        default=ApprovalStatus.PENDING,
        nullable=False,
        index=True,
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    details: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)

    integration: Mapped[Optional[Integration]] = relationship(lazy="selectin")


class IntegrationNotification(Base, TimestampMixin):
    __tablename__ = "integration_notifications"

    id: Mapped[UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    integration_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("integrations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[NotificationPriority] = mapped_column(
        _enum(NotificationPriority),
        default=NotificationPriority.MEDIUM,
        nullable=False,
    )
    status: Mapped[NotificationStatus] = mapped_column(
        _enum(NotificationStatus),
        default=NotificationStatus.PENDING,
        nullable=False,
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    details: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)

    integration: Mapped[Optional[Integration]] = relationship(lazy="selectin")


# ==========================================================================
# Cross-app hand-off
# ==========================================================================

class HandoffCode(Base, TimestampMixin):
    """
    Single-use code that moves a session from one application to another.

    Only the SHA-256 of the signed code is stored; `consumed_at` is set in the
    same UPDATE that redeems it.
    """

    __tablename__ = "handoff_codes"

    id: Mapped[UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    code_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    target_app: Mapped[str] = mapped_column(String(20), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<HandoffCode {self.id} -> {self.target_app}>"
