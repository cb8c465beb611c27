"""
Event Normalizer
================

Translates parsed provider events into rows for pipelines, pipeline jobs,
merge requests, approvals and notifications.

Each handler is a function of (event, database) with no other state. Every
event is applied at most once per delivery; there is no retry or reordering.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrms.core.devops.approvals import ApprovalNotAllowed, record_approval, record_rejection
from hrms.core.devops.events import (
    ProviderEvent,
    PullRequestEvent,
    PullRequestReviewEvent,
    PushEvent,
    WorkflowRunEvent,
)
from hrms.core.devops.github import map_run_status
from hrms.core.models import (
    Environment,
    MergeRequest,
    MergeRequestStatus,
    Notification,
    NotificationType,
    Pipeline,
    PipelineJob,
    PipelineStatus,
)

logger = structlog.get_logger()

PIPELINE_STAGES = ("lint", "unit-test", "build", "integration-test", "deploy")


@dataclass
class NormalizationResult:
    event: str
    processed: bool
    action: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)


def environment_for_branch(branch: str) -> Environment:
    """Substring rule: anything mentioning main deploys to production, staging to staging."""
    if "main" in branch:
        return Environment.PRODUCTION
    if "staging" in branch:
        return Environment.STAGING
    return Environment.DEVELOPMENT


def required_approvals_for(target_branch: str) -> int:
    return 2 if target_branch == "main" else 1


async def create_pipeline(
    db: AsyncSession,
    *,
    branch: str,
    commit_sha: str,
    author: str,
    message: Optional[str] = None,
    environment: Optional[Environment] = None,
) -> Pipeline:
    """Insert a pending pipeline with one pending job per stage."""
    pipeline = Pipeline(
        branch=branch,
        commit_sha=commit_sha,
        author=author,
        message=message,
        status=PipelineStatus.PENDING,
        environment=environment or environment_for_branch(branch),
        jobs=[
            PipelineJob(name=name, position=i, status=PipelineStatus.PENDING)
            for i, name in enumerate(PIPELINE_STAGES)
        ],
    )
    db.add(pipeline)
    await db.flush()
    logger.info(
        "pipeline_created",
        pipeline_id=str(pipeline.id),
        branch=branch,
        commit_sha=commit_sha,
        environment=pipeline.environment.value,
    )
    return pipeline


async def get_merge_request_by_external_id(db: AsyncSession, external_id: str) -> Optional[MergeRequest]:
    result = await db.execute(select(MergeRequest).where(MergeRequest.external_id == external_id))
    return result.scalar_one_or_none()


class EventNormalizer:
    """Applies one parsed event to the database session it was built with."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def apply(self, event: ProviderEvent) -> NormalizationResult:
        if isinstance(event, PushEvent):
            return await self.handle_push(event)
        if isinstance(event, PullRequestEvent):
            return await self.handle_pull_request(event)
        if isinstance(event, WorkflowRunEvent):
            return await self.handle_workflow_run(event)
        if isinstance(event, PullRequestReviewEvent):
            return await self.handle_review(event)
        raise TypeError(f"Unhandled event type: {type(event).__name__}")

    # ======================================================================
    # push
    # ======================================================================

    async def handle_push(self, event: PushEvent) -> NormalizationResult:
        if not event.creates_pipeline:
            return NormalizationResult("push", processed=False, action="ignored")

        commit = event.head_commit
        pipeline = await create_pipeline(
            self.db,
            branch=event.branch,
            commit_sha=commit.id,
            author=commit.author.name,
            message=commit.message,
            environment=environment_for_branch(event.ref),
        )

        if "main" in event.ref or "staging" in event.ref:
            self.db.add(
                Notification(
                    type=NotificationType.PIPELINE,
                    title="New pipeline triggered",
                    message=f"Push to {event.branch} by {commit.author.name}",
                    recipient="team",
                    details={
                        "pipeline_id": str(pipeline.id),
                        "branch": event.branch,
                        "commit": commit.id,
                    },
                )
            )
            await self.db.flush()

        return NormalizationResult(
            "push",
            processed=True,
            action="pipeline_created",
            data={"pipeline_id": str(pipeline.id), "jobs": len(pipeline.jobs)},
        )

    # ======================================================================
    # pull_request
    # ======================================================================

    async def handle_pull_request(self, event: PullRequestEvent) -> NormalizationResult:
        pr = event.pull_request
        external_id = str(pr.number)
        merge_request = await get_merge_request_by_external_id(self.db, external_id)
        action = event.action

        if action in ("opened", "reopened"):
            status = MergeRequestStatus.DRAFT if pr.draft else MergeRequestStatus.OPEN
            created = merge_request is None
            if created:
                merge_request = MergeRequest(external_id=external_id)
                self.db.add(merge_request)
            merge_request.title = pr.title
            merge_request.description = pr.body or ""
            merge_request.author = pr.user.login
            merge_request.source_branch = pr.head.ref
            merge_request.target_branch = pr.base.ref
            merge_request.status = status
            merge_request.required_approvals = required_approvals_for(pr.base.ref)
            merge_request.additions = pr.additions or 0
            merge_request.deletions = pr.deletions or 0
            merge_request.files_changed = pr.changed_files or 0
            merge_request.conflicts = False
            await self.db.flush()

            self.db.add(
                Notification(
                    type=NotificationType.MERGE_REQUEST,
                    title="New merge request requires approval",
                    message=f'"{pr.title}" by {pr.user.login} needs review',
                    recipient="team",
                    details={
                        "merge_request_id": str(merge_request.id),
                        "github_pr_number": pr.number,
                        "target_branch": pr.base.ref,
                    },
                )
            )
            await self.db.flush()
            logger.info(
                "merge_request_synced",
                external_id=external_id,
                action=action,
                created=created,
                status=status.value,
            )
            return NormalizationResult(
                "pull_request",
                processed=True,
                action="created" if created else "reopened",
                data={"merge_request_id": str(merge_request.id)},
            )

        if merge_request is None:
            logger.info("merge_request_unknown", external_id=external_id, action=action)
            return NormalizationResult("pull_request", processed=False, action="unknown_merge_request")

        if action == "closed":
            merge_request.status = MergeRequestStatus.MERGED if pr.merged else MergeRequestStatus.CLOSED
        elif action == "synchronize":
            merge_request.additions = pr.additions or 0
            merge_request.deletions = pr.deletions or 0
            merge_request.files_changed = pr.changed_files or 0
        elif action == "ready_for_review":
            merge_request.status = MergeRequestStatus.OPEN
        elif action == "converted_to_draft":
            merge_request.status = MergeRequestStatus.DRAFT
        else:
            return NormalizationResult("pull_request", processed=False, action="ignored")

        await self.db.flush()
        logger.info(
            "merge_request_updated",
            external_id=external_id,
            action=action,
            status=merge_request.status.value,
        )
        return NormalizationResult(
            "pull_request",
            processed=True,
            action=action,
            data={"merge_request_id": str(merge_request.id), "status": merge_request.status.value},
        )

    # ======================================================================
    # workflow_run
    # ======================================================================

    async def handle_workflow_run(self, event: WorkflowRunEvent) -> NormalizationResult:
        run = event.workflow_run
        status = map_run_status(run.status, run.conclusion)
        now = datetime.now(timezone.utc)

        result = await self.db.execute(select(Pipeline).where(Pipeline.commit_sha == run.head_sha))
        pipelines = result.scalars().all()
        for pipeline in pipelines:
            pipeline.status = status
            if status == PipelineStatus.RUNNING:
                pipeline.started_at = run.run_started_at or now
            elif status.is_terminal:
                pipeline.finished_at = now

        merge_request_id = None
        if run.pull_requests:
            merge_request = await get_merge_request_by_external_id(
                self.db, str(run.pull_requests[0].number)
            )
            if merge_request is not None:
                merge_request.pipeline_status = status
                merge_request_id = str(merge_request.id)

        await self.db.flush()
        logger.info(
            "workflow_run_applied",
            commit_sha=run.head_sha,
            status=status.value,
            pipelines=len(pipelines),
            merge_request_id=merge_request_id,
        )
        return NormalizationResult(
            "workflow_run",
            processed=bool(pipelines) or merge_request_id is not None,
            action=event.action,
            data={
                "status": status.value,
                "pipelines_updated": len(pipelines),
                "merge_request_id": merge_request_id,
            },
        )

    # ======================================================================
    # pull_request_review
    # ======================================================================

    async def handle_review(self, event: PullRequestReviewEvent) -> NormalizationResult:
        review = event.review
        state = review.state.lower()
        if event.action != "submitted" or state not in ("approved", "changes_requested"):
            return NormalizationResult("pull_request_review", processed=False, action="ignored")

        merge_request = await get_merge_request_by_external_id(
            self.db, str(event.pull_request.number)
        )
        if merge_request is None:
            return NormalizationResult(
                "pull_request_review", processed=False, action="unknown_merge_request"
            )

        try:
            if state == "approved":
                outcome = await record_approval(
                    self.db,
                    merge_request.id,
                    review.user.login,
                    review.body,
                    review_id=review.id,
                    allowed_statuses=(MergeRequestStatus.OPEN, MergeRequestStatus.DRAFT),
                )
            else:
                outcome = await record_rejection(
                    self.db, merge_request.id, review.user.login, review.body, review_id=review.id
                )
        except ApprovalNotAllowed:
            logger.info(
                "review_ignored",
                merge_request_id=str(merge_request.id),
                status=merge_request.status.value,
            )
            return NormalizationResult("pull_request_review", processed=False, action="not_open")

        mr = outcome.merge_request
        if outcome.duplicate:
            return NormalizationResult(
                "pull_request_review",
                processed=False,
                action="duplicate_review",
                data={"merge_request_id": str(mr.id), "approvals": mr.approvals},
            )
        return NormalizationResult(
            "pull_request_review",
            processed=True,
            action="approved" if state == "approved" else "changes_requested",
            data={
                "merge_request_id": str(mr.id),
                "approvals": mr.approvals,
                "required_approvals": mr.required_approvals,
                "approved": mr.approved_at is not None,
            },
        )
