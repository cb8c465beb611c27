"""
HRMS Suite - GitHub Live Views
==============================

Pull requests and workflow runs read straight from GitHub, and review
submission from the dashboard. No token configured means 503; provider
failures surface as 502 rather than sample data.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Query

from hrms.api.deps import DbSession, GitHub, github_http_error
from hrms.core.devops.approvals import ApprovalNotAllowed, record_approval, record_rejection
from hrms.core.devops.github import GitHubAPIError, map_run_status
from hrms.core.devops.normalizer import get_merge_request_by_external_id
from hrms.core.schemas import (
    GitHubPullRequest,
    GitHubReviewRequest,
    GitHubReviewResponse,
    GitHubWorkflowRun,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/devops/github", tags=["DevOps - GitHub"])

PROVIDER_ERRORS = {
    502: {"description": "GitHub request failed"},
    503: {"description": "GitHub integration not configured"},
}


def to_pull_request(pr: dict[str, Any]) -> GitHubPullRequest:
    return GitHubPullRequest(
        number=pr["number"],
        title=pr.get("title", ""),
        author=(pr.get("user") or {}).get("login", "unknown"),
        state="merged" if pr.get("merged_at") else pr.get("state", "open"),
        draft=bool(pr.get("draft")),
        source_branch=(pr.get("head") or {}).get("ref", ""),
        target_branch=(pr.get("base") or {}).get("ref", ""),
        html_url=pr.get("html_url"),
        additions=pr.get("additions"),
        deletions=pr.get("deletions"),
        changed_files=pr.get("changed_files"),
        mergeable=pr.get("mergeable"),
        created_at=pr.get("created_at"),
        updated_at=pr.get("updated_at"),
    )


def to_workflow_run(run: dict[str, Any]) -> GitHubWorkflowRun:
    return GitHubWorkflowRun(
        id=run["id"],
        name=run.get("name"),
        workflow_file=run.get("workflow_file"),
        branch=run.get("head_branch"),
        commit_sha=run.get("head_sha", ""),
        status=map_run_status(run.get("status"), run.get("conclusion")),
        event=run.get("event"),
        html_url=run.get("html_url"),
        created_at=run.get("created_at"),
        updated_at=run.get("updated_at"),
    )


@router.get(
    "/pull-requests",
    response_model=list[GitHubPullRequest],
    summary="List pull requests from GitHub",
    responses=PROVIDER_ERRORS,
)
async def list_pull_requests(
    github: GitHub,
    state: str = Query("all", pattern="^(all|open|closed)$"),
    limit: int = Query(10, ge=1, le=100),
) -> list[GitHubPullRequest]:
    try:
        pulls = await github.list_pull_requests(state=state, per_page=limit)
    except GitHubAPIError as e:
        raise github_http_error(e) from e
    return [to_pull_request(pr) for pr in pulls]


@router.get(
    "/workflow-runs",
    response_model=list[GitHubWorkflowRun],
    summary="List workflow runs from GitHub",
    responses=PROVIDER_ERRORS,
)
async def list_workflow_runs(
    github: GitHub,
    limit: int = Query(10, ge=1, le=100),
) -> list[GitHubWorkflowRun]:
    try:
        runs = await github.list_workflow_runs(per_page=limit)
    except GitHubAPIError as e:
        raise github_http_error(e) from e
    return [to_workflow_run(run) for run in runs]


@router.post(
    "/approve",
    response_model=GitHubReviewResponse,
    summary="Submit a review on GitHub",
    responses=PROVIDER_ERRORS,
)
async def submit_review(
    data: GitHubReviewRequest,
    github: GitHub,
    db: DbSession,
) -> GitHubReviewResponse:
    """
    Submits the review to GitHub, then records it locally when the pull
    request is mirrored. Local approvals go through the same atomic write as
    webhook reviews and never merge on their own. They are keyed on the
    provider review id, so the webhook GitHub sends for the same review is
    not counted again.
    """
    try:
        review = await github.create_review(data.pull_number, data.action, data.body)
    except GitHubAPIError as e:
        raise github_http_error(e) from e

    merge_request = await get_merge_request_by_external_id(db, str(data.pull_number))
    merge_request_id = None
    if merge_request is not None and data.action != "comment":
        try:
            if data.action == "approve":
                await record_approval(
                    db, merge_request.id, data.approver, data.body, review_id=review.get("id")
                )
            else:
                await record_rejection(
                    db, merge_request.id, data.approver, data.body, review_id=review.get("id")
                )
            merge_request_id = merge_request.id
        except ApprovalNotAllowed:
            logger.info(
                "local_review_skipped",
                pull_number=data.pull_number,
                status=merge_request.status.value,
            )

    return GitHubReviewResponse(
        review_id=review.get("id", 0),
        state=review.get("state", ""),
        merge_request_id=merge_request_id,
    )
