"""
GitHub REST Client
==================

Read views and review submission for the DevOps dashboard, plus the mapping
from provider run status to the internal pipeline status.

Enrichment calls (per-PR details, workflow file names) degrade on failure:
the item is returned without the extra fields instead of failing the list.
"""

from typing import Any, Optional

import httpx
import structlog

from hrms.core.config import Settings, get_settings
from hrms.core.models import PipelineStatus

logger = structlog.get_logger()

USER_AGENT = "HRMS-DevOps-System"

REVIEW_EVENTS = {
    "approve": "APPROVE",
    "reject": "REQUEST_CHANGES",
    "comment": "COMMENT",
}

DEFAULT_REVIEW_BODIES = {
    "approve": "LGTM! Approved for merge.",
    "reject": "Changes requested.",
    "comment": "Reviewed from the HRMS admin dashboard.",
}


class GitHubAPIError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GitHubNotConfigured(GitHubAPIError):
    """No API token configured."""


def map_run_status(status: Optional[str], conclusion: Optional[str]) -> PipelineStatus:
    """
    Provider (status, conclusion) to the internal five-state enum.

    completed+success is success, completed+cancelled is cancelled, any other
    completion is failed; in_progress is running; everything else is pending.
    """
    if status == "completed":
        if conclusion == "success":
            return PipelineStatus.SUCCESS
        if conclusion == "cancelled":
            return PipelineStatus.CANCELLED
        return PipelineStatus.FAILED
    if status == "in_progress":
        return PipelineStatus.RUNNING
    return PipelineStatus.PENDING


class GitHubClient:
    """Repository-scoped client using a personal access or app token."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self.owner = self.settings.GITHUB_OWNER
        self.repo = self.settings.GITHUB_REPO
        self.base_url = self.settings.GITHUB_API_URL.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=self.settings.GITHUB_TIMEOUT_SECONDS)

    @property
    def enabled(self) -> bool:
        return bool(self.settings.GITHUB_TOKEN)

    async def close(self) -> None:
        await self._client.aclose()

    def _repo_path(self, path: str) -> str:
        return f"{self.base_url}/repos/{self.owner}/{self.repo}{path}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        if not self.enabled:
            raise GitHubNotConfigured("GitHub token is not configured")
        try:
            response = await self._client.request(
                method,
                self._repo_path(path),
                params=params,
                json=json,
                headers={
                    "Authorization": f"Bearer {self.settings.GITHUB_TOKEN}",
                    "Accept": "application/vnd.github.v3+json",
                    "User-Agent": USER_AGENT,
                },
            )
        except httpx.HTTPError as e:
            logger.error("github_request_failed", path=path, error=str(e))
            raise GitHubAPIError(f"GitHub unreachable: {e}") from e

        if response.is_error:
            logger.warning("github_api_error", path=path, status=response.status_code)
            raise GitHubAPIError(
                f"GitHub API error: {response.status_code}",
                status_code=response.status_code,
            )
        return response.json()

    # ======================================================================
    # Pull requests
    # ======================================================================

    async def get_pull_request(self, number: int) -> dict[str, Any]:
        return await self._request("GET", f"/pulls/{number}")

    async def list_pull_requests(self, state: str = "all", per_page: int = 10) -> list[dict[str, Any]]:
        """List pull requests, each enriched with its detail record when available."""
        pulls = await self._request("GET", "/pulls", params={"state": state, "per_page": per_page})
        enriched = []
        for pr in pulls:
            try:
                details = await self.get_pull_request(pr["number"])
            except GitHubAPIError as e:
                logger.warning("github_pr_enrichment_failed", number=pr.get("number"), error=str(e))
                details = {}
            enriched.append({**pr, **details})
        return enriched

    async def create_review(
        self,
        pull_number: int,
        action: str,
        body: Optional[str] = None,
    ) -> dict[str, Any]:
        try:
            event = REVIEW_EVENTS[action]
        except KeyError:
            raise ValueError(f"Unknown review action: {action}") from None
        review = await self._request(
            "POST",
            f"/pulls/{pull_number}/reviews",
            json={"event": event, "body": body or DEFAULT_REVIEW_BODIES[action]},
        )
        logger.info("github_review_submitted", pull_number=pull_number, review_event=event)
        return review

    # ======================================================================
    # Workflow runs
    # ======================================================================

    async def get_workflow(self, workflow_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/actions/workflows/{workflow_id}")

    async def list_workflow_runs(self, per_page: int = 10) -> list[dict[str, Any]]:
        """Recent runs with `workflow_file` added when the workflow lookup succeeds."""
        data = await self._request("GET", "/actions/runs", params={"per_page": per_page})
        runs = []
        workflows: dict[int, Optional[str]] = {}
        for run in data.get("workflow_runs", []):
            workflow_id = run.get("workflow_id")
            if workflow_id is not None and workflow_id not in workflows:
                try:
                    workflows[workflow_id] = (await self.get_workflow(workflow_id)).get("path")
                except GitHubAPIError as e:
                    logger.warning("github_workflow_enrichment_failed", workflow_id=workflow_id, error=str(e))
                    workflows[workflow_id] = None
            runs.append({**run, "workflow_file": workflows.get(workflow_id)})
        return runs
