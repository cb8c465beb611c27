"""
Provider Webhook Events
=======================

Closed set of GitHub event shapes the normalizer understands. Payloads are
validated into one of these at the boundary; anything else is rejected
before it can touch the database.
"""

from datetime import datetime
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class InvalidEventPayload(Exception):
    """Payload does not match the shape of its declared event."""

    def __init__(self, event: str, errors: list[dict[str, Any]]):
        self.event = event
        self.errors = errors
        fields = ", ".join(".".join(str(p) for p in e.get("loc", ())) for e in errors)
        super().__init__(f"Invalid {event} payload: {fields}")


class UnsupportedEvent(Exception):
    """Event name the normalizer does not handle."""

    def __init__(self, event: str):
        self.event = event
        super().__init__(f"Unsupported event: {event}")


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ==========================================================================
# Shared fragments
# ==========================================================================

class GitHubUser(_Payload):
    login: str


class CommitAuthor(_Payload):
    name: str
    username: Optional[str] = None
    email: Optional[str] = None


class HeadCommit(_Payload):
    id: str
    message: str = ""
    author: CommitAuthor
    timestamp: Optional[datetime] = None


class BranchRef(_Payload):
    ref: str
    sha: Optional[str] = None


class PullRequestRef(_Payload):
    number: int


# ==========================================================================
# push
# ==========================================================================

class PushEvent(_Payload):
    event: Literal["push"] = "push"
    ref: str
    after: Optional[str] = None
    deleted: bool = False
    head_commit: Optional[HeadCommit] = None

    @property
    def branch(self) -> str:
        return self.ref.removeprefix("refs/heads/")

    @property
    def creates_pipeline(self) -> bool:
        """Branch deletions and pushes with no head commit carry nothing to build."""
        return not self.deleted and self.head_commit is not None


# ==========================================================================
# pull_request
# ==========================================================================

class PullRequestPayload(_Payload):
    number: int
    title: str
    body: Optional[str] = None
    user: GitHubUser
    head: BranchRef
    base: BranchRef
    draft: bool = False
    merged: Optional[bool] = False
    additions: Optional[int] = 0
    deletions: Optional[int] = 0
    changed_files: Optional[int] = 0


class PullRequestEvent(_Payload):
    event: Literal["pull_request"] = "pull_request"
    action: str
    number: Optional[int] = None
    pull_request: PullRequestPayload


# ==========================================================================
# workflow_run
# ==========================================================================

class WorkflowRunPayload(_Payload):
    id: Optional[int] = None
    name: Optional[str] = None
    head_sha: str
    head_branch: Optional[str] = None
    status: Optional[str] = None
    conclusion: Optional[str] = None
    run_started_at: Optional[datetime] = None
    pull_requests: list[PullRequestRef] = Field(default_factory=list)


class WorkflowRunEvent(_Payload):
    event: Literal["workflow_run"] = "workflow_run"
    action: str
    workflow_run: WorkflowRunPayload


# ==========================================================================
# pull_request_review
# ==========================================================================

class ReviewPayload(_Payload):
    id: Optional[int] = None
    state: str
    body: Optional[str] = None
    user: GitHubUser


class PullRequestReviewEvent(_Payload):
    event: Literal["pull_request_review"] = "pull_request_review"
    action: str
    review: ReviewPayload
    pull_request: PullRequestRef


ProviderEvent = Union[PushEvent, PullRequestEvent, WorkflowRunEvent, PullRequestReviewEvent]

EVENT_TYPES: dict[str, type[_Payload]] = {
    "push": PushEvent,
    "pull_request": PullRequestEvent,
    "workflow_run": WorkflowRunEvent,
    "pull_request_review": PullRequestReviewEvent,
}


def parse_event(event_name: str, payload: Any) -> ProviderEvent:
    """
    Validate a decoded webhook body into its tagged variant.

    Raises UnsupportedEvent for names outside the set above and
    InvalidEventPayload when the body does not match.
    """
    model = EVENT_TYPES.get(event_name)
    if model is None:
        raise UnsupportedEvent(event_name)
    if not isinstance(payload, dict):
        raise InvalidEventPayload(event_name, [{"loc": ("body",), "msg": "expected an object"}])
    try:
        return model.model_validate({**payload, "event": event_name})
    except ValidationError as e:
        raise InvalidEventPayload(event_name, e.errors()) from e
