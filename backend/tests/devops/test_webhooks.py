"""
HRMS Suite - GitHub Webhook Tests
=================================

Signature checks and the event normalizer driven end to end through the
webhook receiver.
"""

import hashlib
import hmac

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from hrms.core.config import settings
from hrms.core.models import Notification, NotificationType

WEBHOOK_URL = "/api/v1/webhooks/github"


def sign_body(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


# ==========================================================================
# Signature and envelope
# ==========================================================================

class TestWebhookEnvelope:
    """Everything that happens before an event reaches the normalizer."""

    async def test_rejected_without_configured_secret(self, client: AsyncClient, monkeypatch):
        monkeypatch.setattr(settings, "GITHUB_WEBHOOK_SECRET", None)
        body = b'{"zen": "Keep it logically awesome."}'

        response = await client.post(
            WEBHOOK_URL,
            content=body,
            headers={"X-GitHub-Event": "ping", "X-Hub-Signature-256": sign_body(body, "any-secret")},
        )

        assert response.status_code == 401

    async def test_rejected_without_signature(self, client: AsyncClient, webhook_secret):
        response = await client.post(
            WEBHOOK_URL, content=b"{}", headers={"X-GitHub-Event": "ping"}
        )
        assert response.status_code == 401

    async def test_rejected_with_wrong_signature(self, client: AsyncClient, webhook_secret):
        body = b'{"ref": "refs/heads/main"}'

        response = await client.post(
            WEBHOOK_URL,
            content=body,
            headers={"X-GitHub-Event": "push", "X-Hub-Signature-256": sign_body(body, "other-secret")},
        )

        assert response.status_code == 401

    async def test_signature_covers_exact_body(self, client: AsyncClient, webhook_secret):
        body = b'{"ref": "refs/heads/main"}'

        response = await client.post(
            WEBHOOK_URL,
            content=body + b" ",
            headers={"X-GitHub-Event": "push", "X-Hub-Signature-256": sign_body(body, webhook_secret)},
        )

        assert response.status_code == 401

    async def test_missing_event_header(self, client: AsyncClient, webhook_secret):
        body = b"{}"

        response = await client.post(
            WEBHOOK_URL, content=body, headers={"X-Hub-Signature-256": sign_body(body, webhook_secret)}
        )

        assert response.status_code == 400

    async def test_ping(self, send_webhook):
        response = await send_webhook("ping", {"zen": "Design for failure."})

        assert response.status_code == 200
        assert response.json() == {"status": "pong"}

    async def test_unsupported_event_is_accepted_and_ignored(self, send_webhook):
        response = await send_webhook("issues", {"action": "opened"})

        assert response.status_code == 202
        assert response.json() == {"status": "ignored", "event": "issues"}

    async def test_invalid_payload(self, send_webhook):
        response = await send_webhook("push", {"head_commit": {"id": "abc"}})
        assert response.status_code == 400

    async def test_body_not_json(self, client: AsyncClient, webhook_secret):
        body = b"ref=refs/heads/main"

        response = await client.post(
            WEBHOOK_URL,
            content=body,
            headers={"X-GitHub-Event": "push", "X-Hub-Signature-256": sign_body(body, webhook_secret)},
        )

        assert response.status_code == 400

    async def test_heartbeat(self, client: AsyncClient):
        response = await client.get(WEBHOOK_URL)

        assert response.status_code == 200
        assert response.json()["success"] is True


# ==========================================================================
# push
# ==========================================================================

class TestPushEvents:
    async def test_push_creates_pending_pipeline_with_jobs(self, client: AsyncClient, send_webhook):
        response = await send_webhook(
            "push",
            {
                "ref": "refs/heads/feature/x",
                "after": "abc123",
                "head_commit": {
                    "id": "abc123",
                    "message": "fix bug",
                    "author": {"name": "alice"},
                },
            },
        )

        assert response.status_code == 200
        result = response.json()
        assert result["processed"] is True
        assert result["action"] == "pipeline_created"
        assert result["data"]["jobs"] == 5

        pipelines = (await client.get("/api/v1/devops/pipelines")).json()
        assert pipelines["total"] == 1
        pipeline = pipelines["items"][0]
        assert pipeline["id"] == result["data"]["pipeline_id"]
        assert pipeline["branch"] == "feature/x"
        assert pipeline["commit_sha"] == "abc123"
        assert pipeline["author"] == "alice"
        assert pipeline["message"] == "fix bug"
        assert pipeline["status"] == "pending"
        assert pipeline["environment"] == "development"
        assert [job["name"] for job in pipeline["jobs"]] == [
            "lint",
            "unit-test",
            "build",
            "integration-test",
            "deploy",
        ]
        assert all(job["status"] == "pending" for job in pipeline["jobs"])

    @pytest.mark.parametrize(
        "ref, environment",
        [
            ("refs/heads/main", "production"),
            ("refs/heads/staging", "staging"),
            ("refs/heads/develop", "development"),
        ],
    )
    async def test_environment_from_ref(self, client: AsyncClient, send_webhook, push_payload, ref, environment):
        response = await send_webhook("push", push_payload(ref=ref))
        pipeline_id = response.json()["data"]["pipeline_id"]

        pipeline = (await client.get(f"/api/v1/devops/pipelines/{pipeline_id}")).json()

        assert pipeline["environment"] == environment

    async def test_push_to_main_notifies_team(self, send_webhook, push_payload, db_session):
        await send_webhook("push", push_payload(ref="refs/heads/main"))

        notifications = (await db_session.execute(select(Notification))).scalars().all()
        assert len(notifications) == 1
        assert notifications[0].type == NotificationType.PIPELINE
        assert notifications[0].recipient == "team"

    async def test_feature_push_does_not_notify(self, send_webhook, push_payload, db_session):
        await send_webhook("push", push_payload(ref="refs/heads/feature/quiet"))

        count = (await db_session.execute(select(func.count()).select_from(Notification))).scalar()
        assert count == 0

    async def test_branch_deletion_is_ignored(self, client: AsyncClient, send_webhook, push_payload):
        response = await send_webhook("push", push_payload(deleted=True, head_commit=None))

        assert response.status_code == 200
        assert response.json()["processed"] is False
        assert (await client.get("/api/v1/devops/pipelines")).json()["total"] == 0


# ==========================================================================
# workflow_run
# ==========================================================================

def workflow_run(sha: str, status: str, conclusion=None, pull_requests=()) -> dict:
    return {
        "action": "completed" if status == "completed" else "in_progress",
        "workflow_run": {
            "id": 9001,
            "name": "CI",
            "head_sha": sha,
            "head_branch": "main",
            "status": status,
            "conclusion": conclusion,
            "pull_requests": [{"number": n} for n in pull_requests],
        },
    }


class TestWorkflowRunEvents:
    @pytest.mark.parametrize(
        "conclusion, expected",
        [("success", "success"), ("failure", "failed"), ("cancelled", "cancelled")],
    )
    async def test_completed_run_sets_pipeline_status(
        self, client: AsyncClient, send_webhook, push_payload, conclusion, expected
    ):
        pushed = await send_webhook("push", push_payload(sha="deadbeef"))
        pipeline_id = pushed.json()["data"]["pipeline_id"]

        response = await send_webhook("workflow_run", workflow_run("deadbeef", "completed", conclusion))

        assert response.json()["data"]["pipelines_updated"] == 1
        pipeline = (await client.get(f"/api/v1/devops/pipelines/{pipeline_id}")).json()
        assert pipeline["status"] == expected
        assert pipeline["finished_at"] is not None

    async def test_run_in_progress(self, client: AsyncClient, send_webhook, push_payload):
        pushed = await send_webhook("push", push_payload(sha="cafe01"))
        pipeline_id = pushed.json()["data"]["pipeline_id"]

        await send_webhook("workflow_run", workflow_run("cafe01", "in_progress"))

        pipeline = (await client.get(f"/api/v1/devops/pipelines/{pipeline_id}")).json()
        assert pipeline["status"] == "running"
        assert pipeline["started_at"] is not None

    async def test_unknown_commit(self, send_webhook):
        response = await send_webhook("workflow_run", workflow_run("nope", "completed", "success"))

        assert response.status_code == 200
        assert response.json()["processed"] is False

    async def test_run_updates_merge_request_ci_status(
        self, client: AsyncClient, send_webhook, pull_request_payload
    ):
        opened = await send_webhook("pull_request", pull_request_payload(number=12))
        merge_request_id = opened.json()["data"]["merge_request_id"]

        await send_webhook("workflow_run", workflow_run("f00d", "completed", "failure", pull_requests=[12]))

        merge_request = (await client.get(f"/api/v1/devops/merge-requests/{merge_request_id}")).json()
        assert merge_request["pipeline_status"] == "failed"


# ==========================================================================
# pull_request
# ==========================================================================

class TestPullRequestEvents:
    async def test_opened_creates_merge_request(self, client: AsyncClient, send_webhook, pull_request_payload, db_session):
        response = await send_webhook("pull_request", pull_request_payload(number=42, base="main"))

        assert response.json()["action"] == "created"
        merge_request_id = response.json()["data"]["merge_request_id"]
        merge_request = (await client.get(f"/api/v1/devops/merge-requests/{merge_request_id}")).json()
        assert merge_request["external_id"] == "42"
        assert merge_request["status"] == "open"
        assert merge_request["approvals"] == 0
        assert merge_request["required_approvals"] == 2
        assert merge_request["author"] == "dev1"
        assert merge_request["source_branch"] == "feature/leave-balance"
        assert merge_request["additions"] == 120
        assert merge_request["files_changed"] == 5

        notification = (await db_session.execute(select(Notification))).scalar_one()
        assert notification.type == NotificationType.MERGE_REQUEST

    async def test_opened_against_develop_needs_one_approval(self, client: AsyncClient, send_webhook, pull_request_payload):
        response = await send_webhook("pull_request", pull_request_payload(base="develop"))
        merge_request_id = response.json()["data"]["merge_request_id"]

        merge_request = (await client.get(f"/api/v1/devops/merge-requests/{merge_request_id}")).json()
        assert merge_request["required_approvals"] == 1

    async def test_draft_opened(self, client: AsyncClient, send_webhook, pull_request_payload):
        response = await send_webhook("pull_request", pull_request_payload(draft=True))
        merge_request_id = response.json()["data"]["merge_request_id"]

        merge_request = (await client.get(f"/api/v1/devops/merge-requests/{merge_request_id}")).json()
        assert merge_request["status"] == "draft"

    async def test_reopened_updates_existing(self, client: AsyncClient, send_webhook, pull_request_payload):
        first = await send_webhook("pull_request", pull_request_payload(number=5))
        await send_webhook("pull_request", pull_request_payload(number=5, action="closed"))

        reopened = await send_webhook("pull_request", pull_request_payload(number=5, action="reopened"))

        assert reopened.json()["action"] == "reopened"
        assert reopened.json()["data"]["merge_request_id"] == first.json()["data"]["merge_request_id"]
        listing = (await client.get("/api/v1/devops/merge-requests")).json()
        assert listing["total"] == 1
        assert listing["items"][0]["status"] == "open"

    @pytest.mark.parametrize("merged, expected", [(True, "merged"), (False, "closed")])
    async def test_closed(self, client: AsyncClient, send_webhook, pull_request_payload, merged, expected):
        opened = await send_webhook("pull_request", pull_request_payload(number=8))
        merge_request_id = opened.json()["data"]["merge_request_id"]

        response = await send_webhook(
            "pull_request", pull_request_payload(number=8, action="closed", merged=merged)
        )

        assert response.json()["processed"] is True
        merge_request = (await client.get(f"/api/v1/devops/merge-requests/{merge_request_id}")).json()
        assert merge_request["status"] == expected

    async def test_synchronize_updates_diff_stats(self, client: AsyncClient, send_webhook, pull_request_payload):
        opened = await send_webhook("pull_request", pull_request_payload(number=9))
        merge_request_id = opened.json()["data"]["merge_request_id"]

        await send_webhook(
            "pull_request",
            pull_request_payload(number=9, action="synchronize", additions=200, deletions=30, changed_files=11),
        )

        merge_request = (await client.get(f"/api/v1/devops/merge-requests/{merge_request_id}")).json()
        assert (merge_request["additions"], merge_request["deletions"], merge_request["files_changed"]) == (200, 30, 11)

    async def test_draft_transitions(self, client: AsyncClient, send_webhook, pull_request_payload):
        opened = await send_webhook("pull_request", pull_request_payload(number=10, draft=True))
        merge_request_id = opened.json()["data"]["merge_request_id"]
        url = f"/api/v1/devops/merge-requests/{merge_request_id}"

        await send_webhook("pull_request", pull_request_payload(number=10, action="ready_for_review"))
        assert (await client.get(url)).json()["status"] == "open"

        await send_webhook("pull_request", pull_request_payload(number=10, action="converted_to_draft"))
        assert (await client.get(url)).json()["status"] == "draft"

    async def test_close_for_unknown_merge_request(self, send_webhook, pull_request_payload):
        response = await send_webhook("pull_request", pull_request_payload(number=404, action="closed"))

        assert response.status_code == 200
        assert response.json()["processed"] is False
        assert response.json()["action"] == "unknown_merge_request"

    async def test_unhandled_action(self, send_webhook, pull_request_payload):
        await send_webhook("pull_request", pull_request_payload(number=11))

        response = await send_webhook("pull_request", pull_request_payload(number=11, action="labeled"))

        assert response.json()["processed"] is False


# ==========================================================================
# pull_request_review
# ==========================================================================

class TestReviewEvents:
    async def open_pr(self, send_webhook, pull_request_payload, number: int, base: str) -> str:
        response = await send_webhook("pull_request", pull_request_payload(number=number, base=base))
        return response.json()["data"]["merge_request_id"]

    async def test_approval_counts_without_merging(
        self, client: AsyncClient, send_webhook, pull_request_payload, review_payload
    ):
        """Enough provider approvals mark the request approved; the merge comes from the provider."""
        merge_request_id = await self.open_pr(send_webhook, pull_request_payload, 21, "develop")

        response = await send_webhook("pull_request_review", review_payload(number=21))

        data = response.json()
        assert data["processed"] is True
        assert data["action"] == "approved"
        assert data["data"]["approvals"] == 1
        assert data["data"]["approved"] is True

        merge_request = (await client.get(f"/api/v1/devops/merge-requests/{merge_request_id}")).json()
        assert merge_request["status"] == "open"
        assert merge_request["approved_at"] is not None
        assert merge_request["approval_history"][0]["approver"] == "reviewer1"
        assert merge_request["approval_history"][0]["action"] == "approve"

    async def test_main_needs_two_approvals(
        self, client: AsyncClient, send_webhook, pull_request_payload, review_payload
    ):
        merge_request_id = await self.open_pr(send_webhook, pull_request_payload, 22, "main")

        first = await send_webhook("pull_request_review", review_payload(number=22, login="alice"))
        assert first.json()["data"]["approved"] is False

        second = await send_webhook("pull_request_review", review_payload(number=22, login="bob"))
        assert second.json()["data"]["approvals"] == 2
        assert second.json()["data"]["approved"] is True

        merge_request = (await client.get(f"/api/v1/devops/merge-requests/{merge_request_id}")).json()
        assert merge_request["pending_approvals"] == 0
        assert len(merge_request["approval_history"]) == 2

    async def test_changes_requested(
        self, client: AsyncClient, send_webhook, pull_request_payload, review_payload
    ):
        merge_request_id = await self.open_pr(send_webhook, pull_request_payload, 23, "develop")

        response = await send_webhook(
            "pull_request_review", review_payload(number=23, state="changes_requested")
        )

        assert response.json()["action"] == "changes_requested"
        merge_request = (await client.get(f"/api/v1/devops/merge-requests/{merge_request_id}")).json()
        assert merge_request["approvals"] == 0
        assert merge_request["status"] == "open"
        assert merge_request["approval_history"][0]["action"] == "reject"

    async def test_draft_accepts_approvals(
        self, client: AsyncClient, send_webhook, pull_request_payload, review_payload
    ):
        await send_webhook("pull_request", pull_request_payload(number=24, draft=True))

        response = await send_webhook("pull_request_review", review_payload(number=24))

        assert response.json()["processed"] is True

    async def test_review_on_closed_request(
        self, send_webhook, pull_request_payload, review_payload
    ):
        await self.open_pr(send_webhook, pull_request_payload, 25, "develop")
        await send_webhook("pull_request", pull_request_payload(number=25, action="closed"))

        response = await send_webhook("pull_request_review", review_payload(number=25))

        assert response.json()["processed"] is False
        assert response.json()["action"] == "not_open"

    async def test_review_for_unknown_request(self, send_webhook, review_payload):
        response = await send_webhook("pull_request_review", review_payload(number=999))

        assert response.json()["processed"] is False
        assert response.json()["action"] == "unknown_merge_request"

    async def test_comment_review_is_ignored(self, send_webhook, pull_request_payload, review_payload):
        await self.open_pr(send_webhook, pull_request_payload, 26, "develop")

        response = await send_webhook("pull_request_review", review_payload(number=26, state="commented"))

        assert response.json()["processed"] is False

    async def test_redelivered_review_counted_once(
        self, client: AsyncClient, send_webhook, pull_request_payload, review_payload
    ):
        merge_request_id = await self.open_pr(send_webhook, pull_request_payload, 27, "main")
        delivery = review_payload(number=27, login="alice", review_id=3001)

        first = await send_webhook("pull_request_review", delivery)
        second = await send_webhook("pull_request_review", delivery)

        assert first.json()["processed"] is True
        assert second.json()["processed"] is False
        assert second.json()["action"] == "duplicate_review"
        merge_request = (await client.get(f"/api/v1/devops/merge-requests/{merge_request_id}")).json()
        assert merge_request["approvals"] == 1
        assert merge_request["approved_at"] is None
        assert len(merge_request["approval_history"]) == 1

    async def test_redelivered_change_request_recorded_once(
        self, client: AsyncClient, send_webhook, pull_request_payload, review_payload
    ):
        merge_request_id = await self.open_pr(send_webhook, pull_request_payload, 28, "develop")
        delivery = review_payload(number=28, state="changes_requested", review_id=3002)

        await send_webhook("pull_request_review", delivery)
        await send_webhook("pull_request_review", delivery)

        merge_request = (await client.get(f"/api/v1/devops/merge-requests/{merge_request_id}")).json()
        assert len(merge_request["approval_history"]) == 1
