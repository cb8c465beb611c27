"""
HRMS Suite - Integrations API Tests
===================================
"""

from uuid import uuid4

from httpx import AsyncClient

from hrms.core.models import Integration, IntegrationStatus, IntegrationType

INTEGRATIONS = "/api/v1/integrations"


class TestIntegrationSettings:
    async def test_defaults_enabled(self, client: AsyncClient):
        response = await client.get(INTEGRATIONS)

        assert response.status_code == 200
        assert response.json() == [
            {"integration": "teams", "enabled": True, "updated_by": None},
            {"integration": "slack", "enabled": True, "updated_by": None},
            {"integration": "github", "enabled": True, "updated_by": None},
        ]

    async def test_disable_and_reenable(self, client: AsyncClient):
        disabled = await client.put(
            INTEGRATIONS, json={"integration": "slack", "enabled": False, "updated_by": "it-admin"}
        )
        assert disabled.json() == {"integration": "slack", "enabled": False, "updated_by": "it-admin"}

        await client.put(INTEGRATIONS, json={"integration": "slack", "enabled": True})

        settings = {s["integration"]: s for s in (await client.get(INTEGRATIONS)).json()}
        assert settings["slack"]["enabled"] is True
        assert settings["slack"]["updated_by"] == "admin"

    async def test_unknown_integration_listed_after_known(self, client: AsyncClient):
        await client.put(INTEGRATIONS, json={"integration": "jira", "enabled": False})

        names = [s["integration"] for s in (await client.get(INTEGRATIONS)).json()]

        assert names == ["teams", "slack", "github", "jira"]


class TestIntegrationApprovals:
    async def test_request_starts_pending(self, client: AsyncClient):
        response = await client.post(
            f"{INTEGRATIONS}/approvals",
            json={
                "request_type": "integration_setup",
                "title": "Connect HR Teams channel",
                "requested_by": "hr.lead",
                "metadata": {"channel": "hr-announcements"},
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "pending"
        assert data["reviewed_at"] is None
        assert data["metadata"] == {"channel": "hr-announcements"}

    async def test_approval_activates_integration(self, client: AsyncClient, db_session):
        integration = Integration(name="HR Teams", type=IntegrationType.TEAMS)
        db_session.add(integration)
        await db_session.flush()
        created = (
            await client.post(
                f"{INTEGRATIONS}/approvals",
                json={
                    "integration_id": str(integration.id),
                    "request_type": "integration_setup",
                    "title": "Connect HR Teams channel",
                    "requested_by": "hr.lead",
                },
            )
        ).json()

        response = await client.put(
            f"{INTEGRATIONS}/approvals/{created['id']}",
            json={"status": "approved", "approved_by": "it-admin", "reviewer_notes": "OK"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "approved"
        assert data["approved_by"] == "it-admin"
        assert data["reviewed_at"] is not None
        assert data["metadata"]["reviewer_notes"] == "OK"

        await db_session.refresh(integration)
        assert integration.status == IntegrationStatus.ACTIVE
        assert integration.approved_by == "it-admin"

    async def test_rejection_leaves_integration_pending(self, client: AsyncClient, db_session):
        integration = Integration(name="Ops Slack", type=IntegrationType.SLACK)
        db_session.add(integration)
        await db_session.flush()
        created = (
            await client.post(
                f"{INTEGRATIONS}/approvals",
                json={
                    "integration_id": str(integration.id),
                    "request_type": "integration_setup",
                    "title": "Connect Slack",
                    "requested_by": "ops",
                },
            )
        ).json()

        await client.put(
            f"{INTEGRATIONS}/approvals/{created['id']}",
            json={"status": "rejected", "approved_by": "it-admin"},
        )

        await db_session.refresh(integration)
        assert integration.status == IntegrationStatus.PENDING

    async def test_cannot_decide_twice(self, client: AsyncClient):
        created = (
            await client.post(
                f"{INTEGRATIONS}/approvals",
                json={"request_type": "access", "title": "Grant", "requested_by": "dev1"},
            )
        ).json()
        url = f"{INTEGRATIONS}/approvals/{created['id']}"
        await client.put(url, json={"status": "approved", "approved_by": "a"})

        response = await client.put(url, json={"status": "rejected", "approved_by": "b"})

        assert response.status_code == 409

    async def test_pending_is_not_a_decision(self, client: AsyncClient):
        created = (
            await client.post(
                f"{INTEGRATIONS}/approvals",
                json={"request_type": "access", "title": "Grant", "requested_by": "dev1"},
            )
        ).json()

        response = await client.put(
            f"{INTEGRATIONS}/approvals/{created['id']}",
            json={"status": "pending", "approved_by": "a"},
        )

        assert response.status_code == 400

    async def test_decide_missing(self, client: AsyncClient):
        response = await client.put(
            f"{INTEGRATIONS}/approvals/{uuid4()}",
            json={"status": "approved", "approved_by": "a"},
        )
        assert response.status_code == 404

    async def test_list_by_status(self, client: AsyncClient):
        for title in ("one", "two"):
            await client.post(
                f"{INTEGRATIONS}/approvals",
                json={"request_type": "access", "title": title, "requested_by": "dev1"},
            )
        first = (await client.get(f"{INTEGRATIONS}/approvals")).json()[0]
        await client.put(
            f"{INTEGRATIONS}/approvals/{first['id']}",
            json={"status": "approved", "approved_by": "a"},
        )

        pending = (await client.get(f"{INTEGRATIONS}/approvals", params={"status": "pending"})).json()

        assert len(pending) == 1
        assert pending[0]["id"] != first["id"]


class TestIntegrationNotifications:
    async def test_send(self, client: AsyncClient):
        response = await client.post(
            f"{INTEGRATIONS}/notifications",
            json={
                "type": "leave_request",
                "title": "Leave request",
                "message": "Jane requested 3 days off",
                "priority": "high",
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "sent"
        assert data["sent_at"] is not None
        assert data["priority"] == "high"
        assert data["metadata"] == {"integration": "teams"}

    async def test_disabled_integration_rejects(self, client: AsyncClient):
        await client.put(INTEGRATIONS, json={"integration": "teams", "enabled": False})

        response = await client.post(
            f"{INTEGRATIONS}/notifications",
            json={"type": "x", "title": "t", "message": "m"},
        )

        assert response.status_code == 409
        assert (await client.get(f"{INTEGRATIONS}/notifications")).json() == []

    async def test_update_status(self, client: AsyncClient):
        created = (
            await client.post(
                f"{INTEGRATIONS}/notifications",
                json={"integration": "slack", "type": "x", "title": "t", "message": "m"},
            )
        ).json()

        response = await client.put(
            f"{INTEGRATIONS}/notifications/{created['id']}", json={"status": "read"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "read"
        assert response.json()["sent_at"] is not None

    async def test_update_missing(self, client: AsyncClient):
        response = await client.put(f"{INTEGRATIONS}/notifications/{uuid4()}", json={"status": "read"})
        assert response.status_code == 404

    async def test_list_by_status(self, client: AsyncClient):
        created = (
            await client.post(
                f"{INTEGRATIONS}/notifications",
                json={"type": "x", "title": "t", "message": "m"},
            )
        ).json()
        await client.put(f"{INTEGRATIONS}/notifications/{created['id']}", json={"status": "delivered"})

        delivered = (await client.get(f"{INTEGRATIONS}/notifications", params={"status": "delivered"})).json()
        sent = (await client.get(f"{INTEGRATIONS}/notifications", params={"status": "sent"})).json()

        assert len(delivered) == 1
        assert sent == []
