"""
HRMS Suite - Test Fixtures
==========================

Shared pytest fixtures for all tests.
"""

import asyncio
import hashlib
import hmac
import itertools
import json
from collections.abc import AsyncGenerator
from typing import Any, Optional
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from hrms.api.deps import get_github_client, get_identity_provider
from hrms.api.main import app
from hrms.core.config import settings
from hrms.core.database import Base, get_db
from hrms.core.devops.github import GitHubClient
from hrms.core.session.identity import IdentityProvider, IdentityProviderError, TokenGrant


# ==========================================================================
# Test Database Setup
# ==========================================================================

# Use in-memory SQLite for tests (fast)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


# ==========================================================================
# Identity Provider Double
# ==========================================================================

class FakeIdentityProvider(IdentityProvider):
    """
    In-memory auth service.

    Refresh tokens are single-use like the real provider: a rotated token is
    rejected with a 400. Set `fail_with` to make every call raise.
    """

    def __init__(self) -> None:
        self.passwords: dict[str, str] = {}
        self.users: dict[str, dict[str, Any]] = {}
        self.access_tokens: dict[str, dict[str, Any]] = {}
        self.refresh_tokens: dict[str, dict[str, Any]] = {}
        self.fail_with: Optional[IdentityProviderError] = None
        self.refresh_calls = 0
        self.signed_out: list[str] = []

    def add_user(self, email: str, password: str, role: str = "employee", **metadata: Any) -> dict[str, Any]:
        user = {
            "id": str(uuid4()),
            "email": email,
            "app_metadata": {"role": role},
            "user_metadata": metadata,
        }
        self.passwords[email] = password
        self.users[email] = user
        return user

    def issue(self, user: dict[str, Any]) -> TokenGrant:
        grant = TokenGrant(
            access_token=f"access-{uuid4().hex}",
            refresh_token=f"refresh-{uuid4().hex}",
            user=user,
            expires_in=3600,
        )
        self.access_tokens[grant.access_token] = user
        self.refresh_tokens[grant.refresh_token] = user
        return grant

    async def sign_in_with_password(self, email: str, password: str) -> TokenGrant:
        if self.fail_with:
            raise self.fail_with
        if self.passwords.get(email) != password:
            raise IdentityProviderError("Invalid login credentials", status_code=400)
        return self.issue(self.users[email])

    async def refresh(self, refresh_token: str) -> TokenGrant:
        self.refresh_calls += 1
        # Yield so concurrent refreshes interleave like real network calls
        await asyncio.sleep(0)
        if self.fail_with:
            raise self.fail_with
        user = self.refresh_tokens.pop(refresh_token, None)
        if user is None:
            raise IdentityProviderError("Invalid Refresh Token: Already Used", status_code=400)
        return self.issue(user)

    async def sign_out(self, access_token: str) -> None:
        if self.fail_with:
            raise self.fail_with
        self.access_tokens.pop(access_token, None)
        self.signed_out.append(access_token)

    async def get_user(self, access_token: str) -> dict[str, Any]:
        if self.fail_with:
            raise self.fail_with
        user = self.access_tokens.get(access_token)
        if user is None:
            raise IdentityProviderError("invalid JWT", status_code=401)
        return user


# ==========================================================================
# GitHub API Double
# ==========================================================================

class FakeGitHubAPI:
    """
    Routes `(method, path)` to canned JSON responses for httpx.MockTransport.

    Unrouted requests answer 404. Every request is kept in `requests`.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], tuple[int, Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, body: Any, status_code: int = 200) -> None:
        self.routes[(method, f"/repos/{settings.GITHUB_OWNER}/{settings.GITHUB_REPO}{path}")] = (
            status_code,
            body,
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status_code, body = self.routes.get(
            (request.method, request.url.path), (404, {"message": "Not Found"})
        )
        return httpx.Response(status_code, json=body)

    def client(self, token: Optional[str] = "test-token") -> GitHubClient:
        return GitHubClient(
            settings.model_copy(update={"GITHUB_TOKEN": token}),
            client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)),
        )


# ==========================================================================
# Database Fixtures
# ==========================================================================

@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a clean database session for each test.

    Creates all tables before test, drops after.
    """
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestingSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


# ==========================================================================
# Provider Fixtures
# ==========================================================================

@pytest.fixture
def identity() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def github_api() -> FakeGitHubAPI:
    return FakeGitHubAPI()


@pytest_asyncio.fixture
async def github_client(github_api: FakeGitHubAPI) -> AsyncGenerator[GitHubClient, None]:
    client = github_api.client()
    yield client
    await client.close()


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession,
    identity: FakeIdentityProvider,
    github_client: GitHubClient,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Provide test HTTP client with database and provider overrides.
    """
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity_provider] = lambda: identity
    app.dependency_overrides[get_github_client] = lambda: github_client

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ==========================================================================
# User Fixtures
# ==========================================================================

@pytest.fixture
def hr_user(identity: FakeIdentityProvider) -> dict[str, Any]:
    """HR user. Password: HrPass123!"""
    return identity.add_user("hr.lead@hrms.io", "HrPass123!", role="hr", name="HR Lead")


@pytest.fixture
def employee_user(identity: FakeIdentityProvider) -> dict[str, Any]:
    """Employee user. Password: EmpPass123!"""
    return identity.add_user("jane.doe@hrms.io", "EmpPass123!", role="employee")


@pytest.fixture
def auth_headers(identity: FakeIdentityProvider, hr_user: dict[str, Any]) -> dict[str, str]:
    """Authorization headers for the HR user."""
    grant = identity.issue(hr_user)
    return {"Authorization": f"Bearer {grant.access_token}"}


# ==========================================================================
# Webhook Fixtures
# ==========================================================================

WEBHOOK_SECRET = "test-webhook-secret"


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


@pytest.fixture
def webhook_secret(monkeypatch: pytest.MonkeyPatch) -> str:
    monkeypatch.setattr(settings, "GITHUB_WEBHOOK_SECRET", WEBHOOK_SECRET)
    return WEBHOOK_SECRET


@pytest.fixture
def send_webhook(client: AsyncClient, webhook_secret: str):
    """Post a correctly signed GitHub delivery."""

    async def _send(event: str, payload: Any) -> httpx.Response:
        body = json.dumps(payload).encode()
        return await client.post(
            "/api/v1/webhooks/github",
            content=body,
            headers={
                "Content-Type": "application/json",
                "X-GitHub-Event": event,
                "X-GitHub-Delivery": str(uuid4()),
                "X-Hub-Signature-256": sign(body, webhook_secret),
            },
        )

    return _send


# ==========================================================================
# Payload Builders
# ==========================================================================

@pytest.fixture
def push_payload():
    def _build(ref: str = "refs/heads/main", sha: Optional[str] = None, **overrides: Any) -> dict:
        sha = sha or uuid4().hex
        payload = {
            "ref": ref,
            "after": sha,
            "deleted": False,
            "head_commit": {
                "id": sha,
                "message": "Fix payroll rounding",
                "author": {"name": "Dev One", "username": "dev1"},
            },
        }
        payload.update(overrides)
        return payload

    return _build


@pytest.fixture
def pull_request_payload():
    def _build(
        number: int = 42,
        action: str = "opened",
        base: str = "main",
        draft: bool = False,
        merged: bool = False,
        **pr_overrides: Any,
    ) -> dict:
        pr = {
            "number": number,
            "title": "Add leave balance endpoint",
            "body": "Implements leave balances",
            "user": {"login": "dev1"},
            "head": {"ref": "feature/leave-balance", "sha": uuid4().hex},
            "base": {"ref": base},
            "draft": draft,
            "merged": merged,
            "additions": 120,
            "deletions": 8,
            "changed_files": 5,
        }
        pr.update(pr_overrides)
        return {"action": action, "number": number, "pull_request": pr}

    return _build


@pytest.fixture
def review_payload():
    review_ids = itertools.count(1001)

    def _build(
        number: int = 42,
        state: str = "approved",
        login: str = "reviewer1",
        review_id: Optional[int] = None,
    ) -> dict:
        return {
            "action": "submitted",
            "review": {
                "id": review_id or next(review_ids),
                "state": state,
                "body": "Looks good",
                "user": {"login": login},
            },
            "pull_request": {"number": number},
        }

    return _build
