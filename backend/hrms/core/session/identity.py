"""
Identity Provider
=================

Thin client for the hosted auth service (Supabase GoTrue REST API).

Errors are split into transient (network, timeouts, 5xx) and fatal (4xx:
bad credentials, revoked or already-rotated refresh token) so the session
manager can keep a still-valid session through a provider outage.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import structlog

from hrms.core.config import Settings, get_settings

logger = structlog.get_logger()


class IdentityProviderError(Exception):
    """Raised for any failed call to the identity provider."""

    def __init__(
        self,
        message: str,
        *,
        transient: bool = False,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.transient = transient
        self.status_code = status_code


@dataclass
class TokenGrant:
    """Tokens plus the identity they were issued for."""

    access_token: str
    refresh_token: str
    user: dict[str, Any] = field(default_factory=dict)
    expires_in: Optional[int] = None


class IdentityProvider(ABC):
    """Operations the session layer needs from an auth service."""

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> TokenGrant:
        ...

    @abstractmethod
    async def refresh(self, refresh_token: str) -> TokenGrant:
        ...

    @abstractmethod
    async def sign_out(self, access_token: str) -> None:
        ...

    @abstractmethod
    async def get_user(self, access_token: str) -> dict[str, Any]:
        ...


def session_user_fields(user: dict[str, Any]) -> dict[str, Any]:
    """
    Flatten a provider user record into SessionUser fields.

    Role comes from app_metadata first (server controlled), then user_metadata.
    """
    app_meta = user.get("app_metadata") or {}
    user_meta = user.get("user_metadata") or {}
    fields = {k: v for k, v in user_meta.items() if k not in ("id", "email", "role")}
    fields.update(
        id=str(user.get("id", "")),
        email=user.get("email") or "",
        role=app_meta.get("role") or user_meta.get("role"),
    )
    return fields


class SupabaseIdentityProvider(IdentityProvider):
    """GoTrue REST client."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self.base_url = self.settings.SUPABASE_URL.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=self.settings.IDENTITY_TIMEOUT_SECONDS)

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self, access_token: Optional[str] = None) -> dict[str, str]:
        headers = {
            "apikey": self.settings.SUPABASE_ANON_KEY,
            "Content-Type": "application/json",
        }
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        access_token: Optional[str] = None,
        params: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(access_token),
                params=params,
                json=json,
            )
        except httpx.HTTPError as e:
            logger.warning("identity_provider_unreachable", path=path, error=str(e))
            raise IdentityProviderError(
                f"Identity provider unreachable: {e}", transient=True
            ) from e

        if response.status_code >= 500:
            logger.warning("identity_provider_error", path=path, status=response.status_code)
            raise IdentityProviderError(
                "Identity provider error",
                transient=True,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            message = (
                body.get("error_description")
                or body.get("msg")
                or body.get("message")
                or "Request rejected by identity provider"
            )
            raise IdentityProviderError(message, status_code=response.status_code)
        return response

    def _grant(self, response: httpx.Response) -> TokenGrant:
        data = response.json()
        try:
            return TokenGrant(
                access_token=data["access_token"],
                refresh_token=data["refresh_token"],
                user=data.get("user") or {},
                expires_in=data.get("expires_in"),
            )
        except KeyError as e:
            raise IdentityProviderError(f"Malformed token response: missing {e}") from e

    async def sign_in_with_password(self, email: str, password: str) -> TokenGrant:
        response = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return self._grant(response)

    async def refresh(self, refresh_token: str) -> TokenGrant:
        response = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        return self._grant(response)

    async def sign_out(self, access_token: str) -> None:
        await self._request("POST", "/auth/v1/logout", access_token=access_token)

    async def get_user(self, access_token: str) -> dict[str, Any]:
        response = await self._request("GET", "/auth/v1/user", access_token=access_token)
        return response.json()
