"""
HRMS Suite - API Dependencies
=============================

Shared dependencies for FastAPI endpoints.
"""

from typing import Annotated, Any, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from hrms.core.database import get_db
from hrms.core.devops.github import GitHubAPIError, GitHubClient, GitHubNotConfigured
from hrms.core.session.identity import IdentityProvider, IdentityProviderError


# ==========================================================================
# Security
# ==========================================================================

security = HTTPBearer(auto_error=False)


# ==========================================================================
# Provider Clients
# ==========================================================================

def get_identity_provider(request: Request) -> IdentityProvider:
    """Identity provider client created in the application lifespan."""
    return request.app.state.identity


def get_github_client(request: Request) -> GitHubClient:
    """GitHub client created in the application lifespan."""
    return request.app.state.github


def identity_http_error(e: IdentityProviderError) -> HTTPException:
    """
    Translate a provider failure.

    Transient failures are upstream problems (502); rejections are
    authentication failures (401).
    """
    if e.transient:
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Identity provider unavailable",
        )
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=str(e),
        headers={"WWW-Authenticate": "Bearer"},
    )


def github_http_error(e: GitHubAPIError) -> HTTPException:
    if isinstance(e, GitHubNotConfigured):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="GitHub integration is not configured",
        )
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=str(e),
    )


# ==========================================================================
# User Dependencies
# ==========================================================================

async def get_bearer_token(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> str:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


async def get_current_user(
    token: Annotated[str, Depends(get_bearer_token)],
    identity: Annotated[IdentityProvider, Depends(get_identity_provider)],
) -> dict[str, Any]:
    """
    Resolve the bearer access token to the provider's user record.

    Raises:
        HTTPException: 401 for rejected tokens, 502 when the provider is down
    """
    try:
        return await identity.get_user(token)
    except IdentityProviderError as e:
        raise identity_http_error(e) from e


# ==========================================================================
# Type Aliases for Dependency Injection
# ==========================================================================

DbSession = Annotated[AsyncSession, Depends(get_db)]
Identity = Annotated[IdentityProvider, Depends(get_identity_provider)]
GitHub = Annotated[GitHubClient, Depends(get_github_client)]
BearerToken = Annotated[str, Depends(get_bearer_token)]
CurrentUser = Annotated[dict[str, Any], Depends(get_current_user)]
