"""
HRMS Suite - Authentication API
===============================

Sign-in against the identity provider and cross-application session
hand-off. Sessions move between applications only through single-use
codes redeemed here; tokens never appear in a URL.
"""

from urllib.parse import urlencode

import structlog
from fastapi import APIRouter, HTTPException, status

from hrms.api.deps import BearerToken, CurrentUser, DbSession, Identity, identity_http_error
from hrms.core.config import settings
from hrms.core.schemas import (
    HandoffExchangeRequest,
    HandoffIssueRequest,
    HandoffIssueResponse,
    LoginRequest,
    LoginResponse,
    LogoutResponse,
    RefreshRequest,
    SessionUser,
    SharedSession,
)
from hrms.core.session.handoff import HandoffError, exchange_handoff_code, issue_handoff_code
from hrms.core.session.identity import IdentityProviderError, session_user_fields
from hrms.core.session.manager import build_session, system_clock_ms

logger = structlog.get_logger()

router = APIRouter(prefix="/auth", tags=["Authentication"])


def handoff_url(app: str, code: str) -> str:
    return f"{settings.app_url(app)}?{urlencode({'code': code})}"


# ==========================================================================
# Login
# ==========================================================================

@router.post(
    "/login",
    response_model=LoginResponse,
    summary="Sign in and get a hand-off URL",
    responses={
        200: {"description": "Login successful"},
        401: {"description": "Invalid credentials"},
        502: {"description": "Identity provider unavailable"},
    },
)
async def login(
    data: LoginRequest,
    db: DbSession,
    identity: Identity,
) -> LoginResponse:
    """
    Authenticate with the identity provider.

    Returns the new session for the auth app itself and a redirect URL into
    the target application (the user's role app unless `target` is given)
    carrying a one-time code.
    """
    try:
        grant = await identity.sign_in_with_password(data.email, data.password)
    except IdentityProviderError as e:
        logger.info("login_failed", transient=e.transient, status=e.status_code)
        if e.transient:
            raise identity_http_error(e) from e
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        ) from e

    session = build_session(grant, system_clock_ms(), settings.SESSION_DURATION_MINUTES)
    target = data.target or settings.app_for_role(session.user.role)
    code = await issue_handoff_code(db, session, target)

    logger.info("login_succeeded", user_id=session.user.id, target_app=target)
    return LoginResponse(session=session, redirect_url=handoff_url(target, code))


# ==========================================================================
# Hand-off
# ==========================================================================

@router.post(
    "/handoff",
    response_model=SharedSession,
    summary="Redeem a hand-off code",
    responses={
        200: {"description": "Session for the receiving application"},
        401: {"description": "Code invalid, expired, or already used"},
    },
)
async def redeem_handoff(
    data: HandoffExchangeRequest,
    db: DbSession,
) -> SharedSession:
    try:
        return await exchange_handoff_code(db, data.code, target_app=data.app)
    except HandoffError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
        ) from e


@router.post(
    "/handoff/issue",
    response_model=HandoffIssueResponse,
    summary="Issue a hand-off code for another application",
    responses={
        200: {"description": "Code issued"},
        401: {"description": "Not authenticated"},
    },
)
async def issue_handoff(
    data: HandoffIssueRequest,
    token: BearerToken,
    db: DbSession,
    identity: Identity,
) -> HandoffIssueResponse:
    """
    Hand an already signed-in user to another application (portal to HRMS,
    for instance). The access token is verified with the provider first.
    """
    try:
        user = await identity.get_user(token)
    except IdentityProviderError as e:
        raise identity_http_error(e) from e

    now = system_clock_ms()
    duration_ms = settings.SESSION_DURATION_MINUTES * 60_000
    # A caller cannot extend a session beyond one full duration from now
    expires_at = min(data.expires_at or now + duration_ms, now + duration_ms)
    if expires_at <= now:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired",
        )

    session = SharedSession(
        access_token=token,
        refresh_token=data.refresh_token,
        user=SessionUser(**session_user_fields(user)),
        created_at=expires_at - duration_ms,
        expires_at=expires_at,
    )
    code = await issue_handoff_code(db, session, data.target)
    return HandoffIssueResponse(
        code=code,
        redirect_url=handoff_url(data.target, code),
        expires_in=settings.HANDOFF_CODE_TTL_SECONDS,
    )


# ==========================================================================
# Token Management
# ==========================================================================

@router.post(
    "/refresh",
    response_model=SharedSession,
    summary="Refresh a session",
    responses={
        200: {"description": "New session"},
        401: {"description": "Refresh token invalid, revoked, or already used"},
        502: {"description": "Identity provider unavailable"},
    },
)
async def refresh(
    data: RefreshRequest,
    identity: Identity,
) -> SharedSession:
    try:
        grant = await identity.refresh(data.refresh_token)
    except IdentityProviderError as e:
        raise identity_http_error(e) from e
    return build_session(grant, system_clock_ms(), settings.SESSION_DURATION_MINUTES)


@router.post(
    "/logout",
    response_model=LogoutResponse,
    summary="Sign out of all applications",
    responses={
        200: {"description": "Signed out; navigate to redirect_url"},
        401: {"description": "Not authenticated"},
    },
)
async def logout(
    token: BearerToken,
    identity: Identity,
) -> LogoutResponse:
    """
    Revoke the provider session. Local teardown never depends on the
    provider, so a failed revoke is logged and the redirect still returned.
    """
    try:
        await identity.sign_out(token)
    except IdentityProviderError as e:
        logger.warning("provider_sign_out_failed", error=str(e), transient=e.transient)
    return LogoutResponse(redirect_url=settings.AUTH_URL)


@router.get(
    "/me",
    response_model=SessionUser,
    summary="Get current user",
    responses={
        200: {"description": "Current user"},
        401: {"description": "Not authenticated"},
    },
)
async def get_me(current_user: CurrentUser) -> SessionUser:
    return SessionUser(**session_user_fields(current_user))
