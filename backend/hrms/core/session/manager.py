"""
Shared Session Manager
======================

Single source of truth, per application origin, for "is this user signed in
and as whom". Persists the session in a SessionStore, tracks user activity,
and silently refreshes tokens shortly before expiry while the user is active.

One instance per origin. The periodic refresh task is owned by an explicit
start()/stop() lifecycle; nothing runs at construction time.

Refresh tokens are single-use on the provider side, so refreshes are
serialized with a lock inside one manager and with compare-and-set across
managers that share a store. The loser of a race keeps the winner's session.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import structlog
from pydantic import ValidationError

from hrms.core.config import Settings, get_settings
from hrms.core.schemas import SessionUser, SharedSession
from hrms.core.session.handoff import HandoffError
from hrms.core.session.identity import (
    IdentityProvider,
    IdentityProviderError,
    TokenGrant,
    session_user_fields,
)
from hrms.core.session.store import SessionStore

logger = structlog.get_logger()

Clock = Callable[[], int]

# Query parameters that carry a session between origins
HANDOFF_PARAMS = ("code", "session")


def system_clock_ms() -> int:
    return int(time.time() * 1000)


def build_session(
    grant: TokenGrant,
    now_ms: int,
    duration_minutes: int,
    fallback_user: Optional[SessionUser] = None,
) -> SharedSession:
    """Build a fresh session whose lifetime starts now."""
    if grant.user:
        user = SessionUser(**session_user_fields(grant.user))
    elif fallback_user is not None:
        user = fallback_user
    else:
        raise IdentityProviderError("Token grant carries no user")
    return SharedSession(
        access_token=grant.access_token,
        refresh_token=grant.refresh_token,
        user=user,
        created_at=now_ms,
        expires_at=now_ms + duration_minutes * 60_000,
    )


@dataclass
class AuthStatus:
    is_authenticated: bool
    user: Optional[SessionUser] = None


class SharedSessionManager:
    """Session persistence, activity tracking, and silent refresh for one origin."""

    def __init__(
        self,
        store: SessionStore,
        identity: IdentityProvider,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.identity = identity
        self.settings = settings or get_settings()
        self._clock = clock or system_clock_ms

        self.session_key = self.settings.SESSION_STORAGE_KEY
        self.activity_key = self.settings.SESSION_ACTIVITY_KEY
        self.duration_ms = self.settings.SESSION_DURATION_MINUTES * 60_000
        self.refresh_threshold_ms = self.settings.SESSION_REFRESH_THRESHOLD_MINUTES * 60_000
        self.activity_window_ms = self.settings.SESSION_ACTIVITY_WINDOW_MINUTES * 60_000
        self.activity_write_interval_ms = int(
            self.settings.SESSION_ACTIVITY_WRITE_INTERVAL_SECONDS * 1000
        )

        self._refresh_lock = asyncio.Lock()
        self._refresh_task: Optional[asyncio.Task] = None
        self._last_activity_write: Optional[int] = None

    def now(self) -> int:
        return self._clock()

    # ======================================================================
    # Storage
    # ======================================================================

    def set_shared_session(self, session: SharedSession) -> None:
        """Persist a session and count the write as user activity."""
        self.store.set(self.session_key, session.model_dump_json())
        self.record_activity(force=True)
        logger.info("shared_session_set", user_id=session.user.id)

    def get_shared_session(self) -> Optional[SharedSession]:
        """
        Return the stored session, or None.

        Corrupt and expired records are cleared and reported as absent.
        """
        raw = self.store.get(self.session_key)
        if raw is None:
            return None
        try:
            session = SharedSession.model_validate_json(raw)
        except ValidationError:
            logger.warning("shared_session_corrupt")
            self.clear_shared_session()
            return None
        if self.is_session_expired(session):
            logger.info("shared_session_expired", user_id=session.user.id)
            self.clear_shared_session()
            return None
        return session

    def clear_shared_session(self) -> None:
        """Drop the session and stop the refresh timer."""
        self.store.delete(self.session_key)
        self.store.delete(self.activity_key)
        self._last_activity_write = None
        task, self._refresh_task = self._refresh_task, None
        if task is not None and not task.done():
            task.cancel()

    # ======================================================================
    # Predicates
    # ======================================================================

    def is_session_expired(self, session: SharedSession) -> bool:
        return self.now() >= session.expires_at

    def needs_refresh(self, session: SharedSession) -> bool:
        return session.expires_at - self.now() <= self.refresh_threshold_ms

    def is_user_active(self) -> bool:
        """True when activity was recorded within the activity window."""
        raw = self.store.get(self.activity_key)
        if raw is None:
            return False
        try:
            last_activity = int(raw)
        except ValueError:
            return False
        return self.now() - last_activity <= self.activity_window_ms

    # ======================================================================
    # Activity
    # ======================================================================

    def record_activity(self, force: bool = False) -> bool:
        """
        Stamp the last-activity time.

        Writes are throttled to one per write interval; returns False when a
        call was absorbed by the throttle.
        """
        now = self.now()
        if (
            not force
            and self._last_activity_write is not None
            and now - self._last_activity_write < self.activity_write_interval_ms
        ):
            return False
        self.store.set(self.activity_key, str(now))
        self._last_activity_write = now
        return True

    # ======================================================================
    # Refresh
    # ======================================================================

    async def refresh_session_if_needed(self) -> Optional[SharedSession]:
        """
        Refresh when the session is close to expiry and the user is active.

        Returns the session that is current afterwards (None when signed out).
        """
        async with self._refresh_lock:
            raw = self.store.get(self.session_key)
            session = self.get_shared_session()
            if session is None:
                return None
            if not (self.needs_refresh(session) and self.is_user_active()):
                return session

            try:
                grant = await self.identity.refresh(session.refresh_token)
            except IdentityProviderError as e:
                if self.store.get(self.session_key) != raw:
                    # Another manager rotated the token first
                    logger.info("session_refresh_superseded", user_id=session.user.id)
                    return self.get_shared_session()
                if e.transient:
                    logger.warning(
                        "session_refresh_deferred",
                        user_id=session.user.id,
                        error=str(e),
                    )
                    return session
                logger.warning(
                    "session_refresh_rejected",
                    user_id=session.user.id,
                    status=e.status_code,
                    error=str(e),
                )
                self.clear_shared_session()
                return None

            refreshed = build_session(
                grant,
                self.now(),
                self.settings.SESSION_DURATION_MINUTES,
                fallback_user=session.user,
            )
            if refreshed.expires_at < session.expires_at:
                refreshed.expires_at = session.expires_at

            if not self.store.compare_and_set(self.session_key, raw, refreshed.model_dump_json()):
                logger.info("session_refresh_superseded", user_id=session.user.id)
                return self.get_shared_session()

            logger.info(
                "session_refreshed",
                user_id=refreshed.user.id,
                expires_at=refreshed.expires_at,
            )
            return refreshed

    async def check_auth_status(self) -> AuthStatus:
        """Load-time check for protected apps: get, refresh if needed, get again."""
        if self.get_shared_session() is None:
            return AuthStatus(is_authenticated=False)
        await self.refresh_session_if_needed()
        session = self.get_shared_session()
        if session is None:
            return AuthStatus(is_authenticated=False)
        return AuthStatus(is_authenticated=True, user=session.user)

    async def sign_out_from_all_apps(self) -> str:
        """
        Revoke the provider session, clear local state, and return the URL of
        the auth application to navigate to.
        """
        session = self.get_shared_session()
        if session is not None:
            try:
                await self.identity.sign_out(session.access_token)
            except IdentityProviderError as e:
                logger.warning("provider_sign_out_failed", user_id=session.user.id, error=str(e))
        self.clear_shared_session()
        await self.stop()
        logger.info("signed_out_from_all_apps")
        return self.settings.AUTH_URL

    # ======================================================================
    # Cross-origin hand-off
    # ======================================================================

    async def consume_handoff(
        self,
        url: str,
        exchange: Callable[[str], Awaitable[SharedSession]],
    ) -> tuple[str, Optional[SharedSession]]:
        """
        Bootstrap a landing URL.

        A `code` parameter is redeemed through `exchange` and the resulting
        session persisted. Both `code` and any legacy raw `session` parameter
        are stripped from the returned URL; raw sessions are never trusted.
        """
        parts = urlsplit(url)
        params = parse_qsl(parts.query, keep_blank_values=True)
        code = next((v for k, v in params if k == "code"), None)
        if any(k == "session" for k, _ in params):
            logger.warning("legacy_session_param_ignored")

        kept = [(k, v) for k, v in params if k not in HANDOFF_PARAMS]
        clean_url = urlunsplit(parts._replace(query=urlencode(kept)))

        if not code:
            return clean_url, None

        try:
            session = await exchange(code)
        except (HandoffError, IdentityProviderError) as e:
            logger.warning("handoff_exchange_failed", error=str(e))
            return clean_url, None

        self.set_shared_session(session)
        return clean_url, session

    # ======================================================================
    # Lifecycle
    # ======================================================================

    @property
    def running(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    async def start(self) -> None:
        """Start the periodic refresh task."""
        if self.running:
            return
        self._refresh_task = asyncio.create_task(self._refresh_loop())
        logger.info(
            "session_refresh_started",
            interval_seconds=self.settings.SESSION_CHECK_INTERVAL_SECONDS,
        )

    async def stop(self) -> None:
        """Stop the periodic refresh task."""
        task, self._refresh_task = self._refresh_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("session_refresh_stopped")

    async def _refresh_loop(self) -> None:
        interval = self.settings.SESSION_CHECK_INTERVAL_SECONDS
        while True:
            await asyncio.sleep(interval)
            try:
                await self.refresh_session_if_needed()
            except Exception as e:
                logger.error("session_refresh_tick_failed", error=str(e))
