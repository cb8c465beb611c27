"""
Shared Session
==============

Cross-application session persistence, silent refresh, and hand-off.
"""

from hrms.core.session.handoff import HandoffError, exchange_handoff_code, issue_handoff_code
from hrms.core.session.identity import (
    IdentityProvider,
    IdentityProviderError,
    SupabaseIdentityProvider,
    TokenGrant,
)
from hrms.core.session.manager import AuthStatus, SharedSessionManager, build_session
from hrms.core.session.store import FileSessionStore, MemorySessionStore, SessionStore

__all__ = [
    "AuthStatus",
    "FileSessionStore",
    "HandoffError",
    "IdentityProvider",
    "IdentityProviderError",
    "MemorySessionStore",
    "SessionStore",
    "SharedSessionManager",
    "SupabaseIdentityProvider",
    "TokenGrant",
    "build_session",
    "exchange_handoff_code",
    "issue_handoff_code",
]
