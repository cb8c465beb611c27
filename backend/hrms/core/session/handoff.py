"""
Cross-App Hand-off Codes
========================

Moves a session from one application origin to another without putting
tokens in a URL. The sending side stores the session server-side and gets a
short-lived signed code; the receiving side redeems the code exactly once.
"""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from jose import JWTError, jwt
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hrms.core.config import Settings, get_settings
from hrms.core.models import HandoffCode
from hrms.core.schemas import SharedSession

logger = structlog.get_logger()

CODE_TYPE = "handoff"


class HandoffError(Exception):
    """Code is malformed, expired, already redeemed, or meant for another app."""


def hash_code(code: str) -> str:
    return hashlib.sha256(code.encode()).hexdigest()


async def issue_handoff_code(
    db: AsyncSession,
    session: SharedSession,
    target_app: str,
    settings: Optional[Settings] = None,
) -> str:
    """Persist the session behind a new single-use code and return the code."""
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(seconds=settings.HANDOFF_CODE_TTL_SECONDS)

    code = jwt.encode(
        {
            "type": CODE_TYPE,
            "app": target_app,
            "sub": session.user.id,
            "iat": now,
            "exp": expires_at,
            "jti": secrets.token_hex(16),
        },
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
    )

    db.add(
        HandoffCode(
            code_hash=hash_code(code),
            target_app=target_app,
            payload=session.model_dump(),
            expires_at=expires_at,
        )
    )
    await db.flush()

    logger.info("handoff_code_issued", user_id=session.user.id, target_app=target_app)
    return code


async def exchange_handoff_code(
    db: AsyncSession,
    code: str,
    target_app: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> SharedSession:
    """
    Redeem a code for its session.

    The conditional UPDATE claims the row; a second redemption matches no
    rows and fails.
    """
    settings = settings or get_settings()
    try:
        claims = jwt.decode(code, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        raise HandoffError("Invalid or expired hand-off code") from e

    if claims.get("type") != CODE_TYPE:
        raise HandoffError("Not a hand-off code")
    if target_app is not None and claims.get("app") != target_app:
        raise HandoffError("Hand-off code was issued for another application")

    now = datetime.now(timezone.utc)
    code_hash = hash_code(code)
    result = await db.execute(
        update(HandoffCode)
        .where(
            HandoffCode.code_hash == code_hash,
            HandoffCode.consumed_at.is_(None),
            HandoffCode.expires_at > now,
        )
        .values(consumed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("handoff_code_rejected", jti=claims.get("jti"))
        raise HandoffError("Hand-off code already used or expired")

    payload = (
        await db.execute(select(HandoffCode.payload).where(HandoffCode.code_hash == code_hash))
    ).scalar_one()

    logger.info("handoff_code_redeemed", user_id=claims.get("sub"), target_app=claims.get("app"))
    return SharedSession.model_validate(payload)
