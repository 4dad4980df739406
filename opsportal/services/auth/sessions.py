from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hashlib
import logging
import secrets
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from opsportal.domain.models import User, UserSession


logger = logging.getLogger(__name__)

TOKEN_PREFIX = "opss_"


@dataclass(frozen=True)
class Principal:
    # Authenticated user identity carried through a request.
    user_id: str
    email: str
    name: str | None
    session_id: str | None = None

    @property
    def display_name(self) -> str:
        # Alert history shows the name, then the email, then a fixed placeholder.
        return self.name or self.email or "Unknown User"


def _utc_now() -> datetime:
    # Keep session timestamps in UTC for consistent expiry checks.
    return datetime.now(timezone.utc)


def hash_session_token(raw_token: str) -> str:
    # Use SHA-256 for deterministic, non-reversible token storage.
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def generate_session_token() -> tuple[str, str, str]:
    token_id = uuid4().hex
    raw_token = f"{TOKEN_PREFIX}{token_id}_{secrets.token_urlsafe(32)}"
    return token_id, raw_token, hash_session_token(raw_token)


def principal_for_user(user: User, *, session_id: str | None = None) -> Principal:
    return Principal(user_id=user.id, email=user.email, name=user.name, session_id=session_id)


async def create_session(
    *,
    session: AsyncSession,
    user_id: str,
    ttl_hours: int,
) -> tuple[str, UserSession]:
    # Persist only the token hash; the raw token is returned exactly once.
    token_id, raw_token, token_hash = generate_session_token()
    row = UserSession(
        id=token_id,
        user_id=user_id,
        token_hash=token_hash,
        expires_at=_utc_now() + timedelta(hours=ttl_hours),
        revoked_at=None,
    )
    session.add(row)
    await session.flush()
    return raw_token, row


async def resolve_session(*, session: AsyncSession, raw_token: str | None) -> Principal | None:
    """Return the principal behind a bearer token, or None when it does not authenticate.

    Unknown, revoked and expired tokens as well as disabled users all resolve to None;
    the authorization guard turns a missing principal into an Unauthenticated error.
    """
    if not raw_token or not raw_token.startswith(TOKEN_PREFIX):
        return None
    result = await session.execute(
        select(UserSession, User)
        .join(User, User.id == UserSession.user_id)
        .where(UserSession.token_hash == hash_session_token(raw_token))
    )
    row = result.first()
    if row is None:
        return None
    user_session, user = row
    if user_session.revoked_at is not None:
        logger.info("session_rejected reason=revoked session_id=%s", user_session.id)
        return None
    if user_session.expires_at <= _utc_now():
        logger.info("session_rejected reason=expired session_id=%s", user_session.id)
        return None
    if not user.is_active:
        logger.info("session_rejected reason=user_disabled user_id=%s", user.id)
        return None
    return principal_for_user(user, session_id=user_session.id)


async def revoke_session(*, session: AsyncSession, session_id: str) -> bool:
    result = await session.execute(
        update(UserSession)
        .where(UserSession.id == session_id, UserSession.revoked_at.is_(None))
        .values(revoked_at=_utc_now())
    )
    return bool(result.rowcount)
