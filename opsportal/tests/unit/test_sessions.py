from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from opsportal.domain.models import User, UserSession
from opsportal.services.auth.sessions import (
    TOKEN_PREFIX,
    Principal,
    create_session,
    hash_session_token,
    resolve_session,
    revoke_session,
)
from opsportal.tests.utils.directory import issue_token, seed_user, utc_now


def test_display_name_fallbacks() -> None:
    assert Principal(user_id="u", email="a@example.com", name="Ana").display_name == "Ana"
    assert Principal(user_id="u", email="a@example.com", name=None).display_name == "a@example.com"
    assert Principal(user_id="u", email="", name=None).display_name == "Unknown User"


@pytest.mark.asyncio
async def test_resolve_valid_token(store) -> None:
    user = await seed_user(store, name="Ana")
    async with store.transaction() as session:
        raw_token, row = await create_session(session=session, user_id=user.id, ttl_hours=1)
    assert raw_token.startswith(TOKEN_PREFIX)
    # Only the hash is stored.
    assert row.token_hash == hash_session_token(raw_token)
    assert raw_token not in row.token_hash

    async with store.session() as session:
        principal = await resolve_session(session=session, raw_token=raw_token)
    assert principal == Principal(user_id=user.id, email=user.email, name="Ana", session_id=row.id)


@pytest.mark.asyncio
@pytest.mark.parametrize("raw_token", [None, "", "Bearer abc", "opss_unknown_token"])
async def test_unknown_tokens_do_not_resolve(store, raw_token) -> None:
    async with store.session() as session:
        assert await resolve_session(session=session, raw_token=raw_token) is None


@pytest.mark.asyncio
async def test_expired_revoked_and_disabled_do_not_resolve(store) -> None:
    user = await seed_user(store)
    expired = await issue_token(store, user)
    revoked = await issue_token(store, user)
    async with store.transaction() as session:
        result = await session.execute(select(UserSession).where(UserSession.user_id == user.id))
        sessions = {row.token_hash: row for row in result.scalars().all()}
        sessions[hash_session_token(expired)].expires_at = utc_now() - timedelta(seconds=1)
        assert await revoke_session(session=session, session_id=sessions[hash_session_token(revoked)].id)
        # A second revoke is a no-op.
        assert not await revoke_session(session=session, session_id=sessions[hash_session_token(revoked)].id)

    async with store.session() as session:
        assert await resolve_session(session=session, raw_token=expired) is None
        assert await resolve_session(session=session, raw_token=revoked) is None

    active = await issue_token(store, user)
    async with store.transaction() as session:
        (await session.get(User, user.id)).is_active = False
    async with store.session() as session:
        assert await resolve_session(session=session, raw_token=active) is None
