from __future__ import annotations

import argparse
import asyncio
import sys

from sqlalchemy import select

from opsportal.core.config import get_settings
from opsportal.domain.models import User
from opsportal.persistence.store import DirectoryStore
from opsportal.services.audit import record_event
from opsportal.services.auth.sessions import create_session


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Mint a bearer session token for an existing user")
    parser.add_argument("--email", required=True, help="Email of the user the token authenticates")
    parser.add_argument(
        "--ttl-hours",
        type=int,
        default=None,
        help="Token lifetime in hours (defaults to AUTH_SESSION_TTL_HOURS)",
    )
    return parser


async def _create_token(args: argparse.Namespace) -> int:
    settings = get_settings()
    ttl_hours = args.ttl_hours or settings.auth_session_ttl_hours
    store = DirectoryStore()
    try:
        async with store.transaction() as session:
            result = await session.execute(select(User).where(User.email == args.email.strip().lower()))
            user = result.scalar_one_or_none()
            if user is None:
                raise ValueError(f"No user with email {args.email}")
            raw_token, row = await create_session(session=session, user_id=user.id, ttl_hours=ttl_hours)

        # Record token issuance without the token itself.
        await record_event(
            store,
            team_id=None,
            actor_id="create_session_token",
            event_type="auth.session.created",
            resource_type="user_session",
            resource_id=row.id,
            metadata={"user_id": user.id, "ttl_hours": ttl_hours},
            best_effort=False,
        )
    finally:
        await store.dispose()

    print("Session token created:")
    print(f"  session_id: {row.id}")
    print(f"  expires_at: {row.expires_at.isoformat()}")
    print("  token: ")
    print(f"    {raw_token}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_create_token(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_session_token failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
