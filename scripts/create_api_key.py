from __future__ import annotations

import argparse
import asyncio
import sys

from toolforge.core.config import get_settings
from toolforge.persistence.db import SessionLocal, engine
from toolforge.persistence.repos import users as users_repo
from toolforge.services.audit import record_audit_log
from toolforge.services.auth.api_keys import issue_api_key


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Issue an API key for an existing user")
    parser.add_argument("--email", required=True, help="Email of the user that owns the key")
    parser.add_argument("--name", required=True, help="Key label shown in the member API")
    parser.add_argument(
        "--ttl-days",
        type=int,
        default=None,
        help="Days until expiry; defaults to API_KEY_DEFAULT_TTL_DAYS, 0 for no expiry",
    )
    return parser


async def _create_key(args: argparse.Namespace) -> int:
    ttl_days = get_settings().api_key_default_ttl_days if args.ttl_days is None else args.ttl_days
    try:
        async with SessionLocal() as session:
            user = await users_repo.get_user_by_email(session, args.email)
            if user is None:
                raise ValueError(f"No user with email {args.email}")
            api_key, raw_key = issue_api_key(user_id=user.id, name=args.name, ttl_days=ttl_days)
            session.add(api_key)
            await record_audit_log(
                session=session,
                user_id=user.id,
                action="CREATE_API_KEY",
                resource="ApiKey",
                details={"key_id": api_key.id, "key_prefix": api_key.key_prefix, "resource_name": args.name},
                best_effort=False,
            )
            await session.commit()
    finally:
        await engine.dispose()

    # The raw key is shown once; only its hash is stored.
    print(f"Issued {api_key.key_prefix}... (id={api_key.id}) for {args.email}")
    print(raw_key)
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_create_key(args))
    except Exception as exc:  # noqa: BLE001
        print(f"create_api_key failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
