from __future__ import annotations

import argparse
import asyncio
import getpass
import sys

from toolforge.core.config import get_settings
from toolforge.domain.models import User
from toolforge.persistence.db import SessionLocal, engine
from toolforge.persistence.repos import users as users_repo
from toolforge.services.auth.api_keys import issue_api_key, normalize_role
from toolforge.services.auth.passwords import hash_password


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create or promote an administrator account")
    parser.add_argument("--email", required=True, help="Administrator email")
    parser.add_argument("--name", default=None, help="Display name")
    parser.add_argument("--role", default="ADMIN", help="ADMIN or SUPER_ADMIN")
    parser.add_argument("--password", default=None, help="Password; prompted when omitted")
    parser.add_argument(
        "--with-key",
        action="store_true",
        help="Also issue an API key and print it once; keys are the only way to call the API",
    )
    parser.add_argument("--key-name", default="admin-cli", help="Label for the issued key")
    return parser


async def _create_admin(args: argparse.Namespace) -> int:
    role = normalize_role(args.role)
    if role not in {"ADMIN", "SUPER_ADMIN"}:
        raise ValueError("Role must be ADMIN or SUPER_ADMIN")
    try:
        async with SessionLocal() as session:
            user = await users_repo.get_user_by_email(session, args.email)
            if user is None:
                password = args.password or getpass.getpass("Password: ")
                if len(password) < 8:
                    raise ValueError("Password must be at least 8 characters")
                user = User(
                    email=args.email.strip().lower(),
                    password=hash_password(password),
                    name=args.name,
                    role=role,
                    email_verified=True,
                )
                session.add(user)
                verb = "created"
            else:
                # Promote in place; existing credentials stay untouched.
                user.role = role
                if args.name:
                    user.name = args.name
                verb = "promoted"
            raw_key = None
            if args.with_key:
                # The new user needs its id before the key can reference it.
                await session.flush()
                api_key, raw_key = issue_api_key(
                    user_id=user.id,
                    name=args.key_name,
                    ttl_days=get_settings().api_key_default_ttl_days,
                )
                session.add(api_key)
            await session.commit()
            print(f"Administrator {verb}: {user.email} ({user.id}) role={role}")
            if raw_key is not None:
                # Only the hash is stored; this is the one chance to copy the key.
                print(f"API key {api_key.key_prefix}... (id={api_key.id}):")
                print(raw_key)
    finally:
        await engine.dispose()
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_create_admin(args))
    except Exception as exc:  # noqa: BLE001
        print(f"create_admin failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
