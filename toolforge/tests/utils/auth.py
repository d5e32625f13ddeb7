from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from toolforge.domain.models import ApiKey, User
from toolforge.persistence.db import SessionLocal
from toolforge.services.auth.api_keys import generate_api_key


async def create_test_api_key(
    *,
    role: str = "USER",
    name: str | None = None,
    email: str | None = None,
    subscription_tier: str = "FREE",
    key_expires_at: datetime | None = None,
) -> tuple[str, dict[str, str], str, str]:
    """Insert a member with one API key.

    Returns ``(raw_key, headers, user_id, key_id)``; ``headers`` carries the bearer token.
    """
    user_id = uuid4().hex
    key_id, raw_key, key_prefix, key_hash = generate_api_key()
    async with SessionLocal() as session:
        session.add(
            User(
                id=user_id,
                email=email or f"{user_id}@example.com",
                # "!" never matches a bcrypt hash; these members only use keys.
                password="!",
                name=name if name is not None else f"Test {role.title()}",
                role=role,
                subscription_tier=subscription_tier,
            )
        )
        await session.flush()
        session.add(
            ApiKey(
                id=key_id,
                user_id=user_id,
                key=key_hash,
                key_prefix=key_prefix,
                name=f"{role.lower()}-test-key",
                expires_at=key_expires_at,
            )
        )
        await session.commit()
    return raw_key, {"Authorization": f"Bearer {raw_key}"}, user_id, key_id
