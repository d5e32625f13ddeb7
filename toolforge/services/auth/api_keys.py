from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta
from uuid import uuid4

from toolforge.core.errors import InvalidRoleError
from toolforge.core.timeutil import utc_now
from toolforge.domain.models import ApiKey


ROLE_ORDER: dict[str, int] = {
    "USER": 1,
    "SUPPORT": 2,
    "EDITOR": 3,
    "MODERATOR": 4,
    "MANAGER": 5,
    "ADMIN": 6,
    "SUPER_ADMIN": 7,
}
# Roles an admin may assign through the API; SUPER_ADMIN is provisioned out of band.
ASSIGNABLE_ROLES: tuple[str, ...] = ("USER", "ADMIN", "MODERATOR", "EDITOR", "MANAGER", "SUPPORT")
ADMIN_ROLES = frozenset({"ADMIN", "SUPER_ADMIN"})

KEY_TOKEN_PREFIX = "tfk"


def normalize_role(role: str) -> str:
    # Roles are stored upper-case to match the schema default.
    normalized = role.strip().upper()
    if normalized not in ROLE_ORDER:
        raise InvalidRoleError(f"Unsupported role: {role}")
    return normalized


def role_allows(*, role: str, minimum_role: str) -> bool:
    # Compare roles using numeric ordering for least-privilege enforcement.
    return ROLE_ORDER.get(role, 0) >= ROLE_ORDER.get(minimum_role, 0)


def is_admin_role(role: str | None) -> bool:
    return (role or "").upper() in ADMIN_ROLES


def hash_api_key(raw_key: str) -> str:
    # Use SHA-256 for deterministic, non-reversible key storage.
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key(*, key_id: str | None = None) -> tuple[str, str, str, str]:
    # Embed the key id in the token so operators can trace secrets safely.
    resolved_id = key_id or uuid4().hex
    secret = secrets.token_urlsafe(32)
    raw_key = f"{KEY_TOKEN_PREFIX}_{resolved_id}_{secret}"
    key_prefix = raw_key[:12]
    return resolved_id, raw_key, key_prefix, hash_api_key(raw_key)


def issue_api_key(
    *,
    user_id: str,
    name: str,
    ttl_days: int,
    now: datetime | None = None,
) -> tuple[ApiKey, str]:
    """Build an unsaved ``ApiKey`` row and return it with the raw token.

    The raw token is only available here; the row stores its hash. A non-positive
    ``ttl_days`` issues a key that never expires.
    """
    issued_at = now or utc_now()
    key_id, raw_key, key_prefix, key_hash = generate_api_key()
    api_key = ApiKey(
        id=key_id,
        user_id=user_id,
        key=key_hash,
        key_prefix=key_prefix,
        name=name,
        created_at=issued_at,
        expires_at=issued_at + timedelta(days=ttl_days) if ttl_days > 0 else None,
    )
    return api_key, raw_key
