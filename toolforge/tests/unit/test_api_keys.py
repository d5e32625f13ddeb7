from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from toolforge.core.errors import InvalidRoleError
from toolforge.services.auth.api_keys import (
    generate_api_key,
    hash_api_key,
    is_admin_role,
    issue_api_key,
    normalize_role,
    role_allows,
)
from toolforge.services.auth.passwords import hash_password, verify_password


def test_generated_key_embeds_id_and_hashes_deterministically() -> None:
    key_id, raw_key, key_prefix, key_hash = generate_api_key()
    assert raw_key.startswith(f"tfk_{key_id}_")
    assert raw_key.startswith(key_prefix)
    assert len(key_prefix) == 12
    assert key_hash == hash_api_key(raw_key)
    assert key_hash != raw_key


def test_generated_keys_are_unique() -> None:
    _, first, _, _ = generate_api_key(key_id="same")
    _, second, _, _ = generate_api_key(key_id="same")
    assert first != second


def test_issued_key_stores_hash_and_expiry() -> None:
    now = datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)
    api_key, raw_key = issue_api_key(user_id="u-1", name="admin-cli", ttl_days=30, now=now)
    assert api_key.user_id == "u-1"
    assert api_key.name == "admin-cli"
    assert api_key.key == hash_api_key(raw_key)
    assert raw_key.startswith(f"tfk_{api_key.id}_")
    assert api_key.key_prefix == raw_key[:12]
    assert api_key.expires_at == now + timedelta(days=30)


def test_issued_key_without_ttl_never_expires() -> None:
    api_key, _raw = issue_api_key(user_id="u-1", name="ci", ttl_days=0)
    assert api_key.expires_at is None


def test_normalize_role_upper_cases_known_roles() -> None:
    assert normalize_role(" admin ") == "ADMIN"
    assert normalize_role("Moderator") == "MODERATOR"
    with pytest.raises(InvalidRoleError):
        normalize_role("owner")


def test_role_ordering_is_least_privilege() -> None:
    assert role_allows(role="ADMIN", minimum_role="ADMIN")
    assert role_allows(role="SUPER_ADMIN", minimum_role="ADMIN")
    assert not role_allows(role="MANAGER", minimum_role="ADMIN")
    assert not role_allows(role="USER", minimum_role="SUPPORT")
    assert is_admin_role("super_admin")
    assert not is_admin_role("MODERATOR")
    assert not is_admin_role(None)


def test_password_hashing_round_trip() -> None:
    hashed = hash_password("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("s3cret-pass", "not-a-bcrypt-hash")
