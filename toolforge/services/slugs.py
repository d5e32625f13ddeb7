from __future__ import annotations

import re
import unicodedata
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from toolforge.core.errors import SlugExhaustedError


_DISALLOWED = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE = re.compile(r"\s+")
_DASHES = re.compile(r"-+")
_MAX_SUFFIX_ATTEMPTS = 1000


def slugify(value: str | None, *, max_length: int | None = None, fallback: str = "") -> str:
    # Accents fold to ASCII ("Café" -> "cafe"); other punctuation separates words.
    if not value:
        return fallback
    normalized = unicodedata.normalize("NFKD", value)
    ascii_only = "".join(ch for ch in normalized if not unicodedata.combining(ch))
    cleaned = _DISALLOWED.sub(" ", ascii_only.lower()).strip()
    slug = _DASHES.sub("-", _WHITESPACE.sub("-", cleaned)).strip("-")
    if max_length is not None:
        slug = slug[:max_length].rstrip("-")
    return slug or fallback


async def unique_slug(
    session: AsyncSession,
    model: Any,
    base: str,
    *,
    exclude_id: str | None = None,
    max_length: int | None = None,
    reserved: set[str] | None = None,
) -> str:
    """Return ``base`` or the first free ``base-N`` (N >= 2) for ``model.slug``.

    ``reserved`` lets batch writers claim slugs that are not flushed yet.
    """
    taken = reserved or set()
    candidate = base
    for suffix in range(2, _MAX_SUFFIX_ATTEMPTS + 2):
        if candidate not in taken and not await _slug_exists(
            session, model, candidate, exclude_id=exclude_id
        ):
            return candidate
        suffix_text = f"-{suffix}"
        trimmed = base if max_length is None else base[: max_length - len(suffix_text)]
        candidate = f"{trimmed}{suffix_text}"
    raise SlugExhaustedError(f"no free slug for {base!r}")


async def _slug_exists(
    session: AsyncSession, model: Any, candidate: str, *, exclude_id: str | None
) -> bool:
    stmt = select(model.id).where(model.slug == candidate)
    if exclude_id is not None:
        stmt = stmt.where(model.id != exclude_id)
    result = await session.execute(stmt.limit(1))
    return result.scalar_one_or_none() is not None


def split_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def join_list(values: Iterable[Any] | str | None) -> str:
    # Accept either a list or an already comma-joined string from clients.
    if values is None:
        return ""
    if isinstance(values, str):
        return ", ".join(split_list(values))
    return ", ".join(str(item).strip() for item in values if str(item).strip())
