from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from toolforge.apps.api.deps import Principal, ensure_owner_or_admin, get_current_principal, get_db, require_role
from toolforge.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from toolforge.apps.api.response import Paged, SuccessEnvelope, page_info, success_response
from toolforge.apps.api.serializers import AuthorSummary, author_summary, offset_for, parse_positive_int
from toolforge.core.timeutil import isoformat_or_none, utc_now
from toolforge.domain.models import ForumCategory, ForumPost, ForumThread, User
from toolforge.persistence.repos import forum as forum_repo
from toolforge.persistence.repos import users as users_repo
from toolforge.services.audit import record_audit_log
from toolforge.services.slugs import slugify, unique_slug


router = APIRouter(prefix="/forum", tags=["forum"], responses=DEFAULT_ERROR_RESPONSES)

SLUG_MAX_LENGTH = 96
DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100
MIN_TITLE_LENGTH = 3
MIN_THREAD_CONTENT_LENGTH = 10
MIN_POST_CONTENT_LENGTH = 2
# New categories sort after the curated ones unless told otherwise.
DEFAULT_CATEGORY_ORDER = 999


class CategoryResponse(BaseModel):
    id: str
    name: str
    slug: str
    description: str | None
    icon: str | None
    display_order: int
    thread_count: int = 0
    post_count: int = 0
    last_activity_at: str | None = None
    created_at: str | None
    updated_at: str | None


class ThreadResponse(BaseModel):
    id: str
    category_id: str
    title: str
    slug: str
    content: str
    author: AuthorSummary | None
    is_pinned: bool
    is_locked: bool
    view_count: int
    reply_count: int
    last_activity_at: str | None
    created_at: str | None
    updated_at: str | None


class PostResponse(BaseModel):
    id: str
    thread_id: str
    content: str
    author: AuthorSummary | None
    is_edited: bool
    created_at: str | None
    updated_at: str | None


class CategoryThreadsResponse(BaseModel):
    category: CategoryResponse
    threads: Paged[ThreadResponse]


class ThreadDetailResponse(BaseModel):
    thread: ThreadResponse
    category: CategoryResponse | None
    posts: Paged[PostResponse]


class AdminThreadResponse(ThreadResponse):
    category_name: str
    category_slug: str


class BulkUpdateResponse(BaseModel):
    updated: int


class ThreadCreateRequest(BaseModel):
    category_slug: str = Field(min_length=1)
    title: str
    content: str

    model_config = {"extra": "forbid"}


class ThreadUpdateRequest(BaseModel):
    title: str | None = None
    content: str | None = None

    model_config = {"extra": "forbid"}


class PostCreateRequest(BaseModel):
    content: str

    model_config = {"extra": "forbid"}


class PostUpdateRequest(BaseModel):
    content: str

    model_config = {"extra": "forbid"}


class CategoryCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    slug: str | None = None
    description: str | None = None
    icon: str | None = None
    display_order: int = DEFAULT_CATEGORY_ORDER

    model_config = {"extra": "forbid"}


class CategoryUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    slug: str | None = None
    description: str | None = None
    icon: str | None = None
    display_order: int | None = None

    model_config = {"extra": "forbid"}


class BulkThreadUpdateRequest(BaseModel):
    ids: list[str] = Field(min_length=1)
    is_pinned: bool | None = None
    is_locked: bool | None = None

    model_config = {"extra": "forbid"}


def _category_response(category: ForumCategory, stats: dict | None = None) -> CategoryResponse:
    stats = stats or {}
    return CategoryResponse(
        id=category.id,
        name=category.name,
        slug=category.slug,
        description=category.description,
        icon=category.icon,
        display_order=int(category.display_order or 0),
        thread_count=int(stats.get("thread_count", 0)),
        post_count=int(stats.get("post_count", 0)),
        last_activity_at=isoformat_or_none(stats.get("last_activity_at")),
        created_at=isoformat_or_none(category.created_at),
        updated_at=isoformat_or_none(category.updated_at),
    )


def _thread_response(thread: ForumThread, author: User | None) -> ThreadResponse:
    return ThreadResponse(
        id=thread.id,
        category_id=thread.category_id,
        title=thread.title,
        slug=thread.slug,
        content=thread.content,
        author=author_summary(author) if author is not None else None,
        is_pinned=bool(thread.is_pinned),
        is_locked=bool(thread.is_locked),
        view_count=int(thread.view_count or 0),
        reply_count=int(thread.reply_count or 0),
        last_activity_at=isoformat_or_none(thread.last_activity_at),
        created_at=isoformat_or_none(thread.created_at),
        updated_at=isoformat_or_none(thread.updated_at),
    )


def _post_response(post: ForumPost, author: User | None) -> PostResponse:
    return PostResponse(
        id=post.id,
        thread_id=post.thread_id,
        content=post.content,
        author=author_summary(author) if author is not None else None,
        is_edited=bool(post.is_edited),
        created_at=isoformat_or_none(post.created_at),
        updated_at=isoformat_or_none(post.updated_at),
    )


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"code": code, "message": message})


def _not_found(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": code, "message": message})


def _clean_title(value: str | None) -> str:
    title = (value or "").strip()
    if len(title) < MIN_TITLE_LENGTH:
        raise _bad_request("INVALID_TITLE", f"Title must be at least {MIN_TITLE_LENGTH} characters")
    return title


def _clean_content(value: str | None, minimum: int) -> str:
    content = (value or "").strip()
    if len(content) < minimum:
        raise _bad_request("INVALID_CONTENT", f"Content must be at least {minimum} characters")
    return content


async def _thread_slug(db: AsyncSession, title: str, *, exclude_id: str | None = None) -> str:
    base = slugify(title, max_length=SLUG_MAX_LENGTH, fallback="thread")
    return await unique_slug(db, ForumThread, base, exclude_id=exclude_id, max_length=SLUG_MAX_LENGTH)


async def _category_slug(
    db: AsyncSession, *, requested: str | None, name: str, exclude_id: str | None = None
) -> str:
    # Explicit slugs must be free; generated ones get -2, -3 suffixes.
    if requested:
        slug = slugify(requested, max_length=SLUG_MAX_LENGTH)
        if not slug:
            raise _bad_request("INVALID_SLUG", "Slug is empty after normalization")
        if await unique_slug(db, ForumCategory, slug, exclude_id=exclude_id) != slug:
            raise HTTPException(
                status_code=409,
                detail={"code": "SLUG_CONFLICT", "message": f"Slug '{slug}' is already in use"},
            )
        return slug
    base = slugify(name, max_length=SLUG_MAX_LENGTH, fallback="category")
    return await unique_slug(db, ForumCategory, base, exclude_id=exclude_id, max_length=SLUG_MAX_LENGTH)


async def _load_thread(db: AsyncSession, thread_id: str) -> ForumThread:
    thread = await forum_repo.get_thread(db, thread_id)
    if thread is None:
        raise _not_found("THREAD_NOT_FOUND", "Thread not found")
    return thread


async def _load_post(db: AsyncSession, post_id: str) -> ForumPost:
    post = await forum_repo.get_post(db, post_id)
    if post is None:
        raise _not_found("POST_NOT_FOUND", "Post not found")
    return post


@router.get("/categories", response_model=SuccessEnvelope[list[CategoryResponse]])
async def list_categories(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        rows = await forum_repo.list_categories_with_stats(db)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=500, detail={"code": "DB_ERROR", "message": "Database error while listing categories"}
        ) from exc
    return success_response(
        request=request, data=[_category_response(category, stats).model_dump() for category, stats in rows]
    )


@router.get("/categories/{category_slug}/threads", response_model=SuccessEnvelope[CategoryThreadsResponse])
async def list_category_threads(
    category_slug: str,
    request: Request,
    # Paging is lenient here: junk values fall back to defaults instead of 422.
    page: str | None = Query(default=None),
    limit: str | None = Query(default=None),
    sort: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> dict:
    category = await forum_repo.get_category_by_slug(db, category_slug)
    if category is None:
        raise _not_found("CATEGORY_NOT_FOUND", "Category not found")
    page_number = parse_positive_int(page, 1)
    page_limit = parse_positive_int(limit, DEFAULT_PAGE_LIMIT, maximum=MAX_PAGE_LIMIT)
    rows, total = await forum_repo.list_threads_for_category(
        db,
        category.id,
        sort=forum_repo.parse_thread_sort(sort),
        offset=offset_for(page_number, page_limit),
        limit=page_limit,
    )
    payload = CategoryThreadsResponse(
        category=_category_response(category),
        threads=Paged[ThreadResponse](
            items=[_thread_response(thread, author) for thread, author in rows],
            page=page_info(page=page_number, page_size=page_limit, total=total),
        ),
    )
    return success_response(request=request, data=payload.model_dump())


@router.get("/threads/{thread_slug}", response_model=SuccessEnvelope[ThreadDetailResponse])
async def get_thread(
    thread_slug: str,
    request: Request,
    page: str | None = Query(default=None),
    limit: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> dict:
    thread = await forum_repo.get_thread_by_slug(db, thread_slug)
    if thread is None:
        raise _not_found("THREAD_NOT_FOUND", "Thread not found")
    await forum_repo.increment_view_count(db, thread)
    await db.commit()

    page_number = parse_positive_int(page, 1)
    page_limit = parse_positive_int(limit, DEFAULT_PAGE_LIMIT, maximum=MAX_PAGE_LIMIT)
    posts, total = await forum_repo.list_posts(
        db, thread.id, offset=offset_for(page_number, page_limit), limit=page_limit
    )
    author = await users_repo.get_user(db, thread.author_id)
    category = await forum_repo.get_category(db, thread.category_id)
    payload = ThreadDetailResponse(
        thread=_thread_response(thread, author),
        category=_category_response(category) if category is not None else None,
        posts=Paged[PostResponse](
            items=[_post_response(post, post_author) for post, post_author in posts],
            page=page_info(page=page_number, page_size=page_limit, total=total),
        ),
    )
    return success_response(request=request, data=payload.model_dump())


@router.post("/threads", status_code=201, response_model=SuccessEnvelope[ThreadResponse])
async def create_thread(
    payload: ThreadCreateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    title = _clean_title(payload.title)
    content = _clean_content(payload.content, MIN_THREAD_CONTENT_LENGTH)
    category = await forum_repo.get_category_by_slug(db, payload.category_slug)
    if category is None:
        raise _not_found("CATEGORY_NOT_FOUND", "Category not found")

    now = utc_now()
    thread = ForumThread(
        category_id=category.id,
        title=title,
        slug=await _thread_slug(db, title),
        content=content,
        author_id=principal.user_id,
        last_activity_at=now,
        created_at=now,
        updated_at=now,
    )
    db.add(thread)
    await db.commit()
    author = await users_repo.get_user(db, principal.user_id)
    return success_response(request=request, data=_thread_response(thread, author).model_dump())


@router.patch("/threads/{thread_id}", response_model=SuccessEnvelope[ThreadResponse])
async def update_thread(
    thread_id: str,
    payload: ThreadUpdateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    thread = await _load_thread(db, thread_id)
    ensure_owner_or_admin(principal, thread.author_id, message="Only the author can edit this thread")
    if payload.title is None and payload.content is None:
        raise _bad_request("NO_FIELDS", "Provide a title or content to update")
    if payload.title is not None:
        title = _clean_title(payload.title)
        if title != thread.title:
            thread.title = title
            thread.slug = await _thread_slug(db, title, exclude_id=thread.id)
    if payload.content is not None:
        thread.content = _clean_content(payload.content, MIN_THREAD_CONTENT_LENGTH)
    await db.commit()
    await db.refresh(thread)
    author = await users_repo.get_user(db, thread.author_id)
    return success_response(request=request, data=_thread_response(thread, author).model_dump())


@router.delete("/threads/{thread_id}", status_code=204, response_class=Response)
async def delete_thread(
    thread_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> Response:
    thread = await _load_thread(db, thread_id)
    ensure_owner_or_admin(principal, thread.author_id, message="Only the author can delete this thread")
    await db.delete(thread)
    await record_audit_log(
        session=db,
        user_id=principal.user_id,
        action="DELETE_FORUM_THREAD",
        resource="ForumThread",
        details={"thread_id": thread_id, "resource_name": thread.title},
        request=request,
    )
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/threads/{thread_id}/posts", status_code=201, response_model=SuccessEnvelope[PostResponse])
async def create_post(
    thread_id: str,
    payload: PostCreateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    thread = await _load_thread(db, thread_id)
    if thread.is_locked:
        raise HTTPException(
            status_code=403, detail={"code": "THREAD_LOCKED", "message": "Thread is locked"}
        )
    content = _clean_content(payload.content, MIN_POST_CONTENT_LENGTH)
    now = utc_now()
    post = ForumPost(
        thread_id=thread.id,
        content=content,
        author_id=principal.user_id,
        created_at=now,
        updated_at=now,
    )
    db.add(post)
    await db.flush()
    await forum_repo.record_reply(db, thread.id, now)
    await db.commit()
    author = await users_repo.get_user(db, principal.user_id)
    return success_response(request=request, data=_post_response(post, author).model_dump())


@router.patch("/posts/{post_id}", response_model=SuccessEnvelope[PostResponse])
async def update_post(
    post_id: str,
    payload: PostUpdateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    post = await _load_post(db, post_id)
    ensure_owner_or_admin(principal, post.author_id, message="Only the author can edit this post")
    content = payload.content.strip()
    if not content:
        raise _bad_request("INVALID_CONTENT", "Content cannot be empty")
    post.content = content
    post.is_edited = True
    await db.commit()
    await db.refresh(post)
    author = await users_repo.get_user(db, post.author_id)
    return success_response(request=request, data=_post_response(post, author).model_dump())


@router.delete("/posts/{post_id}", status_code=204, response_class=Response)
async def delete_post(
    post_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> Response:
    post = await _load_post(db, post_id)
    ensure_owner_or_admin(principal, post.author_id, message="Only the author can delete this post")
    thread = await _load_thread(db, post.thread_id)
    await db.delete(post)
    await db.flush()
    await forum_repo.remove_reply(db, thread)
    await record_audit_log(
        session=db,
        user_id=principal.user_id,
        action="DELETE_FORUM_POST",
        resource="ForumPost",
        details={"post_id": post_id, "thread_id": thread.id, "resource_name": thread.title},
        request=request,
    )
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


async def _toggle_thread_flag(
    db: AsyncSession, request: Request, principal: Principal, thread_id: str, flag: Literal["is_pinned", "is_locked"]
) -> ThreadResponse:
    thread = await _load_thread(db, thread_id)
    value = not getattr(thread, flag)
    setattr(thread, flag, value)
    action = {
        "is_pinned": "PIN_FORUM_THREAD" if value else "UNPIN_FORUM_THREAD",
        "is_locked": "LOCK_FORUM_THREAD" if value else "UNLOCK_FORUM_THREAD",
    }[flag]
    await record_audit_log(
        session=db,
        user_id=principal.user_id,
        action=action,
        resource="ForumThread",
        details={"thread_id": thread.id, "resource_name": thread.title},
        request=request,
    )
    await db.commit()
    await db.refresh(thread)
    author = await users_repo.get_user(db, thread.author_id)
    return _thread_response(thread, author)


@router.patch("/threads/{thread_id}/pin", response_model=SuccessEnvelope[ThreadResponse])
async def toggle_pin(
    thread_id: str,
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    thread = await _toggle_thread_flag(db, request, principal, thread_id, "is_pinned")
    return success_response(request=request, data=thread.model_dump())


@router.patch("/threads/{thread_id}/lock", response_model=SuccessEnvelope[ThreadResponse])
async def toggle_lock(
    thread_id: str,
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    thread = await _toggle_thread_flag(db, request, principal, thread_id, "is_locked")
    return success_response(request=request, data=thread.model_dump())


@router.get("/admin/threads", response_model=SuccessEnvelope[list[AdminThreadResponse]])
async def admin_list_threads(
    request: Request,
    category_slug: str | None = Query(default=None),
    status_filter: Literal["pinned", "locked"] | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None),
    limit: int = Query(default=MAX_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    category_id = None
    if category_slug:
        category = await forum_repo.get_category_by_slug(db, category_slug)
        if category is None:
            return success_response(request=request, data=[])
        category_id = category.id
    rows = await forum_repo.list_admin_threads(
        db, category_id=category_id, status=status_filter, search=search, limit=limit
    )
    data = [
        AdminThreadResponse(
            **_thread_response(thread, author).model_dump(),
            category_name=category.name,
            category_slug=category.slug,
        ).model_dump()
        for thread, author, category in rows
    ]
    return success_response(request=request, data=data)


@router.patch("/admin/threads/bulk", response_model=SuccessEnvelope[BulkUpdateResponse])
async def admin_bulk_update_threads(
    payload: BulkThreadUpdateRequest,
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if payload.is_pinned is None and payload.is_locked is None:
        raise _bad_request("NO_FIELDS", "Provide is_pinned or is_locked")
    updated = await forum_repo.bulk_update_threads(
        db, payload.ids, is_pinned=payload.is_pinned, is_locked=payload.is_locked
    )
    await record_audit_log(
        session=db,
        user_id=principal.user_id,
        action="BULK_UPDATE_FORUM_THREADS",
        resource="ForumThread",
        details={
            "thread_ids": payload.ids,
            "is_pinned": payload.is_pinned,
            "is_locked": payload.is_locked,
            "updated": updated,
        },
        request=request,
    )
    await db.commit()
    return success_response(request=request, data=BulkUpdateResponse(updated=updated).model_dump())


@router.post("/admin/categories", status_code=201, response_model=SuccessEnvelope[CategoryResponse])
async def admin_create_category(
    payload: CategoryCreateRequest,
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    name = payload.name.strip()
    category = ForumCategory(
        name=name,
        slug=await _category_slug(db, requested=payload.slug, name=name),
        description=payload.description,
        icon=payload.icon,
        display_order=payload.display_order,
    )
    db.add(category)
    await db.flush()
    await record_audit_log(
        session=db,
        user_id=principal.user_id,
        action="CREATE_FORUM_CATEGORY",
        resource="ForumCategory",
        details={"category_id": category.id, "resource_name": category.name},
        request=request,
    )
    await db.commit()
    return success_response(request=request, data=_category_response(category).model_dump())


@router.patch("/admin/categories/{category_id}", response_model=SuccessEnvelope[CategoryResponse])
async def admin_update_category(
    category_id: str,
    payload: CategoryUpdateRequest,
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    category = await forum_repo.get_category(db, category_id)
    if category is None:
        raise _not_found("CATEGORY_NOT_FOUND", "Category not found")
    updates = payload.model_dump(exclude_unset=True, exclude={"slug"})
    if not updates and payload.slug is None:
        raise _bad_request("NO_FIELDS", "No fields to update")
    if payload.slug is not None:
        category.slug = await _category_slug(
            db, requested=payload.slug, name=category.name, exclude_id=category.id
        )
    for field_name, value in updates.items():
        if value is None and field_name in {"name", "display_order"}:
            continue
        setattr(category, field_name, value.strip() if field_name == "name" else value)
    await record_audit_log(
        session=db,
        user_id=principal.user_id,
        action="UPDATE_FORUM_CATEGORY",
        resource="ForumCategory",
        details={"category_id": category.id, "resource_name": category.name, "fields": sorted(updates)},
        request=request,
    )
    await db.commit()
    await db.refresh(category)
    return success_response(request=request, data=_category_response(category).model_dump())


@router.delete("/admin/categories/{category_id}", status_code=204, response_class=Response)
async def admin_delete_category(
    category_id: str,
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    category = await forum_repo.get_category(db, category_id)
    if category is None:
        raise _not_found("CATEGORY_NOT_FOUND", "Category not found")
    await db.delete(category)
    await record_audit_log(
        session=db,
        user_id=principal.user_id,
        action="DELETE_FORUM_CATEGORY",
        resource="ForumCategory",
        details={"category_id": category_id, "resource_name": category.name},
        request=request,
    )
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
