from __future__ import annotations

import time
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from toolforge.apps.api.deps import Principal, get_db, require_role
from toolforge.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from toolforge.apps.api.response import Paged, SuccessEnvelope, page_info, success_response
from toolforge.apps.api.serializers import offset_for
from toolforge.core.timeutil import ensure_aware, isoformat_or_none, utc_now
from toolforge.domain.models import NewsArticle
from toolforge.persistence.repos import news as news_repo
from toolforge.services.audit import record_audit_log
from toolforge.services.slugs import join_list, slugify, split_list, unique_slug


router = APIRouter(prefix="/news", tags=["news"], responses=DEFAULT_ERROR_RESPONSES)


class ArticleResponse(BaseModel):
    id: str
    title: str
    slug: str
    summary: str
    content: str
    image_url: str | None
    source: str
    source_url: str | None
    category: str
    tags: list[str]
    published_at: str | None
    is_featured: bool
    created_at: str | None
    updated_at: str | None


class CategoryCount(BaseModel):
    category: str
    article_count: int


class ArticleCreateRequest(BaseModel):
    title: str = Field(min_length=1)
    summary: str = Field(min_length=1)
    content: str = Field(min_length=1)
    source: str = Field(min_length=1)
    category: str = Field(min_length=1)
    image_url: str | None = None
    source_url: str | None = None
    # Either a list or an already comma-separated string.
    tags: list[str] | str | None = None
    published_at: datetime | None = None
    is_featured: bool = False

    model_config = {"extra": "forbid"}


class ArticleUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    summary: str | None = None
    content: str | None = None
    source: str | None = None
    category: str | None = None
    image_url: str | None = None
    source_url: str | None = None
    tags: list[str] | str | None = None
    published_at: datetime | None = None
    is_featured: bool | None = None

    model_config = {"extra": "forbid"}


def _to_response(article: NewsArticle) -> ArticleResponse:
    return ArticleResponse(
        id=article.id,
        title=article.title,
        slug=article.slug,
        summary=article.summary,
        content=article.content,
        image_url=article.image_url,
        source=article.source,
        source_url=article.source_url,
        category=article.category,
        tags=split_list(article.tags),
        published_at=isoformat_or_none(article.published_at),
        is_featured=bool(article.is_featured),
        created_at=isoformat_or_none(article.created_at),
        updated_at=isoformat_or_none(article.updated_at),
    )


def _article_not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "ARTICLE_NOT_FOUND", "message": "Article not found"})


async def _article_slug(db: AsyncSession, title: str, *, exclude_id: str | None = None) -> str:
    base = slugify(title) or f"article-{int(time.time() * 1000)}"
    return await unique_slug(db, NewsArticle, base, exclude_id=exclude_id)


@router.get("", response_model=SuccessEnvelope[Paged[ArticleResponse]])
async def list_articles(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    category: str | None = Query(default=None),
    featured: bool | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        articles, total = await news_repo.list_articles(
            db, category=category, featured=featured, offset=offset_for(page, limit), limit=limit
        )
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=500, detail={"code": "DB_ERROR", "message": "Database error while listing news"}
        ) from exc
    payload = Paged[ArticleResponse](
        items=[_to_response(article) for article in articles],
        page=page_info(page=page, page_size=limit, total=total),
    )
    return success_response(request=request, data=payload.model_dump())


@router.get("/featured", response_model=SuccessEnvelope[list[ArticleResponse]])
async def featured_articles(
    request: Request,
    limit: int = Query(default=5, ge=1, le=10),
    db: AsyncSession = Depends(get_db),
) -> dict:
    articles = await news_repo.list_featured(db, limit=limit)
    return success_response(request=request, data=[_to_response(a).model_dump() for a in articles])


@router.get("/categories", response_model=SuccessEnvelope[list[CategoryCount]])
async def news_categories(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    counts = await news_repo.category_counts(db)
    data = [CategoryCount(category=name, article_count=count).model_dump() for name, count in counts]
    return success_response(request=request, data=data)


@router.get("/{slug}", response_model=SuccessEnvelope[ArticleResponse])
async def get_article(slug: str, request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    article = await news_repo.get_article_by_slug(db, slug)
    if article is None:
        raise _article_not_found()
    return success_response(request=request, data=_to_response(article).model_dump())


@router.post("", status_code=201, response_model=SuccessEnvelope[ArticleResponse])
async def create_article(
    payload: ArticleCreateRequest,
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    title = payload.title.strip()
    article = NewsArticle(
        title=title,
        slug=await _article_slug(db, title),
        summary=payload.summary,
        content=payload.content,
        image_url=payload.image_url,
        source=payload.source,
        source_url=payload.source_url,
        category=payload.category,
        tags=join_list(payload.tags),
        published_at=ensure_aware(payload.published_at) if payload.published_at else utc_now(),
        is_featured=payload.is_featured,
    )
    db.add(article)
    await db.flush()
    await record_audit_log(
        session=db,
        user_id=principal.user_id,
        action="CREATE_NEWS_ARTICLE",
        resource="NewsArticle",
        details={"article_id": article.id, "resource_name": article.title},
        request=request,
    )
    await db.commit()
    return success_response(request=request, data=_to_response(article).model_dump())


@router.patch("/{article_id}/featured", response_model=SuccessEnvelope[ArticleResponse])
async def toggle_featured(
    article_id: str,
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    article = await news_repo.get_article(db, article_id)
    if article is None:
        raise _article_not_found()
    article.is_featured = not article.is_featured
    await record_audit_log(
        session=db,
        user_id=principal.user_id,
        action="TOGGLE_FEATURED_NEWS_ARTICLE",
        resource="NewsArticle",
        details={"article_id": article.id, "resource_name": article.title, "is_featured": article.is_featured},
        request=request,
    )
    await db.commit()
    return success_response(request=request, data=_to_response(article).model_dump())


@router.patch("/{article_id}", response_model=SuccessEnvelope[ArticleResponse])
async def update_article(
    article_id: str,
    payload: ArticleUpdateRequest,
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    article = await news_repo.get_article(db, article_id)
    if article is None:
        raise _article_not_found()
    updates = payload.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail={"code": "NO_FIELDS", "message": "No fields to update"})
    title = updates.pop("title", None)
    if title is not None and title.strip() != article.title:
        article.title = title.strip()
        article.slug = await _article_slug(db, article.title, exclude_id=article.id)
    if "tags" in updates:
        article.tags = join_list(updates.pop("tags"))
    if updates.get("published_at") is not None:
        updates["published_at"] = ensure_aware(updates["published_at"])
    for field_name, value in updates.items():
        # Required columns ignore explicit nulls.
        if value is None and field_name in {"summary", "content", "source", "category", "published_at", "is_featured"}:
            continue
        setattr(article, field_name, value)
    await record_audit_log(
        session=db,
        user_id=principal.user_id,
        action="UPDATE_NEWS_ARTICLE",
        resource="NewsArticle",
        details={"article_id": article.id, "resource_name": article.title},
        request=request,
    )
    await db.commit()
    return success_response(request=request, data=_to_response(article).model_dump())


@router.delete("/{article_id}", status_code=204, response_class=Response)
async def delete_article(
    article_id: str,
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    article = await news_repo.get_article(db, article_id)
    if article is None:
        raise _article_not_found()
    await db.delete(article)
    await record_audit_log(
        session=db,
        user_id=principal.user_id,
        action="DELETE_NEWS_ARTICLE",
        resource="NewsArticle",
        details={"article_id": article_id, "resource_name": article.title},
        request=request,
    )
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
