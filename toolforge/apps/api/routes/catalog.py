from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from toolforge.apps.api.deps import Principal, get_db, require_role
from toolforge.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from toolforge.apps.api.response import Paged, SuccessEnvelope, page_info, success_response
from toolforge.apps.api.serializers import offset_for
from toolforge.core.timeutil import isoformat_or_none
from toolforge.domain.models import Tool, Workflow
from toolforge.persistence.repos import catalog as catalog_repo
from toolforge.services.audit import record_audit_log
from toolforge.services.slugs import join_list, slugify, split_list, unique_slug


router = APIRouter(tags=["catalog"], responses=DEFAULT_ERROR_RESPONSES)

SLUG_MAX_LENGTH = 96


class ToolResponse(BaseModel):
    id: str
    slug: str
    name: str
    summary: str
    website_url: str
    logo_url: str | None
    pricing_model: str
    free_tier: bool
    rating: float
    verdict: str | None
    pros: list[str]
    cons: list[str]
    best_for: str | None
    quickstart: list[str]
    categories: list[str]
    tags: list[str]
    affiliate_link_id: str | None
    youtube_review_id: str | None
    created_at: str | None
    updated_at: str | None


class ToolCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    slug: str | None = None
    summary: str = Field(min_length=1)
    website_url: str = Field(min_length=1)
    logo_url: str | None = None
    pricing_model: str = Field(min_length=1)
    free_tier: bool = False
    rating: float = Field(default=0.0, ge=0, le=5)
    verdict: str | None = None
    pros: list[str] = Field(default_factory=list)
    cons: list[str] = Field(default_factory=list)
    best_for: str | None = None
    quickstart: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    affiliate_link_id: str | None = None
    youtube_review_id: str | None = None

    model_config = {"extra": "forbid"}


class ToolUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    slug: str | None = None
    summary: str | None = None
    website_url: str | None = None
    logo_url: str | None = None
    pricing_model: str | None = None
    free_tier: bool | None = None
    rating: float | None = Field(default=None, ge=0, le=5)
    verdict: str | None = None
    pros: list[str] | None = None
    cons: list[str] | None = None
    best_for: str | None = None
    quickstart: list[str] | None = None
    categories: list[str] | None = None
    tags: list[str] | None = None
    affiliate_link_id: str | None = None
    youtube_review_id: str | None = None

    model_config = {"extra": "forbid"}


class WorkflowResponse(BaseModel):
    id: str
    slug: str
    name: str
    description: str
    services: list[str]
    icon: str | None
    deployment_url: str | None
    created_at: str | None
    updated_at: str | None


class WorkflowCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    slug: str | None = None
    description: str = Field(min_length=1)
    services: list[str] = Field(default_factory=list)
    icon: str | None = None
    deployment_url: str | None = None

    model_config = {"extra": "forbid"}


class WorkflowUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    slug: str | None = None
    description: str | None = None
    services: list[str] | None = None
    icon: str | None = None
    deployment_url: str | None = None

    model_config = {"extra": "forbid"}


# Stored as comma-joined text, exposed as lists.
_TOOL_LIST_FIELDS = {"pros", "cons", "quickstart", "categories", "tags"}
_WORKFLOW_LIST_FIELDS = {"services"}


def _tool_response(tool: Tool) -> ToolResponse:
    return ToolResponse(
        id=tool.id,
        slug=tool.slug,
        name=tool.name,
        summary=tool.summary,
        website_url=tool.website_url,
        logo_url=tool.logo_url,
        pricing_model=tool.pricing_model,
        free_tier=bool(tool.free_tier),
        rating=float(tool.rating or 0.0),
        verdict=tool.verdict,
        pros=split_list(tool.pros),
        cons=split_list(tool.cons),
        best_for=tool.best_for,
        quickstart=split_list(tool.quickstart),
        categories=split_list(tool.categories),
        tags=split_list(tool.tags),
        affiliate_link_id=tool.affiliate_link_id,
        youtube_review_id=tool.youtube_review_id,
        created_at=isoformat_or_none(tool.created_at),
        updated_at=isoformat_or_none(tool.updated_at),
    )


def _workflow_response(workflow: Workflow) -> WorkflowResponse:
    return WorkflowResponse(
        id=workflow.id,
        slug=workflow.slug,
        name=workflow.name,
        description=workflow.description,
        services=split_list(workflow.services),
        icon=workflow.icon,
        deployment_url=workflow.deployment_url,
        created_at=isoformat_or_none(workflow.created_at),
        updated_at=isoformat_or_none(workflow.updated_at),
    )


def _db_error(message: str) -> HTTPException:
    return HTTPException(status_code=500, detail={"code": "DB_ERROR", "message": message})


def _not_found(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": code, "message": message})


def _slug_conflict(slug: str) -> HTTPException:
    return HTTPException(
        status_code=409,
        detail={"code": "SLUG_CONFLICT", "message": f"Slug '{slug}' is already in use"},
    )


async def _resolve_slug(
    db: AsyncSession,
    model,
    *,
    requested: str | None,
    name: str,
    fallback: str,
    exclude_id: str | None = None,
) -> str:
    # Explicit slugs must be free; generated ones get -2, -3 suffixes.
    if requested:
        slug = slugify(requested, max_length=SLUG_MAX_LENGTH)
        if not slug:
            raise HTTPException(
                status_code=400, detail={"code": "INVALID_SLUG", "message": "Slug is empty after normalization"}
            )
        if await unique_slug(db, model, slug, exclude_id=exclude_id) != slug:
            raise _slug_conflict(slug)
        return slug
    base = slugify(name, max_length=SLUG_MAX_LENGTH, fallback=fallback)
    return await unique_slug(db, model, base, exclude_id=exclude_id, max_length=SLUG_MAX_LENGTH)


def _apply_updates(target, updates: dict, list_fields: set[str]) -> None:
    for field_name, value in updates.items():
        if field_name in list_fields:
            value = join_list(value)
        setattr(target, field_name, value)


@router.get("/tools", response_model=SuccessEnvelope[Paged[ToolResponse]])
async def list_tools(
    request: Request,
    q: str | None = Query(default=None),
    category: str | None = Query(default=None),
    pricing_model: str | None = Query(default=None),
    free_tier: bool | None = Query(default=None),
    sort: Literal["rating", "name", "newest"] = Query(default="rating"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        tools, total = await catalog_repo.list_tools(
            db,
            q=q,
            category=category,
            pricing_model=pricing_model,
            free_tier=free_tier,
            sort=sort,
            offset=offset_for(page, page_size),
            limit=page_size,
        )
    except SQLAlchemyError as exc:
        raise _db_error("Database error while listing tools") from exc
    payload = Paged[ToolResponse](
        items=[_tool_response(tool) for tool in tools],
        page=page_info(page=page, page_size=page_size, total=total),
    )
    return success_response(request=request, data=payload.model_dump())


@router.get("/tools/{slug}", response_model=SuccessEnvelope[ToolResponse])
async def get_tool(slug: str, request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    tool = await catalog_repo.get_tool_by_slug(db, slug)
    if tool is None:
        raise _not_found("TOOL_NOT_FOUND", "Tool not found")
    return success_response(request=request, data=_tool_response(tool).model_dump())


@router.post("/tools", status_code=201, response_model=SuccessEnvelope[ToolResponse])
async def create_tool(
    payload: ToolCreateRequest,
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    data = payload.model_dump(exclude={"slug"})
    slug = await _resolve_slug(db, Tool, requested=payload.slug, name=payload.name, fallback="tool")
    tool = Tool(slug=slug)
    _apply_updates(tool, data, _TOOL_LIST_FIELDS)
    db.add(tool)
    await db.flush()
    await record_audit_log(
        session=db,
        user_id=principal.user_id,
        action="CREATE_TOOL",
        resource="Tool",
        details={"tool_id": tool.id, "resource_name": tool.name, "slug": tool.slug},
        request=request,
    )
    await db.commit()
    return success_response(request=request, data=_tool_response(tool).model_dump())


@router.patch("/tools/{tool_id}", response_model=SuccessEnvelope[ToolResponse])
async def update_tool(
    tool_id: str,
    payload: ToolUpdateRequest,
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tool = await catalog_repo.get_tool(db, tool_id)
    if tool is None:
        raise _not_found("TOOL_NOT_FOUND", "Tool not found")
    updates = payload.model_dump(exclude_unset=True, exclude={"slug"})
    if not updates and payload.slug is None:
        raise HTTPException(status_code=400, detail={"code": "NO_FIELDS", "message": "No fields to update"})
    if payload.slug is not None:
        tool.slug = await _resolve_slug(
            db, Tool, requested=payload.slug, name=tool.name, fallback="tool", exclude_id=tool.id
        )
    _apply_updates(tool, updates, _TOOL_LIST_FIELDS)
    await record_audit_log(
        session=db,
        user_id=principal.user_id,
        action="UPDATE_TOOL",
        resource="Tool",
        details={"tool_id": tool.id, "resource_name": tool.name, "fields": sorted(updates)},
        request=request,
    )
    await db.commit()
    return success_response(request=request, data=_tool_response(tool).model_dump())


@router.delete("/tools/{tool_id}", status_code=204, response_class=Response)
async def delete_tool(
    tool_id: str,
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    tool = await catalog_repo.get_tool(db, tool_id)
    if tool is None:
        raise _not_found("TOOL_NOT_FOUND", "Tool not found")
    await db.delete(tool)
    await record_audit_log(
        session=db,
        user_id=principal.user_id,
        action="DELETE_TOOL",
        resource="Tool",
        details={"tool_id": tool_id, "resource_name": tool.name},
        request=request,
    )
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/workflows", response_model=SuccessEnvelope[Paged[WorkflowResponse]])
async def list_workflows(
    request: Request,
    q: str | None = Query(default=None),
    sort: Literal["name", "newest"] = Query(default="name"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        workflows, total = await catalog_repo.list_workflows(
            db, q=q, sort=sort, offset=offset_for(page, page_size), limit=page_size
        )
    except SQLAlchemyError as exc:
        raise _db_error("Database error while listing workflows") from exc
    payload = Paged[WorkflowResponse](
        items=[_workflow_response(workflow) for workflow in workflows],
        page=page_info(page=page, page_size=page_size, total=total),
    )
    return success_response(request=request, data=payload.model_dump())


@router.get("/workflows/{slug}", response_model=SuccessEnvelope[WorkflowResponse])
async def get_workflow(slug: str, request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    workflow = await catalog_repo.get_workflow_by_slug(db, slug)
    if workflow is None:
        raise _not_found("WORKFLOW_NOT_FOUND", "Workflow not found")
    return success_response(request=request, data=_workflow_response(workflow).model_dump())


@router.post("/workflows", status_code=201, response_model=SuccessEnvelope[WorkflowResponse])
async def create_workflow(
    payload: WorkflowCreateRequest,
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    slug = await _resolve_slug(db, Workflow, requested=payload.slug, name=payload.name, fallback="workflow")
    workflow = Workflow(slug=slug)
    _apply_updates(workflow, payload.model_dump(exclude={"slug"}), _WORKFLOW_LIST_FIELDS)
    db.add(workflow)
    await db.flush()
    await record_audit_log(
        session=db,
        user_id=principal.user_id,
        action="CREATE_WORKFLOW",
        resource="Workflow",
        details={"workflow_id": workflow.id, "resource_name": workflow.name, "slug": workflow.slug},
        request=request,
    )
    await db.commit()
    return success_response(request=request, data=_workflow_response(workflow).model_dump())


@router.patch("/workflows/{workflow_id}", response_model=SuccessEnvelope[WorkflowResponse])
async def update_workflow(
    workflow_id: str,
    payload: WorkflowUpdateRequest,
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    workflow = await catalog_repo.get_workflow(db, workflow_id)
    if workflow is None:
        raise _not_found("WORKFLOW_NOT_FOUND", "Workflow not found")
    updates = payload.model_dump(exclude_unset=True, exclude={"slug"})
    if not updates and payload.slug is None:
        raise HTTPException(status_code=400, detail={"code": "NO_FIELDS", "message": "No fields to update"})
    if payload.slug is not None:
        workflow.slug = await _resolve_slug(
            db, Workflow, requested=payload.slug, name=workflow.name, fallback="workflow", exclude_id=workflow.id
        )
    _apply_updates(workflow, updates, _WORKFLOW_LIST_FIELDS)
    await record_audit_log(
        session=db,
        user_id=principal.user_id,
        action="UPDATE_WORKFLOW",
        resource="Workflow",
        details={"workflow_id": workflow.id, "resource_name": workflow.name, "fields": sorted(updates)},
        request=request,
    )
    await db.commit()
    return success_response(request=request, data=_workflow_response(workflow).model_dump())


@router.delete("/workflows/{workflow_id}", status_code=204, response_class=Response)
async def delete_workflow(
    workflow_id: str,
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    workflow = await catalog_repo.get_workflow(db, workflow_id)
    if workflow is None:
        raise _not_found("WORKFLOW_NOT_FOUND", "Workflow not found")
    await db.delete(workflow)
    await record_audit_log(
        session=db,
        user_id=principal.user_id,
        action="DELETE_WORKFLOW",
        resource="Workflow",
        details={"workflow_id": workflow_id, "resource_name": workflow.name},
        request=request,
    )
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
