from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass

from sqlalchemy import select

from toolforge.domain.models import ForumCategory, Tool, Workflow
from toolforge.persistence.db import SessionLocal, engine
from toolforge.services.slugs import join_list, slugify


@dataclass(frozen=True)
class DemoTool:
    # Seed rows are keyed by slug.
    name: str
    summary: str
    website_url: str
    pricing_model: str
    free_tier: bool
    rating: float
    categories: tuple[str, ...]
    tags: tuple[str, ...]


@dataclass(frozen=True)
class DemoWorkflow:
    name: str
    description: str
    services: tuple[str, ...]


@dataclass(frozen=True)
class DemoCategory:
    name: str
    description: str
    icon: str
    display_order: int


def build_demo_tools() -> tuple[DemoTool, ...]:
    return (
        DemoTool(
            name="PromptPad",
            summary="Collaborative prompt editor with versioning and side-by-side model runs.",
            website_url="https://promptpad.example.com",
            pricing_model="freemium",
            free_tier=True,
            rating=4.6,
            categories=("Writing", "Productivity"),
            tags=("prompts", "collaboration"),
        ),
        DemoTool(
            name="Clipwise",
            summary="Turns long videos into captioned short clips using speech detection.",
            website_url="https://clipwise.example.com",
            pricing_model="paid",
            free_tier=False,
            rating=4.2,
            categories=("Video",),
            tags=("video", "captions"),
        ),
        DemoTool(
            name="Sheetsmith",
            summary="Natural-language formulas and cleanup for spreadsheets.",
            website_url="https://sheetsmith.example.com",
            pricing_model="free",
            free_tier=True,
            rating=3.9,
            categories=("Data", "Productivity"),
            tags=("spreadsheets", "automation"),
        ),
    )


def build_demo_workflows() -> tuple[DemoWorkflow, ...]:
    return (
        DemoWorkflow(
            name="Inbox Triage",
            description="Classifies incoming email and drafts replies for review.",
            services=("Gmail", "OpenAI", "Slack"),
        ),
        DemoWorkflow(
            name="Podcast Show Notes",
            description="Transcribes an episode and publishes show notes to the CMS.",
            services=("Whisper", "Notion"),
        ),
    )


def build_demo_categories() -> tuple[DemoCategory, ...]:
    return (
        DemoCategory("General Discussion", "Anything about AI tools and workflows.", "message-circle", 1),
        DemoCategory("Tool Reviews", "Share hands-on experience with specific tools.", "star", 2),
        DemoCategory("Help & Support", "Ask the community for help.", "life-buoy", 3),
    )


async def _existing_slugs(session, model) -> set[str]:
    result = await session.execute(select(model.slug))
    return set(result.scalars().all())


async def seed_demo() -> int:
    # Insert only rows whose slug is missing so the seed stays idempotent.
    created = 0
    async with SessionLocal() as session:
        tool_slugs = await _existing_slugs(session, Tool)
        for tool in build_demo_tools():
            slug = slugify(tool.name)
            if slug in tool_slugs:
                continue
            session.add(
                Tool(
                    slug=slug,
                    name=tool.name,
                    summary=tool.summary,
                    website_url=tool.website_url,
                    pricing_model=tool.pricing_model,
                    free_tier=tool.free_tier,
                    rating=tool.rating,
                    categories=join_list(tool.categories),
                    tags=join_list(tool.tags),
                )
            )
            created += 1

        workflow_slugs = await _existing_slugs(session, Workflow)
        for workflow in build_demo_workflows():
            slug = slugify(workflow.name)
            if slug in workflow_slugs:
                continue
            session.add(
                Workflow(
                    slug=slug,
                    name=workflow.name,
                    description=workflow.description,
                    services=join_list(workflow.services),
                )
            )
            created += 1

        category_slugs = await _existing_slugs(session, ForumCategory)
        for category in build_demo_categories():
            slug = slugify(category.name)
            if slug in category_slugs:
                continue
            session.add(
                ForumCategory(
                    slug=slug,
                    name=category.name,
                    description=category.description,
                    icon=category.icon,
                    display_order=category.display_order,
                )
            )
            created += 1
        await session.commit()

    if created:
        print(f"Seeded {created} demo rows.")
    else:
        print("Demo data already seeded; skipping.")
    return 0


async def _run() -> int:
    try:
        return await seed_demo()
    finally:
        await engine.dispose()


def main() -> int:
    try:
        return asyncio.run(_run())
    except Exception as exc:  # noqa: BLE001
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
