from __future__ import annotations

import logging

from sqlalchemy import text

from ..utils import compact_text
from .engine import with_db


logger = logging.getLogger("templatedb.seed")

SEED_USERS = [
    {"username": "akbar", "display_name": "Fadhil Akbar"},
    {"username": "globaldev", "display_name": "Global Dev"},
]

SEED_TEMPLATES = [
    {
        "slug": "ultra-fast-fastapi-boilerplate",
        "title": "Ultra Fast FastAPI Boilerplate",
        "summary": "Production-ready code template with FastAPI, Postgres and Railway deployment.",
        "content": "Starter ready for production: auth, API routes, metrics, edge caching and CI.",
        "type": "CODE",
        "tags": ["fastapi", "postgres", "railway"],
        "owner": "akbar",
    },
    {
        "slug": "startup-idea-ai-lms",
        "title": "Startup Idea: AI-Powered LMS",
        "summary": "Product blueprint for an adaptive, AI-driven learning platform.",
        "content": "Market, go-to-market, business model and a complete technology architecture.",
        "type": "IDEA",
        "tags": ["ai", "edtech", "startup"],
        "owner": "globaldev",
    },
    {
        "slug": "short-story-neon-rain",
        "title": "Short Story: Neon Rain",
        "summary": "A short cyberpunk story template ready to remix.",
        "content": "Night falls over Neo-Jakarta. Neon rain bounces off an old visor...",
        "type": "STORY",
        "tags": ["story", "cyberpunk"],
        "owner": "globaldev",
    },
]


def _seed(conn, _source: str) -> int:
    owners = {}
    for user in SEED_USERS:
        owners[user["username"]] = conn.execute(
            text(
                """
                INSERT INTO public.users (username, display_name)
                VALUES (:username, :display_name)
                ON CONFLICT (username) DO UPDATE SET username = EXCLUDED.username
                RETURNING id
                """
            ),
            user,
        ).scalar_one()

    for t in SEED_TEMPLATES:
        conn.execute(
            text(
                """
                INSERT INTO public.templates
                    (slug, title, summary, content, type, tags, featured, search_document, owner_id)
                VALUES
                    (:slug, :title, :summary, :content, CAST(:type AS template_type), :tags, true,
                     :search_document, :owner_id)
                ON CONFLICT (slug) DO UPDATE SET
                    title = EXCLUDED.title, summary = EXCLUDED.summary, content = EXCLUDED.content,
                    type = EXCLUDED.type, tags = EXCLUDED.tags, featured = EXCLUDED.featured,
                    search_document = EXCLUDED.search_document, owner_id = EXCLUDED.owner_id,
                    updated_at = now()
                """
            ),
            {
                "slug": t["slug"],
                "title": t["title"],
                "summary": t["summary"],
                "content": t["content"],
                "type": t["type"],
                "tags": t["tags"],
                "search_document": compact_text(t["title"], t["summary"], t["content"], " ".join(t["tags"])),
                "owner_id": owners[t["owner"]],
            },
        )
    return len(SEED_TEMPLATES)


def seed() -> int:
    count = with_db(_seed)
    logger.info("Seeded %d templates", count)
    return count
