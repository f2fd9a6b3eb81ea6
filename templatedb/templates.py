from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from .db.engine import with_db
from .errors import AppError, is_unique_violation
from .utils import compact_text, slugify, to_iso


logger = logging.getLogger("templatedb.templates")

TEMPLATE_TYPES = ("CODE", "IDEA", "STORY", "OTHER")
CREATE_ATTEMPTS = 5
FORK_ATTEMPTS = 6

_TEMPLATE_COLUMNS = """
    t.id, t.slug, t.title, t.summary, t.content, t.type::text AS type, t.tags,
    t.featured, t.owner_id, t.created_at, t.updated_at,
    u.username AS owner_username, u.display_name AS owner_display_name
"""


def serialize_template(row: dict) -> dict:
    out = {
        "id": row["id"],
        "slug": row["slug"],
        "title": row["title"],
        "summary": row["summary"],
        "type": row["type"],
        "tags": list(row.get("tags") or []),
        "featured": bool(row.get("featured")),
        "content": row["content"],
        "ownerId": row["owner_id"],
        "createdAt": to_iso(row.get("created_at")),
        "updatedAt": to_iso(row.get("updated_at")),
    }
    if row.get("owner_username") is not None:
        out["owner"] = {
            "id": row["owner_id"],
            "username": row["owner_username"],
            "displayName": row["owner_display_name"],
        }
    return out


class TemplateIn(BaseModel):
    """Create-template body; ``ownerId`` is accepted as an alias of ``ownerRef``."""

    title: str = Field(min_length=3, max_length=120)
    summary: str = Field(min_length=10, max_length=300)
    content: str = Field(min_length=10)
    type: Literal["CODE", "IDEA", "STORY", "OTHER"]
    owner_ref: str = Field(min_length=2, max_length=64)
    tags: list[str] = []
    featured: bool = False

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        tags_input = data.get("tags")
        if isinstance(tags_input, list):
            tags = [str(v).strip() for v in tags_input if str(v).strip()]
        else:
            tags = [v.strip() for v in str(tags_input or "").split(",") if v.strip()]
        return {
            "title": str(data.get("title") or "").strip(),
            "summary": str(data.get("summary") or "").strip(),
            "content": str(data.get("content") or "").strip(),
            "type": str(data.get("type") or "OTHER").strip().upper(),
            "owner_ref": str(data.get("ownerRef") or data.get("ownerId") or "").strip(),
            "tags": tags,
            "featured": data.get("featured") is True,
        }

    @field_validator("tags")
    @classmethod
    def _check_tags(cls, tags: list[str]) -> list[str]:
        problems = []
        if len(tags) > 12:
            problems.append("tags cannot exceed 12 items")
        if any(not 1 <= len(t) <= 30 for t in tags):
            problems.append("each tag length must be between 1 and 30 characters")
        if problems:
            raise ValueError("; ".join(problems))
        return tags


_FIELD_MESSAGES = {
    "title": "title must be between 3 and 120 characters",
    "summary": "summary must be between 10 and 300 characters",
    "content": "content must be at least 10 characters",
    "type": "type must be CODE|IDEA|STORY|OTHER",
    "owner_ref": "ownerRef (or ownerId) must be between 2 and 64 characters",
}


def _describe(error: dict) -> str:
    if "error" in error.get("ctx", {}):
        return str(error["ctx"]["error"])
    field = error["loc"][0] if error["loc"] else ""
    return _FIELD_MESSAGES.get(field, error["msg"])


def normalize_create_payload(body: Any) -> dict:
    """Validate a create-template body, collecting every problem into one 400."""
    if not isinstance(body, dict):
        raise AppError("Invalid request payload: body must be an object", 400)
    try:
        parsed = TemplateIn.model_validate(body)
    except ValidationError as e:
        messages = list(dict.fromkeys(_describe(err) for err in e.errors()))
        raise AppError(f"Invalid request payload: {'; '.join(messages)}", 400)
    return parsed.model_dump()


def resolve_owner_id(conn: Connection, owner_ref: str) -> str:
    """Find a user by id or username, creating one from the reference otherwise."""
    ref = owner_ref.strip()
    row = conn.execute(
        text("SELECT id FROM public.users WHERE id = :ref OR username = :ref ORDER BY (id = :ref) DESC LIMIT 1"),
        {"ref": ref},
    ).first()
    if row:
        return row[0]

    username = slugify(ref).replace("-", "")[:24] or f"user{int(time.time() * 1000)}"
    display_name = ref[:60]
    return conn.execute(
        text(
            """
            INSERT INTO public.users (username, display_name)
            VALUES (:username, :display_name)
            ON CONFLICT (username) DO UPDATE SET display_name = EXCLUDED.display_name
            RETURNING id
            """
        ),
        {"username": username, "display_name": display_name},
    ).scalar_one()


def _insert_template(conn: Connection, data: dict, slug: str) -> dict:
    row = conn.execute(
        text(
            """
            INSERT INTO public.templates
                (slug, title, summary, content, type, tags, featured, search_document, owner_id)
            VALUES
                (:slug, :title, :summary, :content, CAST(:type AS template_type), :tags,
                 :featured, :search_document, :owner_id)
            RETURNING id, slug, title, summary, content, type::text AS type, tags, featured,
                      owner_id, created_at, updated_at
            """
        ),
        {
            "slug": slug,
            "title": data["title"],
            "summary": data["summary"],
            "content": data["content"],
            "type": data["type"],
            "tags": list(data["tags"]),
            "featured": bool(data.get("featured")),
            "search_document": compact_text(data["title"], data["summary"], data["content"], " ".join(data["tags"])),
            "owner_id": data["owner_id"],
        },
    ).mappings().one()
    return dict(row)


def _random_suffix() -> str:
    return uuid.uuid4().hex[:6]


def _create_with_unique_slug(data: dict, slugs: list[str], conflict_message: str) -> dict:
    for slug in slugs:
        try:
            return with_db(lambda conn, _source: _insert_template(conn, data, slug))
        except IntegrityError as e:
            if not is_unique_violation(e, "slug"):
                raise
            logger.info("Slug %s already taken, retrying", slug)
    raise AppError(conflict_message, 409)


def create_template(payload: dict) -> dict:
    owner_id = with_db(lambda conn, _source: resolve_owner_id(conn, payload["owner_ref"]))
    data = {**payload, "owner_id": owner_id}
    base = slugify(data["title"]) or "template"
    slugs = [base] + [f"{base}-{_random_suffix()}" for _ in range(CREATE_ATTEMPTS - 1)]
    created = _create_with_unique_slug(data, slugs, "Failed to generate unique slug after multiple attempts")
    return serialize_template(created)


def list_templates(featured_only: bool = False) -> list[dict]:
    sql = f"SELECT {_TEMPLATE_COLUMNS} FROM public.templates t JOIN public.users u ON u.id = t.owner_id"
    if featured_only:
        sql += " WHERE t.featured"
    sql += " ORDER BY t.featured DESC, t.created_at DESC LIMIT :limit"
    limit = 8 if featured_only else 50

    def _list(conn: Connection, _source: str) -> list[dict]:
        return [dict(r) for r in conn.execute(text(sql), {"limit": limit}).mappings().all()]

    return [serialize_template(r) for r in with_db(_list)]


def _find_by_slug(conn: Connection, slug: str) -> dict | None:
    row = conn.execute(
        text(f"SELECT {_TEMPLATE_COLUMNS} FROM public.templates t JOIN public.users u ON u.id = t.owner_id WHERE t.slug = :slug"),
        {"slug": slug},
    ).mappings().first()
    return dict(row) if row else None


def get_template(slug: str) -> dict:
    if not slug or len(slug.strip()) < 2:
        raise AppError("Invalid template slug", 400)
    row = with_db(lambda conn, _source: _find_by_slug(conn, slug))
    if not row:
        raise AppError("Template not found", 404)
    return serialize_template(row)


def fork_template(slug: str, owner_ref: str) -> dict:
    owner_ref = (owner_ref or "").strip()
    if len(owner_ref) < 2:
        raise AppError("ownerRef is required", 400)

    source = with_db(lambda conn, _source: _find_by_slug(conn, slug))
    if not source:
        raise AppError("Template not found", 404)

    owner_id = with_db(lambda conn, _source: resolve_owner_id(conn, owner_ref))
    data = {
        "title": f"{source['title']} Fork",
        "summary": source["summary"],
        "content": source["content"],
        "type": source["type"],
        "tags": list(source["tags"] or []),
        "featured": False,
        "owner_id": owner_id,
    }
    base = slugify(source["title"]) or "template"
    slugs = [f"{base}-fork"] + [f"{base}-fork-{_random_suffix()}" for _ in range(FORK_ATTEMPTS - 1)]
    forked = _create_with_unique_slug(data, slugs, "Failed to create unique fork slug")
    return {"id": forked["id"], "slug": forked["slug"]}
