"""Template search.

Short queries (2-3 chars) are too small for trigram or full-text scoring, so
they use prefix matching on title, tags and summary. Longer queries are
scored with ts_rank_cd over ``search_document`` plus weighted pg_trgm
similarity on title and summary.
"""
from __future__ import annotations

import re

from sqlalchemy import text
from sqlalchemy.engine import Connection

from .db.engine import with_db
from .errors import AppError
from .templates import TEMPLATE_TYPES


MIN_QUERY_LENGTH = 2
SHORT_QUERY_LENGTH = 3
MAX_QUERY_LENGTH = 120
RESULT_LIMIT = 20

_SHORT_SQL = """
    SELECT id, slug, title, summary, type::text AS type, tags
    FROM public.templates
    WHERE (
        lower(title) LIKE :prefix ESCAPE '\\'
        OR EXISTS (
            SELECT 1 FROM unnest(tags) AS tag
            WHERE lower(tag) LIKE :prefix ESCAPE '\\'
        )
        OR lower(summary) LIKE :prefix ESCAPE '\\'
    )
    {type_clause}
    {order}
    LIMIT :limit
"""

_SHORT_RELEVANCE_ORDER = """
    ORDER BY
        CASE WHEN lower(title) = :lower_q THEN 0 ELSE 1 END,
        CASE WHEN lower(title) LIKE :prefix ESCAPE '\\' THEN 0 ELSE 1 END,
        created_at DESC
"""

_RANKED_SQL = """
    WITH ranked AS (
        SELECT
            id, slug, title, summary, type, tags, created_at,
            ts_rank_cd(to_tsvector('simple', search_document), websearch_to_tsquery('simple', :q))
              + similarity(title, :q) * 0.8
              + similarity(summary, :q) * 0.35 AS score
        FROM public.templates
        WHERE (
            to_tsvector('simple', search_document) @@ websearch_to_tsquery('simple', :q)
            OR title % :q
            OR summary % :q
        )
        {type_clause}
    )
    SELECT id, slug, title, summary, type::text AS type, tags
    FROM ranked
    {order}
    LIMIT :limit
"""

_NEWEST_ORDER = "ORDER BY created_at DESC"
_SCORE_ORDER = "ORDER BY score DESC, created_at DESC"
_TYPE_CLAUSE = "AND type = CAST(:type AS template_type)"


def sanitize_query(raw: str | None) -> str:
    return re.sub(r"\s+", " ", (raw or "").strip())


def read_sort_mode(raw: str | None) -> str:
    return "newest" if raw == "newest" else "relevance"


def read_type_filter(raw: str | None) -> str | None:
    if not raw:
        return None
    normalized = raw.strip().upper()
    return normalized if normalized in TEMPLATE_TYPES else None


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_search_statement(q: str, sort: str, type_filter: str | None) -> tuple[str, dict]:
    """Pick the tier for ``q`` and return the SQL with its bind parameters."""
    lower_q = q.lower()
    params: dict = {"limit": RESULT_LIMIT}
    type_clause = _TYPE_CLAUSE if type_filter else ""
    if type_filter:
        params["type"] = type_filter

    if len(q) <= SHORT_QUERY_LENGTH:
        params["prefix"] = f"{_escape_like(lower_q)}%"
        if sort == "newest":
            order = _NEWEST_ORDER
        else:
            order = _SHORT_RELEVANCE_ORDER
            params["lower_q"] = lower_q
        return _SHORT_SQL.format(type_clause=type_clause, order=order), params

    params["q"] = q
    order = _NEWEST_ORDER if sort == "newest" else _SCORE_ORDER
    return _RANKED_SQL.format(type_clause=type_clause, order=order), params


def search_templates(raw_q: str | None, sort: str | None = None, type_filter: str | None = None) -> list[dict]:
    q = sanitize_query(raw_q)
    if len(q) < MIN_QUERY_LENGTH:
        return []
    if len(q) > MAX_QUERY_LENGTH:
        raise AppError(f"Search query too long (max {MAX_QUERY_LENGTH} characters).", 400)

    sql, params = build_search_statement(q, read_sort_mode(sort), read_type_filter(type_filter))

    def _run(conn: Connection, _source: str) -> list[dict]:
        rows = conn.execute(text(sql), params).mappings().all()
        return [{**dict(r), "tags": list(r["tags"] or [])} for r in rows]

    return with_db(_run)
