from __future__ import annotations

import logging
import os
from contextlib import closing
from typing import Iterator

import psycopg2
import psycopg2.extras
from sqlalchemy import text
from sqlalchemy.engine import make_url

from ..config import get_settings
from ..errors import to_error_payload
from .engine import with_db
from .env import resolve_database_config


logger = logging.getLogger("templatedb.db")


def connect():
    """Raw psycopg2 connection to the preferred database source."""
    config = resolve_database_config()
    # libpq does not understand the SQLAlchemy driver suffix
    dsn = make_url(config.url).set(drivername="postgresql").render_as_string(hide_password=False)
    return psycopg2.connect(dsn, cursor_factory=psycopg2.extras.DictCursor)


_LEDGER_DDL = """
CREATE TABLE IF NOT EXISTS public.schema_migrations (
    id text PRIMARY KEY,
    applied_at timestamptz NOT NULL DEFAULT now()
)
"""


def _is_destructive(sql: str) -> bool:
    lowered = sql.lower()
    if "drop table" in lowered or "drop index" in lowered:
        return True
    return "alter table" in lowered and " drop " in lowered


def _pending_migrations(dir_path: str, done: set[str]) -> Iterator[tuple[str, str]]:
    """Yield (filename, sql) for files not yet applied, honouring operator controls.

    SKIP_MIGRATIONS lists filenames to leave out; DROP statements are held
    back unless ALLOW_DESTRUCTIVE_MIGRATIONS is set.
    """
    skip = {name.strip() for name in (os.getenv("SKIP_MIGRATIONS") or "").split(",") if name.strip()}
    allow_destructive = os.getenv("ALLOW_DESTRUCTIVE_MIGRATIONS", "0") in ("1", "true", "True")
    for name in sorted(n for n in os.listdir(dir_path) if n.endswith(".sql") and n not in done):
        if name in skip:
            logger.info("Skipping migration %s (listed in SKIP_MIGRATIONS)", name)
            continue
        with open(os.path.join(dir_path, name), "r", encoding="utf-8") as f:
            sql = f.read()
        if not allow_destructive and _is_destructive(sql):
            logger.warning("Holding back destructive migration %s (set ALLOW_DESTRUCTIVE_MIGRATIONS=1)", name)
            continue
        yield name, sql


def run_migrations(migrations_dir: str | None = None) -> list[str]:
    """Apply pending .sql files in lexical order, recording each in schema_migrations."""
    dir_path = migrations_dir or get_settings().migrations_dir
    if not os.path.isdir(dir_path):
        logger.warning("Migrations directory %s not found; nothing to apply", dir_path)
        return []

    applied: list[str] = []
    with closing(connect()) as conn, conn.cursor() as cur:
        cur.execute(_LEDGER_DDL)
        conn.commit()
        cur.execute("SELECT id FROM public.schema_migrations")
        done = {row[0] for row in cur.fetchall()}
        for name, sql in _pending_migrations(dir_path, done):
            # one transaction per file, ledger row included
            cur.execute(sql)
            cur.execute("INSERT INTO public.schema_migrations (id) VALUES (%s)", (name,))
            conn.commit()
            applied.append(name)
    return applied


def _ping(conn, source: str) -> str:
    conn.execute(text("SELECT 1")).scalar_one()
    return source


def health_check() -> dict:
    try:
        source = with_db(_ping)
        return {"status": "ok", "source": source}
    except Exception as e:
        return {"status": "error", "error": to_error_payload(e)[1]}
