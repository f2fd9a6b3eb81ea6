"""Resolve which Postgres connection strings this process should try.

Railway and Render both hand out two hostnames for the same database: an
internal one that only resolves inside the provider's private network and a
public proxy that works from anywhere but needs TLS. Deployments usually set
both (plus sometimes a manual fallback), so we classify every candidate,
reject malformed ones and order the rest so the reachable host is tried first.
"""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Mapping
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

from ..config import Settings, get_settings
from ..errors import AppError


logger = logging.getLogger("templatedb.db")

# Env vars holding candidate DSNs, in default priority order.
URL_SOURCES = (
    ("DATABASE_URL", "database_url"),
    ("DATABASE_PRIVATE_URL", "database_private_url"),
    ("DATABASE_PUBLIC_URL", "database_public_url"),
    ("DATABASE_URL_FALLBACK", "database_fallback_url"),
)
MAX_CANDIDATES = 3

_SCHEMES = ("postgres", "postgresql", "postgresql+psycopg2")
_DRIVER_SCHEME = "postgresql+psycopg2"
_LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1", "0.0.0.0"}
_RENDER_INTERNAL_RE = re.compile(r"^dpg-[a-z0-9-]+$")
_TEMPLATE_REF_RE = re.compile(r"\$\{\{.*?\}\}")

# Prisma-era pooling hints that libpq rejects as unknown options.
_POOL_HINTS = ("connection_limit", "pool_timeout")
_DROPPED_PARAMS = ("pgbouncer", "schema")


@dataclass(frozen=True)
class HostClass:
    provider: str
    network: str

    @property
    def internal(self) -> bool:
        return self.network == "internal"


@dataclass(frozen=True)
class ResolvedDbConfig:
    url: str
    source: str
    host: str
    provider: str
    network: str
    pool_size: int
    pool_timeout: int


def classify_host(host: str) -> HostClass:
    h = (host or "").strip().lower().rstrip(".")
    if h in _LOCAL_HOSTS or h.endswith(".local") or h.endswith(".localhost"):
        return HostClass("local", "local")
    if h.endswith(".railway.internal"):
        return HostClass("railway", "internal")
    if h.endswith(".rlwy.net") or h.endswith(".railway.app"):
        return HostClass("railway", "public")
    if _RENDER_INTERNAL_RE.match(h):
        return HostClass("render", "internal")
    if h.endswith(".render.com"):
        return HostClass("render", "public")
    return HostClass("other", "public")


def detect_platform(environ: Mapping[str, str] | None = None) -> str | None:
    env = os.environ if environ is None else environ
    if any(env.get(k) for k in ("RAILWAY_ENVIRONMENT", "RAILWAY_PROJECT_ID", "RAILWAY_SERVICE_ID")):
        return "railway"
    if env.get("RENDER") or env.get("RENDER_SERVICE_ID"):
        return "render"
    return None


def validate_database_url(raw: str | None) -> list[str]:
    """Return the problems with a connection string; empty when usable."""
    value = (raw or "").strip()
    if not value:
        return ["connection string is empty"]
    problems: list[str] = []
    if any(ch.isspace() for ch in value):
        problems.append("connection string contains whitespace")
    if _TEMPLATE_REF_RE.search(value):
        problems.append("connection string contains an unresolved ${{...}} reference")
        return problems
    parts = urlsplit(value)
    if parts.scheme not in _SCHEMES:
        problems.append(f"unsupported scheme '{parts.scheme or '(none)'}'")
    if not parts.hostname:
        problems.append("missing host")
    if not parts.path.strip("/"):
        problems.append("missing database name")
    try:
        parts.port
    except ValueError:
        problems.append("port is not a number")
    return problems


def mask_url(url: str) -> str:
    parts = urlsplit(url)
    if not parts.password:
        return url
    userinfo, _, hostinfo = parts.netloc.rpartition("@")
    user = userinfo.split(":", 1)[0]
    return urlunsplit(parts._replace(netloc=f"{user}:***@{hostinfo}"))


def apply_safety_params(url: str, host_class: HostClass, settings: Settings) -> tuple[str, dict]:
    """Normalise the scheme and add connection safety parameters.

    Returns the rewritten URL and the pool settings for the engine. Values
    already present in the URL win over our defaults.
    """
    parts = urlsplit(url.strip())
    params = dict(parse_qsl(parts.query, keep_blank_values=True))

    pool = {"pool_size": settings.db_pool_size, "pool_timeout": settings.db_pool_timeout}
    for hint in _POOL_HINTS:
        raw = params.pop(hint, None)
        if raw is not None and raw.isdigit() and int(raw) > 0:
            pool["pool_size" if hint == "connection_limit" else "pool_timeout"] = int(raw)
    for name in _DROPPED_PARAMS:
        params.pop(name, None)

    if "sslmode" not in params:
        if settings.db_sslmode:
            params["sslmode"] = settings.db_sslmode
        elif host_class.network == "public":
            params["sslmode"] = "require"
    params.setdefault("connect_timeout", str(settings.db_connect_timeout))
    params.setdefault("application_name", "templatedb")
    if settings.db_statement_timeout_ms > 0:
        params.setdefault("options", f"-c statement_timeout={settings.db_statement_timeout_ms}")

    query = urlencode(params, quote_via=quote)
    return urlunsplit((_DRIVER_SCHEME, parts.netloc, parts.path, query, parts.fragment)), pool


def _rank(config: ResolvedDbConfig, platform: str | None) -> int:
    if platform and config.provider == platform:
        return 0 if config.network == "internal" else 1
    if config.network == "internal":
        # Private hostnames of a provider we are not running on never resolve.
        return 3
    return 2 if platform else 0


def resolve_database_configs(
    settings: Settings | None = None,
    environ: Mapping[str, str] | None = None,
) -> list[ResolvedDbConfig]:
    settings = settings or get_settings()
    platform = detect_platform(environ)

    candidates: list[ResolvedDbConfig] = []
    seen: set[str] = set()
    for source, attr in URL_SOURCES:
        raw = getattr(settings, attr)
        if not raw:
            continue
        problems = validate_database_url(raw)
        if problems:
            logger.warning("Ignoring %s: %s", source, "; ".join(problems))
            continue
        host = urlsplit(raw.strip()).hostname or ""
        host_class = classify_host(host)
        url, pool = apply_safety_params(raw, host_class, settings)
        if url in seen:
            continue
        seen.add(url)
        candidates.append(
            ResolvedDbConfig(
                url=url,
                source=source,
                host=host,
                provider=host_class.provider,
                network=host_class.network,
                pool_size=pool["pool_size"],
                pool_timeout=pool["pool_timeout"],
            )
        )

    if not candidates:
        raise AppError(
            "No valid database connection string configured (set DATABASE_URL).",
            500,
        )

    # sort is stable, so env var priority breaks ties
    candidates.sort(key=lambda c: _rank(c, platform))
    return candidates[:MAX_CANDIDATES]


def resolve_database_config(
    settings: Settings | None = None,
    environ: Mapping[str, str] | None = None,
) -> ResolvedDbConfig:
    return resolve_database_configs(settings, environ)[0]
