import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from templatedb.errors import AppError, availability_issue, error_response
from templatedb.fallback import FEATURED_FALLBACK, fallback_detail
from templatedb.templates import create_template, fork_template, get_template, list_templates, normalize_create_payload


logger = logging.getLogger("templatedb.api")

router = APIRouter(prefix="/api/templates")

FEATURED_CACHE = "public, s-maxage=120, stale-while-revalidate=300"
DETAIL_CACHE = "public, s-maxage=120, stale-while-revalidate=300"
FALLBACK_CACHE = "public, s-maxage=30, stale-while-revalidate=60"
FALLBACK_HEADERS = {"Cache-Control": FALLBACK_CACHE, "X-TemplateData-Source": "fallback"}


async def _read_json(request: Request, default=None):
    try:
        return await request.json()
    except ValueError:
        if default is not None:
            return default
        raise AppError("Invalid request payload: body must be valid JSON", 400)


@router.get("")
def list_tpl(featured: Optional[str] = None):
    featured_only = featured == "1"
    try:
        data = list_templates(featured_only)
    except Exception as e:
        if featured_only and availability_issue(e):
            logger.warning("GET /api/templates serving featured fallback: %s", availability_issue(e))
            return JSONResponse(FEATURED_FALLBACK, headers=FALLBACK_HEADERS)
        return error_response("GET /api/templates", e, logger)
    return JSONResponse(data, headers={"Cache-Control": FEATURED_CACHE if featured_only else "no-store"})


@router.post("")
async def create_tpl(request: Request):
    try:
        body = await _read_json(request)
        parsed = normalize_create_payload(body)
        created = await run_in_threadpool(create_template, parsed)
    except Exception as e:
        return error_response("POST /api/templates", e, logger)
    return JSONResponse(created, status_code=201)


@router.get("/{slug}")
def get_tpl(slug: str):
    try:
        template = get_template(slug)
    except Exception as e:
        fallback = fallback_detail(slug) if availability_issue(e) else None
        if fallback:
            return JSONResponse(fallback, headers=FALLBACK_HEADERS)
        return error_response(f"GET /api/templates/{slug}", e, logger)
    return JSONResponse(template, headers={"Cache-Control": DETAIL_CACHE})


@router.post("/{slug}/fork")
async def fork_tpl(slug: str, request: Request):
    try:
        body = await _read_json(request, default={})
        owner_ref = str(body.get("ownerRef") or "") if isinstance(body, dict) else ""
        forked = await run_in_threadpool(fork_template, slug, owner_ref)
    except Exception as e:
        return error_response(f"POST /api/templates/{slug}/fork", e, logger)
    return JSONResponse(forked, status_code=201)
