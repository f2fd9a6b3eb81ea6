import logging
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from templatedb.errors import error_response
from templatedb.search import MIN_QUERY_LENGTH, sanitize_query, search_templates


logger = logging.getLogger("templatedb.api")

router = APIRouter(prefix="/api/search")

EMPTY_CACHE = "public, s-maxage=30, stale-while-revalidate=60"
RESULTS_CACHE = "public, s-maxage=180, stale-while-revalidate=600"


@router.get("")
def search(q: Optional[str] = None, sort: Optional[str] = None, type: Optional[str] = None):
    if len(sanitize_query(q)) < MIN_QUERY_LENGTH:
        return JSONResponse([], headers={"Cache-Control": EMPTY_CACHE})
    try:
        rows = search_templates(q, sort, type)
    except Exception as e:
        return error_response("GET /api/search", e, logger)
    return JSONResponse(rows, headers={"Cache-Control": RESULTS_CACHE})
