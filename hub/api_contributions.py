import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from templatedb.contributions import create_contribution
from templatedb.errors import AppError, error_response


logger = logging.getLogger("templatedb.api")

router = APIRouter(prefix="/api/contributions")


@router.post("")
async def create(request: Request):
    try:
        try:
            body = await request.json()
        except ValueError:
            raise AppError("Invalid request payload", 400)
        contribution = await run_in_threadpool(create_contribution, body)
    except Exception as e:
        return error_response("POST /api/contributions", e, logger)
    return JSONResponse(contribution, status_code=201)
