from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from templatedb.db.engine import active_source
from templatedb.db.postgres import health_check
from templatedb.version import app_version_label


router = APIRouter(prefix="/api")


@router.get("/health")
def health():
    # Liveness only; never touches the database
    return JSONResponse(
        {
            "ok": True,
            "service": "templatedatabases",
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        },
        headers={"Cache-Control": "no-store"},
    )


@router.get("/status")
def status():
    db = health_check()
    return JSONResponse(
        {"db": db, "activeSource": active_source(), "version": app_version_label()},
        headers={"Cache-Control": "no-store"},
    )
