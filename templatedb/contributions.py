from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator
from sqlalchemy import text
from sqlalchemy.engine import Connection

from .db.engine import with_db
from .errors import AppError
from .utils import to_iso


class ContributionIn(BaseModel):
    """Contribution request; the *Ref aliases accept a slug/username as well as an id."""

    template_id: str = Field(min_length=3)
    user_id: str = Field(min_length=3)
    message: str = Field(min_length=4, max_length=300)

    @model_validator(mode="before")
    @classmethod
    def _accept_refs(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        return {
            "template_id": str(data.get("templateId") or data.get("templateRef") or "").strip(),
            "user_id": str(data.get("userId") or data.get("contributorRef") or "").strip(),
            "message": str(data.get("message") or "").strip(),
        }


def parse_contribution(body: Any) -> ContributionIn:
    try:
        return ContributionIn.model_validate(body)
    except ValidationError:
        raise AppError("Invalid request payload", 400)


def _find_template(conn: Connection, ref: str) -> Optional[dict]:
    row = conn.execute(
        text("SELECT id, owner_id FROM public.templates WHERE id = :ref OR slug = :ref ORDER BY (id = :ref) DESC LIMIT 1"),
        {"ref": ref},
    ).mappings().first()
    return dict(row) if row else None


def _find_user(conn: Connection, ref: str) -> Optional[str]:
    return conn.execute(
        text("SELECT id FROM public.users WHERE id = :ref OR username = :ref ORDER BY (id = :ref) DESC LIMIT 1"),
        {"ref": ref},
    ).scalar()


def _create(conn: Connection, body: ContributionIn) -> dict:
    template = _find_template(conn, body.template_id)
    if not template:
        raise AppError("Template not found", 404)
    user_id = _find_user(conn, body.user_id)
    if not user_id:
        raise AppError("User not found", 404)
    if template["owner_id"] == user_id:
        raise AppError("Owner cannot contribute to own template", 400)

    row = conn.execute(
        text(
            """
            INSERT INTO public.contributions (template_id, user_id, message)
            VALUES (:template_id, :user_id, :message)
            RETURNING id, template_id, user_id, message, status, created_at
            """
        ),
        {"template_id": template["id"], "user_id": user_id, "message": body.message},
    ).mappings().one()
    return {
        "id": row["id"],
        "templateId": row["template_id"],
        "userId": row["user_id"],
        "message": row["message"],
        "status": row["status"],
        "createdAt": to_iso(row["created_at"]),
    }


def create_contribution(body: Any) -> dict:
    parsed = parse_contribution(body)
    return with_db(lambda conn, _source: _create(conn, parsed))
