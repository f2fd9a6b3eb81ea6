"""Contribute-page form handling.

The form is stricter than the JSON API: it requires at least one tag and
restricts tags to a slug-like alphabet, since they are typed free-hand.
"""
from __future__ import annotations

import re
from typing import Mapping
from urllib.parse import urlencode

from .templates import TEMPLATE_TYPES
from .utils import parse_tags


DRAFT_STORAGE_KEY = "tdb_contribute_draft_v2"
PROFILE_STORAGE_KEY = "templatedb_profile_v1"
TAG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]{0,29}$", re.I)


def build_form_request(form: Mapping[str, str], owner_ref: str) -> dict:
    raw_type = str(form.get("type") or "OTHER").strip().upper()
    return {
        "ownerRef": (owner_ref or "").strip(),
        "title": str(form.get("title") or "").strip(),
        "summary": str(form.get("summary") or "").strip(),
        "content": str(form.get("content") or "").strip(),
        "type": raw_type if raw_type in TEMPLATE_TYPES else "OTHER",
        "tags": parse_tags(str(form.get("tags") or "")),
    }


def validate_form_request(body: dict) -> str | None:
    errors = []
    if not body["ownerRef"]:
        errors.append("Profile is missing, please register again.")
    if not 3 <= len(body["title"]) <= 120:
        errors.append("Title must be 3-120 characters.")
    if not 10 <= len(body["summary"]) <= 300:
        errors.append("Summary must be 10-300 characters.")
    if len(body["content"]) < 10:
        errors.append("Content must be at least 10 characters.")
    if not 1 <= len(body["tags"]) <= 12:
        errors.append("Use between 1 and 12 tags.")
    if any(not TAG_PATTERN.match(tag) for tag in body["tags"]):
        errors.append("Tags may only contain letters, numbers, - and _.")
    return " ".join(errors) if errors else None


def prefill_from_query(params: Mapping[str, str]) -> dict:
    raw_type = (params.get("type") or "").strip().upper()
    return {
        "title": params.get("title") or "",
        "summary": params.get("summary") or "",
        "content": params.get("content") or "",
        "type": raw_type if raw_type in TEMPLATE_TYPES else "CODE",
        "tags": params.get("tags") or "",
    }


def remix_href(template: dict) -> str:
    query = urlencode(
        {
            "title": f"{template['title']} Remix",
            "summary": template["summary"],
            "content": template.get("content") or "",
            "type": template["type"],
            "tags": " ".join(template.get("tags") or []),
        }
    )
    return f"/contribute?{query}"
