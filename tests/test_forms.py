from unittest.mock import patch

import pytest

from templatedb.contributions import create_contribution, parse_contribution
from templatedb.errors import AppError
from templatedb.forms import build_form_request, prefill_from_query, remix_href, validate_form_request


def _form(**overrides):
    form = {
        "title": "FastAPI Starter",
        "summary": "A minimal FastAPI project layout.",
        "content": "from fastapi import FastAPI\napp = FastAPI()",
        "type": "code",
        "tags": "#fastapi, py",
    }
    form.update(overrides)
    return form


def test_build_form_request_normalizes_fields():
    body = build_form_request(_form(), "  akbar ")
    assert body["ownerRef"] == "akbar"
    assert body["type"] == "CODE"
    assert body["tags"] == ["fastapi", "python"]


def test_build_form_request_unknown_type_becomes_other():
    assert build_form_request(_form(type="poem"), "akbar")["type"] == "OTHER"


def test_valid_form_has_no_error():
    assert validate_form_request(build_form_request(_form(), "akbar")) is None


def test_form_errors_are_joined():
    body = build_form_request(_form(title="ab", tags=""), "")
    message = validate_form_request(body)
    assert "Profile is missing" in message
    assert "Title must be 3-120 characters." in message
    assert "Use between 1 and 12 tags." in message


def test_form_rejects_odd_tag_characters():
    body = build_form_request(_form(tags="ok bad!tag"), "akbar")
    assert "Tags may only contain" in validate_form_request(body)


def test_prefill_defaults_to_code():
    values = prefill_from_query({"title": "Remix"})
    assert values["title"] == "Remix"
    assert values["type"] == "CODE"
    assert values["content"] == ""


def test_remix_href_carries_template_fields():
    href = remix_href(
        {"title": "Neon Rain", "summary": "Short story", "content": "Once", "type": "STORY", "tags": ["scifi", "noir"]}
    )
    assert href.startswith("/contribute?")
    assert "title=Neon+Rain+Remix" in href
    assert "type=STORY" in href
    assert "tags=scifi+noir" in href


def test_parse_contribution_accepts_refs():
    parsed = parse_contribution({"templateRef": "neon-rain", "contributorRef": "akbar", "message": " Nice one "})
    assert parsed.template_id == "neon-rain"
    assert parsed.user_id == "akbar"
    assert parsed.message == "Nice one"


def test_parse_contribution_prefers_ids():
    parsed = parse_contribution({"templateId": "tid-1", "templateRef": "x", "userId": "uid-1", "message": "hello"})
    assert parsed.template_id == "tid-1"
    assert parsed.user_id == "uid-1"


@pytest.mark.parametrize(
    "body",
    [
        None,
        [],
        {"templateId": "t1", "userId": "uid-1", "message": "hello"},
        {"templateId": "tid-1", "userId": "uid-1", "message": "hey"},
        {"templateId": "tid-1", "userId": "uid-1", "message": "x" * 301},
    ],
)
def test_parse_contribution_rejects_invalid(body):
    with pytest.raises(AppError) as exc:
        parse_contribution(body)
    assert exc.value.status == 400
    assert exc.value.message == "Invalid request payload"


def test_create_contribution_validates_before_db():
    with patch("templatedb.contributions.with_db") as with_db:
        with pytest.raises(AppError):
            create_contribution({"message": "hello"})
    with_db.assert_not_called()
