from types import SimpleNamespace
from unittest.mock import patch

import pytest
from sqlalchemy import exc as sa_exc

from templatedb import templates as tpl
from templatedb.errors import AppError


VALID = {
    "title": "  FastAPI Starter ",
    "summary": "A minimal FastAPI project layout.",
    "content": "from fastapi import FastAPI\napp = FastAPI()",
    "type": "code",
    "tags": "fastapi, python ,",
    "ownerRef": "akbar",
}


class FakePgError(Exception):
    def __init__(self, message, pgcode, constraint):
        super().__init__(message)
        self.pgcode = pgcode
        self.diag = SimpleNamespace(constraint_name=constraint)


def _slug_conflict():
    return sa_exc.IntegrityError("INSERT", {}, FakePgError("duplicate key", "23505", "templates_slug_key"))


def _row(**overrides):
    row = {
        "id": "t1",
        "slug": "fastapi-starter",
        "title": "FastAPI Starter",
        "summary": "A minimal FastAPI project layout.",
        "content": "from fastapi import FastAPI",
        "type": "CODE",
        "tags": ["fastapi"],
        "featured": False,
        "owner_id": "u1",
        "created_at": None,
        "updated_at": None,
    }
    row.update(overrides)
    return row


def test_normalize_create_payload():
    out = tpl.normalize_create_payload(VALID)
    assert out == {
        "title": "FastAPI Starter",
        "summary": "A minimal FastAPI project layout.",
        "content": "from fastapi import FastAPI\napp = FastAPI()",
        "type": "CODE",
        "tags": ["fastapi", "python"],
        "owner_ref": "akbar",
        "featured": False,
    }


def test_normalize_accepts_owner_id_and_literal_featured_only():
    body = {**VALID, "ownerRef": None, "ownerId": "u-123", "featured": "true", "tags": ["a", " b "]}
    out = tpl.normalize_create_payload(body)
    assert out["owner_ref"] == "u-123"
    assert out["featured"] is False
    assert out["tags"] == ["a", "b"]
    assert tpl.normalize_create_payload({**VALID, "featured": True})["featured"] is True


def test_normalize_collects_every_problem():
    with pytest.raises(AppError) as exc:
        tpl.normalize_create_payload(
            {"title": "x", "summary": "short", "content": "tiny", "type": "poem", "tags": ["t" * 31] * 13}
        )
    assert exc.value.status == 400
    message = exc.value.message
    assert message.startswith("Invalid request payload: ")
    for fragment in ("title", "summary", "content", "type must be", "ownerRef", "exceed 12", "each tag"):
        assert fragment in message


def test_normalize_rejects_non_object():
    with pytest.raises(AppError) as exc:
        tpl.normalize_create_payload(["not", "an", "object"])
    assert exc.value.message == "Invalid request payload: body must be an object"


def test_serialize_template_embeds_owner():
    out = tpl.serialize_template(_row(owner_username="akbar", owner_display_name="Fadhil Akbar"))
    assert out["ownerId"] == "u1"
    assert out["owner"] == {"id": "u1", "username": "akbar", "displayName": "Fadhil Akbar"}
    assert "owner" not in tpl.serialize_template(_row())


def _fake_with_db(results):
    """with_db stand-in that ignores the operation and plays back results/errors."""
    calls = []

    def fake(operation):
        calls.append(operation)
        outcome = results.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return fake, calls


def test_create_template_retries_slug_conflicts():
    fake, calls = _fake_with_db(["u1", _slug_conflict(), _row(slug="fastapi-starter-abc123")])
    payload = tpl.normalize_create_payload(VALID)
    with patch.object(tpl, "with_db", side_effect=fake), patch.object(tpl, "_random_suffix", return_value="abc123"):
        created = tpl.create_template(payload)
    assert created["slug"] == "fastapi-starter-abc123"
    assert len(calls) == 3


def test_create_template_gives_up_after_five_conflicts():
    fake, _ = _fake_with_db(["u1"] + [_slug_conflict() for _ in range(5)])
    payload = tpl.normalize_create_payload(VALID)
    with patch.object(tpl, "with_db", side_effect=fake):
        with pytest.raises(AppError) as exc:
            tpl.create_template(payload)
    assert exc.value.status == 409


def test_create_template_does_not_retry_other_integrity_errors():
    fk = sa_exc.IntegrityError("INSERT", {}, FakePgError("fk", "23503", "templates_owner_id_fkey"))
    fake, calls = _fake_with_db(["u1", fk])
    with patch.object(tpl, "with_db", side_effect=fake):
        with pytest.raises(sa_exc.IntegrityError):
            tpl.create_template(tpl.normalize_create_payload(VALID))
    assert len(calls) == 2


def test_create_slugs_try_base_first():
    seen = []

    def fake_create(data, slugs, message):
        seen.extend(slugs)
        return _row(slug=slugs[0])

    with patch.object(tpl, "with_db", return_value="u1"), \
         patch.object(tpl, "_create_with_unique_slug", side_effect=fake_create), \
         patch.object(tpl, "_random_suffix", return_value="ffffff"):
        tpl.create_template(tpl.normalize_create_payload(VALID))
    assert seen == ["fastapi-starter"] + ["fastapi-starter-ffffff"] * 4


def test_get_template_validates_slug():
    with pytest.raises(AppError) as exc:
        tpl.get_template(" a ")
    assert exc.value.status == 400


def test_get_template_not_found():
    with patch.object(tpl, "with_db", return_value=None):
        with pytest.raises(AppError) as exc:
            tpl.get_template("missing-template")
    assert exc.value.status == 404


def test_fork_requires_owner_ref():
    with pytest.raises(AppError) as exc:
        tpl.fork_template("fastapi-starter", " x ")
    assert exc.value.status == 400


def test_fork_missing_source():
    with patch.object(tpl, "with_db", return_value=None):
        with pytest.raises(AppError) as exc:
            tpl.fork_template("missing", "akbar")
    assert exc.value.status == 404


def test_fork_copies_source_with_fork_slug():
    captured = {}

    def fake_create(data, slugs, message):
        captured["data"] = data
        captured["slugs"] = slugs
        return _row(id="t2", slug=slugs[0])

    fake, _ = _fake_with_db([_row(featured=True), "u2"])
    with patch.object(tpl, "with_db", side_effect=fake), \
         patch.object(tpl, "_create_with_unique_slug", side_effect=fake_create), \
         patch.object(tpl, "_random_suffix", return_value="123abc"):
        result = tpl.fork_template("fastapi-starter", "globaldev")

    assert result == {"id": "t2", "slug": "fastapi-starter-fork"}
    assert captured["data"]["title"] == "FastAPI Starter Fork"
    assert captured["data"]["featured"] is False
    assert captured["data"]["owner_id"] == "u2"
    assert captured["slugs"] == ["fastapi-starter-fork"] + ["fastapi-starter-fork-123abc"] * 5


class OwnerConnection:
    def __init__(self, existing=None):
        self.existing = existing
        self.inserted = None

    def execute(self, statement, params):
        if "INSERT INTO public.users" in str(statement):
            self.inserted = params
            return SimpleNamespace(scalar_one=lambda: "u-new")
        return SimpleNamespace(first=lambda: (self.existing,) if self.existing else None)


def test_resolve_owner_id_finds_existing_user():
    conn = OwnerConnection(existing="u-akbar")
    assert tpl.resolve_owner_id(conn, " akbar ") == "u-akbar"
    assert conn.inserted is None


def test_resolve_owner_id_creates_user_from_reference():
    conn = OwnerConnection()
    assert tpl.resolve_owner_id(conn, "Fadhil Akbar-Dev") == "u-new"
    assert conn.inserted == {"username": "fadhilakbardev", "display_name": "Fadhil Akbar-Dev"}


def test_resolve_owner_id_truncates_long_references():
    conn = OwnerConnection()
    tpl.resolve_owner_id(conn, "a" * 80)
    assert conn.inserted == {"username": "a" * 24, "display_name": "a" * 60}


def test_resolve_owner_id_falls_back_to_timestamp_username():
    conn = OwnerConnection()
    with patch.object(tpl.time, "time", return_value=1700000000.5):
        tpl.resolve_owner_id(conn, "!!")
    assert conn.inserted == {"username": "user1700000000500", "display_name": "!!"}


def test_template_in_reports_each_bad_field_once():
    body = {**VALID, "title": "", "type": "", "tags": ["x" * 40, "y" * 40]}
    with pytest.raises(AppError) as exc:
        tpl.normalize_create_payload(body)
    assert exc.value.message == (
        "Invalid request payload: title must be between 3 and 120 characters; "
        "each tag length must be between 1 and 30 characters"
    )
