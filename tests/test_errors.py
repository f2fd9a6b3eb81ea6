from types import SimpleNamespace

import psycopg2
import psycopg2.extensions
from sqlalchemy import exc as sa_exc

from templatedb.config import Settings, assert_server_env
from templatedb.errors import AppError, availability_issue, is_unique_violation, to_error_payload

import pytest


class FakePgError(Exception):
    def __init__(self, message, pgcode=None, constraint=None):
        super().__init__(message)
        self.pgcode = pgcode
        self.diag = SimpleNamespace(constraint_name=constraint)


def test_to_error_payload():
    assert to_error_payload(AppError("Template not found", 404)) == (404, "Template not found")
    assert to_error_payload(AppError("secret detail", 500, expose=False)) == (500, "Internal server error")
    assert to_error_payload(ValueError("boom")) == (500, "boom")
    assert to_error_payload(RuntimeError()) == (500, "Unknown internal error")


def test_availability_issue_recognises_connection_failures():
    err = sa_exc.OperationalError("SELECT 1", {}, Exception("timeout expired"))
    assert availability_issue(err) == "connection timed out"
    assert availability_issue(psycopg2.OperationalError("server closed the connection unexpectedly")) == (
        "server closed the connection"
    )
    assert availability_issue(sa_exc.TimeoutError("QueuePool limit reached")) == "connection pool timed out"
    assert availability_issue(AppError("Database unavailable", 503)) == "Database unavailable"
    shutdown = sa_exc.OperationalError(
        "SELECT 1", {}, FakePgError("terminating connection due to administrator command", "57P01")
    )
    assert availability_issue(shutdown) == "database unreachable (terminating connection due to administrator command)"
    broken_link = sa_exc.OperationalError("SELECT 1", {}, FakePgError("SSL SYSCALL error: EOF detected", "08006"))
    assert availability_issue(broken_link) == "SSL connection failed"


def test_statement_timeouts_and_deadlocks_are_not_outages():
    canceled = psycopg2.extensions.QueryCanceledError("canceling statement due to statement timeout")
    assert availability_issue(sa_exc.OperationalError("SELECT pg_sleep(20)", {}, canceled)) is None
    deadlock = psycopg2.extensions.TransactionRollbackError("deadlock detected")
    assert availability_issue(sa_exc.OperationalError("UPDATE templates", {}, deadlock)) is None
    serialization = FakePgError("could not serialize access due to concurrent update", "40001")
    assert availability_issue(sa_exc.OperationalError("UPDATE templates", {}, serialization)) is None
    timeout_by_code = FakePgError("canceling statement due to statement timeout", "57014")
    assert availability_issue(sa_exc.OperationalError("SELECT 1", {}, timeout_by_code)) is None


def test_sslmode_in_message_is_not_an_ssl_failure():
    err = sa_exc.OperationalError("SELECT 1", {}, Exception('invalid sslmode value: "bogus"'))
    assert availability_issue(err) == 'database unreachable (invalid sslmode value: "bogus")'


def test_sqlalchemy_errors_do_not_leak_statements():
    err = sa_exc.ProgrammingError(
        "SELECT secret FROM users WHERE token = %(token)s", {"token": "abc"}, Exception('relation "users" does not exist')
    )
    assert to_error_payload(err) == (500, 'relation "users" does not exist')


def test_availability_issue_ignores_query_errors():
    assert availability_issue(AppError("Template not found", 404)) is None
    assert availability_issue(ValueError("could not connect")) is None
    missing = sa_exc.ProgrammingError("SELECT", {}, Exception('relation "templates" does not exist'))
    assert availability_issue(missing) is None
    dup = sa_exc.IntegrityError("INSERT", {}, FakePgError("duplicate key", "23505", "templates_slug_key"))
    assert availability_issue(dup) is None


def test_is_unique_violation():
    dup = sa_exc.IntegrityError("INSERT", {}, FakePgError("duplicate key", "23505", "templates_slug_key"))
    assert is_unique_violation(dup, "slug")
    assert not is_unique_violation(dup, "username")
    fk = sa_exc.IntegrityError("INSERT", {}, FakePgError("fk violation", "23503", "templates_owner_id_fkey"))
    assert not is_unique_violation(fk, "owner_id")
    assert not is_unique_violation(ValueError("slug"), "slug")


def test_assert_server_env():
    with pytest.raises(AppError) as exc:
        assert_server_env(Settings(database_url="  "))
    assert "DATABASE_URL" in exc.value.message
    assert_server_env(Settings(database_url="postgresql://u@localhost/db"))
