import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from templatedb.db import engine as db_engine


DB_ENV_VARS = (
    "DATABASE_URL",
    "DATABASE_PRIVATE_URL",
    "DATABASE_PUBLIC_URL",
    "DATABASE_URL_FALLBACK",
    "DB_SSLMODE",
    "DB_CONNECT_TIMEOUT",
    "DB_STATEMENT_TIMEOUT_MS",
    "DB_POOL_SIZE",
    "DB_POOL_TIMEOUT",
    "RAILWAY_ENVIRONMENT",
    "RAILWAY_PROJECT_ID",
    "RAILWAY_SERVICE_ID",
    "RENDER",
    "RENDER_SERVICE_ID",
    "APP_ENV",
)


@pytest.fixture(autouse=True)
def clean_db_env(monkeypatch):
    for name in DB_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # get_settings() loads .env; keep a developer's local file out of the tests
    monkeypatch.setattr("templatedb.config.load_dotenv", lambda **kwargs: False)
    db_engine._STATE.engines.clear()
    db_engine._STATE.active_url = ""
    db_engine._STATE.active_source = ""
    yield
    db_engine._STATE.engines.clear()
    db_engine._STATE.active_url = ""
    db_engine._STATE.active_source = ""
