from __future__ import annotations

import logging
import signal
import subprocess
import sys

from dotenv import load_dotenv

from templatedb.config import assert_server_env, get_settings
from templatedb.db.postgres import run_migrations
from templatedb.db.seed import seed


logger = logging.getLogger("templatedb.startup")


def apply_migrations(migrations_dir: str) -> None:
    logger.info("Applying migrations from %s", migrations_dir)
    applied = run_migrations(migrations_dir)
    if applied:
        logger.info("Applied migrations: %s", applied)
    else:
        logger.info("Schema is up to date")


def run_web(port: int) -> subprocess.Popen:
    # Run FastAPI app (webapp.py) via uvicorn
    args = [
        sys.executable,
        "-m",
        "uvicorn",
        "webapp:app",
        "--host",
        "0.0.0.0",
        "--port",
        str(port),
        "--proxy-headers",
    ]
    return subprocess.Popen(args)


def bootstrap_and_start() -> int:
    load_dotenv(override=False)
    settings = get_settings()
    assert_server_env(settings)

    apply_migrations(settings.migrations_dir)
    if settings.run_db_seed:
        logger.info("RUN_DB_SEED=true -> seeding database")
        seed()

    logger.info("Starting web server on port %s", settings.port)
    web = run_web(settings.port)

    def shutdown(signum, _frame):
        if web.poll() is None:
            web.send_signal(signum)

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)
    code = web.wait()
    # terminated by a forwarded signal
    return 0 if code < 0 else code


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="[startup] %(message)s")
    try:
        code = bootstrap_and_start()
    except Exception as e:
        logger.error("Fatal bootstrap error: %s", e, exc_info=e)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
