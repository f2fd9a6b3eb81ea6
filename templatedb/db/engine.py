from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine

from ..config import get_settings
from ..errors import AppError, availability_issue
from .env import ResolvedDbConfig, mask_url, resolve_database_config, resolve_database_configs


logger = logging.getLogger("templatedb.db")

T = TypeVar("T")


@dataclass
class _EngineState:
    engines: dict[str, Engine] = field(default_factory=dict)
    active_url: str = ""
    active_source: str = ""
    lock: threading.Lock = field(default_factory=threading.Lock)


_STATE = _EngineState()


def _create_engine(config: ResolvedDbConfig) -> Engine:
    settings = get_settings()
    logger.info("Creating engine for %s (%s, %s/%s)", config.source, mask_url(config.url), config.provider, config.network)
    return create_engine(
        config.url,
        pool_pre_ping=True,
        pool_size=config.pool_size,
        pool_timeout=config.pool_timeout,
        echo=settings.is_development,
    )


def _engine_for(config: ResolvedDbConfig) -> Engine:
    with _STATE.lock:
        engine = _STATE.engines.get(config.url)
        if engine is None:
            engine = _create_engine(config)
            _STATE.engines[config.url] = engine
        return engine


def get_engine() -> Engine:
    """Engine for the last URL that worked, else the first resolved one."""
    configs = resolve_database_configs()
    active = next((c for c in configs if c.url == _STATE.active_url), None)
    return _engine_for(active or resolve_database_config())


def active_source() -> str | None:
    return _STATE.active_source or None


def _prioritized(configs: list[ResolvedDbConfig]) -> list[ResolvedDbConfig]:
    active = [c for c in configs if c.url == _STATE.active_url]
    return active + [c for c in configs if c.url != _STATE.active_url]


def with_db(operation: Callable[[Connection, str], T]) -> T:
    """Run ``operation(conn, source)`` in a transaction, failing over between sources.

    Only availability problems move on to the next candidate; any other error
    is raised as is. The source that succeeds is tried first next time.
    """
    failures: list[str] = []
    for config in _prioritized(resolve_database_configs()):
        engine = _engine_for(config)
        try:
            with engine.begin() as conn:
                result = operation(conn, config.source)
        except Exception as e:
            issue = availability_issue(e)
            if issue is None:
                raise
            logger.warning("Database source %s unavailable: %s", config.source, issue)
            failures.append(f"{config.source}: {issue}")
            continue
        with _STATE.lock:
            if _STATE.active_url != config.url:
                logger.info("Using database source %s", config.source)
            _STATE.active_url = config.url
            _STATE.active_source = config.source
        return result

    raise AppError(
        f"Database unavailable across configured sources ({' | '.join(failures)}). "
        "Validate public/internal connection strings and credentials.",
        503,
    )


def reset_state() -> None:
    with _STATE.lock:
        for engine in _STATE.engines.values():
            engine.dispose()
        _STATE.engines.clear()
        _STATE.active_url = ""
        _STATE.active_source = ""
