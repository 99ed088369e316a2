"""Per-profile SQLAlchemy engines, created lazily and shared across requests."""
from __future__ import annotations

import uuid
from logging import getLogger
from threading import Lock
from typing import TYPE_CHECKING, Any

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from tableforge.config import Settings, get_settings
from tableforge.services.connection_resolver import (
    ensure_driver_available,
    is_in_memory_sqlite,
    resolve_sqlalchemy_url,
)
from tableforge.services.errors import ConfigurationError

if TYPE_CHECKING:
    from tableforge.models import ConnectionProfile

logger = getLogger(__name__)


class ConnectionPoolRegistry:
    """Keeps exactly one pooled engine per connection profile id.

    Engines are built on first use under a lock, so concurrent first requests for
    the same profile end up sharing a single pool. ``close_pool`` and
    ``close_all`` dispose engines and release their connections.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._engines: dict[uuid.UUID, Engine] = {}
        self._lock = Lock()

    def __contains__(self, profile_id: object) -> bool:
        return profile_id in self._engines

    def __len__(self) -> int:
        return len(self._engines)

    def get_pool(self, profile: "ConnectionProfile") -> Engine:
        engine = self._engines.get(profile.id)
        if engine is not None:
            return engine

        with self._lock:
            engine = self._engines.get(profile.id)
            if engine is None:
                engine = self._build_engine(profile)
                self._engines[profile.id] = engine
                logger.info(
                    "Created connection pool for profile '%s' (%s)",
                    profile.name,
                    engine.url.render_as_string(hide_password=True),
                )
            return engine

    def get_pool_by_id(self, profile_id: uuid.UUID) -> Engine | None:
        return self._engines.get(profile_id)

    def close_pool(self, profile_id: uuid.UUID) -> None:
        with self._lock:
            engine = self._engines.pop(profile_id, None)
        if engine is None:
            return
        engine.dispose()
        logger.info("Closed connection pool for profile %s", profile_id)

    def close_all(self) -> None:
        with self._lock:
            engines = list(self._engines.items())
            self._engines.clear()
        for profile_id, engine in engines:
            engine.dispose()
            logger.info("Closed connection pool for profile %s", profile_id)

    def _build_engine(self, profile: "ConnectionProfile") -> Engine:
        url = resolve_sqlalchemy_url(profile)
        ensure_driver_available(url)

        try:
            return create_engine(url, **self._engine_kwargs(url))
        except (SQLAlchemyError, TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"Unable to configure connection pool for profile '{profile.name}': {exc}"
            ) from exc

    def _engine_kwargs(self, url: URL) -> dict[str, Any]:
        settings = self._settings
        if url.get_backend_name() == "sqlite":
            kwargs: dict[str, Any] = {
                "future": True,
                "connect_args": {"check_same_thread": False},
            }
            if is_in_memory_sqlite(url):
                kwargs["poolclass"] = StaticPool
            return kwargs

        return {
            "future": True,
            "pool_size": settings.pool_size,
            "max_overflow": settings.pool_max_overflow,
            "pool_timeout": settings.pool_timeout_seconds,
            "pool_recycle": settings.pool_recycle_seconds,
            "pool_pre_ping": settings.pool_pre_ping,
        }


def get_pool_registry(request: Request) -> ConnectionPoolRegistry:
    return request.app.state.pool_registry
