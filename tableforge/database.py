from __future__ import annotations

from pathlib import Path
from threading import Lock
from typing import Generator

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from tableforge.config import get_settings

Base = declarative_base()

settings = get_settings()

_engine_lock = Lock()


def create_metadata_engine(url: str) -> Engine:
    engine_kwargs: dict[str, object] = {"future": True}
    if url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            engine_kwargs["poolclass"] = StaticPool
    return create_engine(url, **engine_kwargs)


SessionLocal = sessionmaker(autocommit=False, autoflush=False, future=True)
_metadata_engine: Engine | None = None
_current_url: str | None = None


def configure_metadata_engine(url: str | None = None) -> Engine:
    """Bind ``SessionLocal`` to the metadata store, replacing any previous engine."""
    global _metadata_engine, _current_url
    target_url = url or settings.database_url

    with _engine_lock:
        if _metadata_engine is not None and target_url == _current_url:
            return _metadata_engine

        new_engine = create_metadata_engine(target_url)
        SessionLocal.configure(bind=new_engine)

        if _metadata_engine is not None:
            _metadata_engine.dispose()

        _metadata_engine = new_engine
        _current_url = target_url
        return new_engine


configure_metadata_engine()


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def run_migrations(url: str | None = None) -> None:
    """Upgrade the metadata store at ``url`` (default: the configured one) to head."""
    project_root = Path(__file__).resolve().parents[1]
    config = Config(str(project_root / "alembic.ini"))
    config.set_main_option("script_location", str(project_root / "migrations"))
    config.set_main_option("sqlalchemy.url", (url or settings.database_url).replace("%", "%%"))
    config.attributes["configure_logger"] = False
    command.upgrade(config, "head")
