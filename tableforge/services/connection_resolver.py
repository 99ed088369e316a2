from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.engine import URL
from sqlalchemy.exc import ArgumentError, NoSuchModuleError

from tableforge.schemas import DatabaseEngine
from tableforge.services.errors import ConfigurationError

if TYPE_CHECKING:
    from tableforge.models import ConnectionProfile


class UnsupportedConnectionError(ConfigurationError):
    """Raised when a connection profile cannot be converted into an SQLAlchemy URL."""


_DRIVERNAMES: dict[str, str] = {
    DatabaseEngine.MYSQL.value: "mysql+pymysql",
    DatabaseEngine.POSTGRESQL.value: "postgresql+psycopg",
    DatabaseEngine.SQLSERVER.value: "mssql+pyodbc",
    DatabaseEngine.ORACLE.value: "oracle+oracledb",
    DatabaseEngine.SQLITE.value: "sqlite",
}

DEFAULT_PORTS: dict[str, int] = {
    DatabaseEngine.MYSQL.value: 3306,
    DatabaseEngine.POSTGRESQL.value: 5432,
    DatabaseEngine.SQLSERVER.value: 1433,
    DatabaseEngine.ORACLE.value: 1521,
}

_PROBE_QUERIES: dict[str, str] = {
    DatabaseEngine.ORACLE.value: "SELECT 1 FROM DUAL",
}


def _engine_value(engine: DatabaseEngine | str | None) -> str:
    if isinstance(engine, DatabaseEngine):
        return engine.value
    return (engine or "").strip().lower()


def is_in_memory_sqlite(url: URL) -> bool:
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


def probe_query(engine: DatabaseEngine | str) -> str:
    return _PROBE_QUERIES.get(_engine_value(engine), "SELECT 1")


def resolve_sqlalchemy_url(profile: "ConnectionProfile") -> URL:
    engine = _engine_value(profile.engine)
    if engine not in _DRIVERNAMES:
        raise UnsupportedConnectionError(
            f"Unsupported database engine '{profile.engine}'. Supported engines: {', '.join(sorted(_DRIVERNAMES))}."
        )

    drivername = _DRIVERNAMES[engine]

    if engine == DatabaseEngine.SQLITE.value:
        return URL.create(drivername=drivername, database=profile.database_name or None)

    if not profile.host:
        raise UnsupportedConnectionError(
            f"Connection profile '{profile.name}' must include a hostname."
        )
    if not profile.database_name:
        raise UnsupportedConnectionError(
            f"Connection profile '{profile.name}' must include a database name."
        )

    query: dict[str, str] | None = None
    if drivername.startswith("mssql+pyodbc"):
        query = {
            "TrustServerCertificate": "yes",
            "driver": "ODBC Driver 18 for SQL Server",
        }
    elif engine == DatabaseEngine.ORACLE.value:
        query = {"service_name": profile.database_name}

    return URL.create(
        drivername=drivername,
        username=profile.username,
        password=profile.password,
        host=profile.host,
        port=profile.port or DEFAULT_PORTS.get(engine),
        database=None if engine == DatabaseEngine.ORACLE.value else profile.database_name,
        query=query,
    )


def ensure_driver_available(url: URL) -> None:
    """Load the dialect and DBAPI for ``url`` so missing drivers fail before any connect."""

    try:
        dialect_cls = url.get_dialect()
        dialect_cls.import_dbapi()
    except (NoSuchModuleError, ArgumentError) as exc:
        raise UnsupportedConnectionError(
            f"No SQLAlchemy dialect available for '{url.drivername}': {exc}"
        ) from exc
    except ImportError as exc:
        raise UnsupportedConnectionError(
            f"Database driver for '{url.drivername}' is not installed: {exc}"
        ) from exc
