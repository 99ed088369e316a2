"""Parameterized CRUD against physical tables whose shape is only known at runtime."""
from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.engine import Dialect, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from tableforge.services.errors import ExecutionError, TableValidationError
from tableforge.services.identifiers import quote_identifier

if TYPE_CHECKING:
    import uuid

    from tableforge.models import ColumnDefinition, TableDefinition

logger = getLogger(__name__)

ERROR_DISPLAY_VALUE = "[Error]"
MISSING_DEFINITION_DISPLAY_VALUE = "[Ref Table Def Missing]"

_DISPLAY_COLUMN_NAMES = ("name", "display_name")
_DISPLAY_COLUMN_TYPES = ("string", "text")

Row = dict[str, Any]


@dataclass(frozen=True)
class SqlStatement:
    sql: str
    params: dict[str, Any] = field(default_factory=dict)


class StatementBuilder:
    """Assembles SQL from sanitized, dialect-quoted identifiers and bound ``:pN`` values."""

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect

    def quote(self, name: str) -> str:
        return quote_identifier(name, self.dialect)

    def insert(self, table: str, row: Mapping[str, Any]) -> SqlStatement:
        values = {key: value for key, value in row.items() if value is not None}
        if not values:
            raise TableValidationError("Cannot insert a row without any values")

        params: dict[str, Any] = {}
        columns: list[str] = []
        placeholders: list[str] = []
        for column, value in values.items():
            columns.append(self.quote(column))
            placeholders.append(self._bind(params, value))
        sql = (
            f"INSERT INTO {self.quote(table)} ({', '.join(columns)}) "
            f"VALUES ({', '.join(placeholders)})"
        )
        return SqlStatement(sql, params)

    def select(self, table: str, filters: Optional[Mapping[str, Any]] = None) -> SqlStatement:
        params: dict[str, Any] = {}
        sql = f"SELECT * FROM {self.quote(table)}"
        sql += self._where(filters, params)
        return SqlStatement(sql, params)

    def count(self, table: str, filters: Mapping[str, Any]) -> SqlStatement:
        params: dict[str, Any] = {}
        sql = f"SELECT COUNT(*) FROM {self.quote(table)}"
        sql += self._where(filters, params)
        return SqlStatement(sql, params)

    def update(
        self, table: str, values: Mapping[str, Any], filters: Mapping[str, Any]
    ) -> SqlStatement:
        if not values:
            raise TableValidationError("Cannot update a row without any values")

        params: dict[str, Any] = {}
        assignments = [
            f"{self.quote(column)} = {self._bind(params, value)}" for column, value in values.items()
        ]
        sql = f"UPDATE {self.quote(table)} SET {', '.join(assignments)}"
        sql += self._where(filters, params)
        return SqlStatement(sql, params)

    def delete(self, table: str, filters: Mapping[str, Any]) -> SqlStatement:
        params: dict[str, Any] = {}
        sql = f"DELETE FROM {self.quote(table)}"
        sql += self._where(filters, params)
        return SqlStatement(sql, params)

    def drop_table(self, table: str) -> SqlStatement:
        return SqlStatement(f"DROP TABLE {self.quote(table)}")

    def _where(self, filters: Optional[Mapping[str, Any]], params: dict[str, Any]) -> str:
        if not filters:
            return ""
        conditions = []
        for column, value in filters.items():
            if value is None:
                conditions.append(f"{self.quote(column)} IS NULL")
            else:
                conditions.append(f"{self.quote(column)} = {self._bind(params, value)}")
        return " WHERE " + " AND ".join(conditions)

    @staticmethod
    def _bind(params: dict[str, Any], value: Any) -> str:
        name = f"p{len(params)}"
        params[name] = value
        return f":{name}"


class DynamicTableAccessor:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.builder = StatementBuilder(engine.dialect)

    def insert(self, table: str, row: Mapping[str, Any]) -> int:
        return self._execute(self.builder.insert(table, row))

    def select_all(self, table: str) -> list[Row]:
        return self._fetch(self.builder.select(table))

    def select_by_filter(self, table: str, column: str, value: Any) -> list[Row]:
        return self._fetch(self.builder.select(table, {column: value}))

    def select_by_filters(self, table: str, filters: Mapping[str, Any]) -> list[Row]:
        return self._fetch(self.builder.select(table, filters))

    def select_one(self, table: str, column: str, value: Any) -> Row | None:
        rows = self.select_by_filter(table, column, value)
        return rows[0] if rows else None

    def count(self, table: str, column: str, value: Any) -> int:
        statement = self.builder.count(table, {column: value})
        try:
            with self.engine.connect() as connection:
                return int(connection.execute(text(statement.sql), statement.params).scalar_one())
        except SQLAlchemyError as exc:
            raise self._execution_error(statement, exc) from exc

    def update(self, table: str, values: Mapping[str, Any], column: str, value: Any) -> int:
        return self._execute(self.builder.update(table, values, {column: value}))

    def delete(self, table: str, column: str, value: Any) -> int:
        return self._execute(self.builder.delete(table, {column: value}))

    def drop_table(self, table: str) -> None:
        self._execute(self.builder.drop_table(table))

    def execute_ddl(self, statement: str) -> None:
        """Run a compiled DDL statement verbatim; its literals are never parsed as binds."""

        logger.info("Executing: %s", statement.splitlines()[0] if statement else statement)
        try:
            with self.engine.begin() as connection:
                connection.exec_driver_sql(statement, execution_options={"no_parameters": True})
        except SQLAlchemyError as exc:
            raise self._execution_error(SqlStatement(statement), exc) from exc

    def resolve_references(
        self,
        definition: "TableDefinition",
        rows: list[Row],
        lookup_table: Callable[["uuid.UUID"], Optional["TableDefinition"]],
    ) -> list[Row]:
        """Replace each reference column with ``<col>_id`` and ``<col>_display_name``.

        One lookup per row and reference column is issued against the referenced
        table. A referenced row that cannot be found yields ``None`` as display
        name, a failed lookup yields ``"[Error]"`` and a reference whose target
        definition no longer exists yields ``"[Ref Table Def Missing]"``.
        """

        reference_columns = [column for column in definition.columns if column.is_reference]
        if not reference_columns:
            return rows

        resolved_rows: list[Row] = []
        for row in rows:
            resolved = dict(row)
            for column in reference_columns:
                raw_value = resolved.pop(column.name, None)
                id_key = f"{column.name}_id"
                display_key = f"{column.name}_display_name"
                if raw_value is None or raw_value == "":
                    resolved[id_key] = None
                    resolved[display_key] = None
                    continue

                resolved[id_key] = raw_value
                resolved[display_key] = self._lookup_display_value(column, raw_value, lookup_table)
            resolved_rows.append(resolved)
        return resolved_rows

    def _lookup_display_value(
        self,
        column: "ColumnDefinition",
        raw_value: Any,
        lookup_table: Callable[["uuid.UUID"], Optional["TableDefinition"]],
    ) -> Any:
        referenced = lookup_table(column.referenced_table_id) if column.referenced_table_id else None
        if referenced is None:
            return MISSING_DEFINITION_DISPLAY_VALUE

        referenced_column = _referenced_column_name(column, referenced)
        if referenced_column is None:
            return MISSING_DEFINITION_DISPLAY_VALUE

        display_column = select_display_column(referenced, referenced_column)
        try:
            match = self.select_one(referenced.physical_name, referenced_column, raw_value)
        except (ExecutionError, TableValidationError) as exc:
            logger.warning(
                "Failed to resolve reference %s=%r against %s: %s",
                column.name,
                raw_value,
                referenced.physical_name,
                exc,
            )
            return ERROR_DISPLAY_VALUE
        if match is None:
            return None
        return match.get(display_column)

    def _fetch(self, statement: SqlStatement) -> list[Row]:
        try:
            with self.engine.connect() as connection:
                result = connection.execute(text(statement.sql), statement.params)
                return [dict(row) for row in result.mappings()]
        except SQLAlchemyError as exc:
            raise self._execution_error(statement, exc) from exc

    def _execute(self, statement: SqlStatement) -> int:
        try:
            with self.engine.begin() as connection:
                result = connection.execute(text(statement.sql), statement.params)
                return result.rowcount if result.rowcount is not None else 0
        except SQLAlchemyError as exc:
            raise self._execution_error(statement, exc) from exc

    @staticmethod
    def _execution_error(statement: SqlStatement, exc: SQLAlchemyError) -> ExecutionError:
        if isinstance(exc, PoolTimeoutError):
            return ExecutionError(f"Timed out waiting for a database connection: {exc}")
        message = str(getattr(exc, "orig", None) or exc)
        return ExecutionError(f"Statement failed ({statement.sql.split(' ', 1)[0]}): {message}")


def _referenced_column_name(column: "ColumnDefinition", referenced: "TableDefinition") -> str | None:
    if column.referenced_column_id is not None:
        for candidate in referenced.columns:
            if candidate.id == column.referenced_column_id:
                return candidate.name
    return column.referenced_column_name


def select_display_column(definition: "TableDefinition", fallback: str) -> str:
    names = {column.name: column for column in definition.columns}
    for preferred in _DISPLAY_COLUMN_NAMES:
        if preferred in names:
            return preferred
    for column in definition.columns:
        if column.column_type in _DISPLAY_COLUMN_TYPES:
            return column.name
    return fallback
