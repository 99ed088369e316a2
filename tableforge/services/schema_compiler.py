"""Compile logical table definitions into CREATE TABLE / CREATE INDEX statements."""
from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Iterable

from sqlalchemy.engine import Dialect

from tableforge.services.errors import TableValidationError
from tableforge.services.identifiers import quote_identifier, sanitize_identifier

if TYPE_CHECKING:
    from tableforge.models import ColumnDefinition, TableDefinition

SYSTEM_ROW_ID_COLUMN = "system_row_id"
SYSTEM_ROW_ID_SQL_TYPE = "VARCHAR(36)"

_MAX_INDEX_NAME_LENGTH = 63
MAX_PHYSICAL_NAME_LENGTH = 63
_RANDOM_SUFFIX_LENGTH = 8

_BASE_TYPE_MAPPING: dict[str, str] = {
    "string": "VARCHAR(255)",
    "text": "TEXT",
    "integer": "INT",
    "long": "BIGINT",
    "boolean": "BOOLEAN",
    "date": "DATE",
    "datetime": "DATETIME",
    "decimal": "DECIMAL(19,4)",
    "reference": SYSTEM_ROW_ID_SQL_TYPE,
}

_DIALECT_TYPE_OVERRIDES: dict[str, dict[str, str]] = {
    "postgresql": {"datetime": "TIMESTAMP"},
    "mssql": {"text": "NVARCHAR(MAX)", "boolean": "BIT", "datetime": "DATETIME2"},
    "oracle": {
        "text": "CLOB",
        "long": "NUMBER(19)",
        "boolean": "NUMBER(1)",
        "datetime": "TIMESTAMP",
    },
}

_STRING_LIKE_TYPES = {"string", "text", "date", "datetime", "reference"}
_INTEGER_TYPES = {"integer", "long"}
_TRUE_LITERALS = {"true", "1", "yes"}
_FALSE_LITERALS = {"false", "0", "no"}


@dataclass(frozen=True)
class CompiledTable:
    physical_name: str
    create_statement: str
    index_statements: list[str] = field(default_factory=list)


def generate_physical_name(
    logical_name: str,
    app_suffix: str | None = None,
    max_length: int = MAX_PHYSICAL_NAME_LENGTH,
) -> str:
    """Build ``<logical>[_<suffix>]_<8 hex chars>`` in lower case.

    The name never exceeds ``max_length`` (and never ``MAX_PHYSICAL_NAME_LENGTH``).
    Long logical names and suffixes are shortened; the random part is always kept
    whole.
    """

    parts = [sanitize_identifier(logical_name).lower()]
    if app_suffix:
        parts.append(sanitize_identifier(app_suffix.strip()).lower())
    prefix = "_".join(parts)

    limit = min(max_length, MAX_PHYSICAL_NAME_LENGTH)
    room = max(limit - _RANDOM_SUFFIX_LENGTH - 1, 1)
    prefix = prefix[:room].rstrip("_") or prefix[0]
    return f"{prefix}_{uuid.uuid4().hex[:_RANDOM_SUFFIX_LENGTH]}"


def map_column_type(column_type: str, dialect_name: str) -> str:
    normalized = (column_type or "").strip().lower()
    if normalized not in _BASE_TYPE_MAPPING:
        raise TableValidationError(f"Unsupported column type: {column_type!r}")
    if normalized == "reference":
        return SYSTEM_ROW_ID_SQL_TYPE
    overrides = _DIALECT_TYPE_OVERRIDES.get(dialect_name, {})
    return overrides.get(normalized, _BASE_TYPE_MAPPING[normalized])


def index_name(physical_name: str, column_name: str) -> str:
    name = f"idx_{physical_name}_{column_name}"
    if len(name) <= _MAX_INDEX_NAME_LENGTH:
        return name
    digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:8]
    return f"{name[: _MAX_INDEX_NAME_LENGTH - 9]}_{digest}"


class SchemaCompiler:
    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect

    @property
    def dialect_name(self) -> str:
        return self.dialect.name

    def quote(self, name: str) -> str:
        return quote_identifier(name, self.dialect)

    def compile(self, definition: "TableDefinition") -> CompiledTable:
        physical_name = sanitize_identifier(definition.physical_name)
        columns = sorted(definition.columns, key=lambda column: column.ordinal_position)
        if not columns:
            raise TableValidationError("A table definition requires at least one column")

        column_clauses = [f"{self.quote(SYSTEM_ROW_ID_COLUMN)} {SYSTEM_ROW_ID_SQL_TYPE} PRIMARY KEY"]
        column_clauses.extend(self._column_clause(column) for column in columns)
        body = ",\n    ".join(column_clauses)
        create_statement = f"CREATE TABLE {self.quote(physical_name)} (\n    {body}\n)"

        return CompiledTable(
            physical_name=physical_name,
            create_statement=create_statement,
            index_statements=self._index_statements(physical_name, columns),
        )

    def _column_clause(self, column: "ColumnDefinition") -> str:
        name = sanitize_identifier(column.name)
        if name.lower() == SYSTEM_ROW_ID_COLUMN:
            raise TableValidationError(f"Column name '{name}' is reserved")

        sql_type = map_column_type(column.column_type, self.dialect_name)
        clause = f"{self.quote(name)} {sql_type}"

        default_literal = self._default_literal(column)
        if default_literal is not None:
            clause += f" DEFAULT {default_literal}"
        if not column.is_nullable:
            clause += " NOT NULL"
        if column.is_unique or column.is_primary_key:
            clause += " UNIQUE"
        return clause

    def _default_literal(self, column: "ColumnDefinition") -> str | None:
        value = column.default_value
        if value is None or value == "":
            return None

        column_type = column.column_type
        if column_type in _STRING_LIKE_TYPES:
            escaped = str(value).replace("'", "''")
            return f"'{escaped}'"

        if column_type in _INTEGER_TYPES:
            try:
                return str(int(str(value).strip()))
            except ValueError as exc:
                raise TableValidationError(
                    f"Default value {value!r} for column '{column.name}' is not an integer"
                ) from exc

        if column_type == "decimal":
            try:
                number = Decimal(str(value).strip())
            except InvalidOperation as exc:
                raise TableValidationError(
                    f"Default value {value!r} for column '{column.name}' is not a number"
                ) from exc
            if not number.is_finite():
                raise TableValidationError(
                    f"Default value {value!r} for column '{column.name}' is not a finite number"
                )
            return str(number)

        if column_type == "boolean":
            lowered = str(value).strip().lower()
            if lowered not in _TRUE_LITERALS | _FALSE_LITERALS:
                raise TableValidationError(
                    f"Default value {value!r} for column '{column.name}' is not a boolean"
                )
            truthy = lowered in _TRUE_LITERALS
            if self.dialect_name == "postgresql":
                return "TRUE" if truthy else "FALSE"
            return "1" if truthy else "0"

        raise TableValidationError(f"Unsupported column type: {column_type!r}")

    def _index_statements(
        self, physical_name: str, columns: Iterable["ColumnDefinition"]
    ) -> list[str]:
        statements: list[str] = []
        for column in columns:
            if not (column.is_unique or column.is_primary_key or column.is_reference):
                continue
            statements.append(
                f"CREATE INDEX {self.quote(index_name(physical_name, column.name))} "
                f"ON {self.quote(physical_name)} ({self.quote(column.name)})"
            )
        return statements
