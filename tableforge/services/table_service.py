"""Orchestrates table creation and row access for a project's target database.

Creating a table is a short saga: the definition is validated, the physical
table is created on the project's database, and only then is the definition
persisted to the metadata store. If that last step fails the physical table is
dropped again so the two sides never disagree.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from logging import getLogger
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tableforge.config import Settings, get_settings
from tableforge.models import ColumnDefinition, ConnectionProfile, Project, TableDefinition
from tableforge.schemas import (
    ColumnDefinitionCreate,
    RowInsertResult,
    TableDefinitionCreate,
    TableDefinitionUpdate,
)
from tableforge.services import connection_testing
from tableforge.services.connection_pool import ConnectionPoolRegistry
from tableforge.services.dynamic_table_accessor import DynamicTableAccessor, Row
from tableforge.services.errors import (
    ConflictError,
    ExecutionError,
    NotFoundError,
    TableValidationError,
)
from tableforge.services.identifiers import sanitize_identifier
from tableforge.services.metadata_store import MetadataStore
from tableforge.services.reference_validator import ReferenceValidator
from tableforge.services.schema_compiler import (
    SYSTEM_ROW_ID_COLUMN,
    SchemaCompiler,
    generate_physical_name,
)

logger = getLogger(__name__)


@dataclass(frozen=True)
class TableData:
    definition: TableDefinition
    rows: list[Row]


class TableService:
    def __init__(
        self,
        session: Session,
        registry: ConnectionPoolRegistry,
        settings: Settings | None = None,
    ) -> None:
        self.store = MetadataStore(session)
        self.registry = registry
        self.settings = settings or get_settings()
        self.validator = ReferenceValidator(self.store)

    # Table definitions

    def create_table(self, project_id: uuid.UUID, payload: TableDefinitionCreate) -> TableDefinition:
        project = self._get_project(project_id)
        logical_name = sanitize_identifier(payload.logical_name)
        app_suffix = sanitize_identifier(payload.app_suffix.strip()) if payload.app_suffix else None

        if self.store.find_table_by_name_and_project(logical_name, project.id) is not None:
            raise ConflictError(
                f"Table '{logical_name}' already exists in project '{project.name}'"
            )

        columns = self._build_columns(payload.columns)
        for column in columns:
            if column.is_reference:
                self.validator.validate_reference(column, project.id)

        accessor = self._accessor(project)
        definition = TableDefinition(
            project_id=project.id,
            logical_name=logical_name,
            app_suffix=app_suffix,
            description=payload.description,
            physical_name=self._allocate_physical_name(
                logical_name, app_suffix, accessor.engine.dialect.max_identifier_length
            ),
            columns=columns,
        )
        compiled = SchemaCompiler(accessor.engine.dialect).compile(definition)

        logger.info(
            "Creating physical table %s for '%s' in project %s",
            compiled.physical_name,
            logical_name,
            project.id,
        )
        accessor.execute_ddl(compiled.create_statement)
        for statement in compiled.index_statements:
            try:
                accessor.execute_ddl(statement)
            except ExecutionError as exc:
                logger.warning("Index creation failed for %s: %s", compiled.physical_name, exc)

        try:
            self.store.save_table(definition)
            self.store.commit()
        except SQLAlchemyError as exc:
            self.store.rollback()
            logger.error(
                "Persisting definition for %s failed, dropping physical table: %s",
                compiled.physical_name,
                exc,
            )
            self._drop_physical_table(accessor, compiled.physical_name)
            if isinstance(exc, IntegrityError):
                raise ConflictError(
                    f"Table '{logical_name}' already exists in project '{project.name}'"
                ) from exc
            raise ExecutionError(f"Unable to persist table definition '{logical_name}': {exc}") from exc

        logger.info("Created table '%s' as %s", logical_name, compiled.physical_name)
        return definition

    def get_table_definition(
        self, project_id: uuid.UUID, logical_name: str
    ) -> Optional[TableDefinition]:
        project = self._get_project(project_id)
        return self.store.find_table_by_name_and_project(logical_name, project.id)

    def get_table_definition_by_id(
        self, project_id: uuid.UUID, table_id: uuid.UUID
    ) -> Optional[TableDefinition]:
        project = self._get_project(project_id)
        definition = self.store.get_table(table_id)
        if definition is None or definition.project_id != project.id:
            return None
        return definition

    def list_tables(self, project_id: uuid.UUID) -> list[TableDefinition]:
        project = self._get_project(project_id)
        return self.store.find_tables_by_project(project.id)

    def update_table_definition(
        self, project_id: uuid.UUID, logical_name: str, payload: TableDefinitionUpdate
    ) -> TableDefinition:
        """Update the stored definition only; the physical table is left as it is."""

        project = self._get_project(project_id)
        definition = self._get_table(project, logical_name)

        if payload.description is not None:
            definition.description = payload.description

        if payload.columns is not None:
            existing = {column.name: column for column in definition.columns}
            replacement = self._build_columns(payload.columns)
            for column in replacement:
                if column.is_reference:
                    self.validator.validate_reference(column, project.id)

            merged: list[ColumnDefinition] = []
            for column in replacement:
                current = existing.get(column.name)
                if current is None:
                    merged.append(column)
                    continue
                for attribute in _COLUMN_ATTRIBUTES:
                    setattr(current, attribute, getattr(column, attribute))
                merged.append(current)
            definition.columns = merged
            logger.warning(
                "Columns of '%s' updated in metadata only; physical table %s is unchanged",
                definition.logical_name,
                definition.physical_name,
            )

        try:
            self.store.commit()
        except SQLAlchemyError as exc:
            self.store.rollback()
            raise ExecutionError(f"Unable to update table definition '{logical_name}': {exc}") from exc
        return definition

    def delete_table(self, project_id: uuid.UUID, logical_name: str) -> None:
        project = self._get_project(project_id)
        definition = self._get_table(project, logical_name)

        referencing = self.store.find_columns_referencing_table(definition.id)
        if referencing:
            names = sorted(
                {f"{column.table_definition.logical_name}.{column.name}" for column in referencing}
            )
            raise ConflictError(
                f"Table '{definition.logical_name}' is referenced by {', '.join(names)}"
            )

        physical_name = definition.physical_name
        accessor = self._accessor(project)
        self.store.delete_table(definition)
        try:
            self.store.commit()
        except SQLAlchemyError as exc:
            self.store.rollback()
            raise ExecutionError(f"Unable to delete table definition '{logical_name}': {exc}") from exc

        # Metadata is gone; a failed drop only leaves an orphaned physical table.
        self._drop_physical_table(accessor, physical_name)
        logger.info("Deleted table '%s' (%s)", logical_name, physical_name)

    # Rows

    def insert_row(
        self, project_id: uuid.UUID, logical_name: str, row: Mapping[str, Any]
    ) -> RowInsertResult:
        project = self._get_project(project_id)
        definition = self._get_table(project, logical_name)
        values = dict(row)

        self._ensure_known_columns(definition, values.keys())
        for column in definition.columns:
            if column.is_nullable or column.is_reference or column.default_value not in (None, ""):
                continue
            if values.get(column.name) is None:
                raise TableValidationError(f"Column '{column.name}' is required")

        accessor = self._accessor(project)
        self.validator.ensure_row_references(accessor, definition, values)

        system_row_id = values.get(SYSTEM_ROW_ID_COLUMN) or str(uuid.uuid4())
        values[SYSTEM_ROW_ID_COLUMN] = str(system_row_id)
        rows_affected = accessor.insert(definition.physical_name, values)
        return RowInsertResult(system_row_id=values[SYSTEM_ROW_ID_COLUMN], rows_affected=rows_affected)

    def get_row(
        self,
        project_id: uuid.UUID,
        logical_name: str,
        system_row_id: str,
        resolve_references: bool = False,
    ) -> Optional[Row]:
        project = self._get_project(project_id)
        definition = self._get_table(project, logical_name)
        accessor = self._accessor(project)

        row = accessor.select_one(definition.physical_name, SYSTEM_ROW_ID_COLUMN, system_row_id)
        if row is None or not resolve_references:
            return row
        return accessor.resolve_references(definition, [row], self.store.get_table)[0]

    def list_rows(self, project_id: uuid.UUID, logical_name: str) -> list[Row]:
        project = self._get_project(project_id)
        definition = self._get_table(project, logical_name)
        accessor = self._accessor(project)

        rows = accessor.select_all(definition.physical_name)
        return accessor.resolve_references(definition, rows, self.store.get_table)

    def find_rows(
        self, project_id: uuid.UUID, logical_name: str, filters: Mapping[str, Any]
    ) -> list[Row]:
        project = self._get_project(project_id)
        definition = self._get_table(project, logical_name)
        self._ensure_known_columns(definition, filters.keys())
        accessor = self._accessor(project)

        if filters:
            rows = accessor.select_by_filters(definition.physical_name, filters)
        else:
            rows = accessor.select_all(definition.physical_name)
        return accessor.resolve_references(definition, rows, self.store.get_table)

    def update_rows(
        self,
        project_id: uuid.UUID,
        logical_name: str,
        values: Mapping[str, Any],
        filter_column: str,
        filter_value: Any,
    ) -> int:
        if not values:
            raise TableValidationError("At least one column value must be supplied for an update")
        if SYSTEM_ROW_ID_COLUMN in values:
            raise TableValidationError(f"Column '{SYSTEM_ROW_ID_COLUMN}' cannot be updated")

        project = self._get_project(project_id)
        definition = self._get_table(project, logical_name)
        self._ensure_known_columns(definition, [*values.keys(), filter_column])
        for name, value in values.items():
            column = definition.get_column(name)
            if value is None and column is not None and not column.is_nullable and not column.is_reference:
                raise TableValidationError(f"Column '{name}' cannot be set to null")

        accessor = self._accessor(project)
        self.validator.ensure_row_references(accessor, definition, values, partial=True)
        return accessor.update(definition.physical_name, values, filter_column, filter_value)

    def delete_rows(
        self, project_id: uuid.UUID, logical_name: str, filter_column: str, filter_value: Any
    ) -> int:
        project = self._get_project(project_id)
        definition = self._get_table(project, logical_name)
        self._ensure_known_columns(definition, [filter_column])
        accessor = self._accessor(project)
        return accessor.delete(definition.physical_name, filter_column, filter_value)

    def get_table_data(self, project_id: uuid.UUID, logical_name: str) -> TableData:
        definition = self.get_table_definition(project_id, logical_name)
        if definition is None:
            raise NotFoundError(f"Table '{logical_name}' not found")
        return TableData(definition=definition, rows=self.list_rows(project_id, logical_name))

    def test_project_connection(self, project_id: uuid.UUID) -> tuple[float, str]:
        profile = self._get_profile(self._get_project(project_id))
        return connection_testing.test_connection(
            profile, timeout_seconds=self.settings.connection_test_timeout_seconds
        )

    # Helpers

    def _get_project(self, project_id: uuid.UUID) -> Project:
        project = self.store.get_project(project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        return project

    def _get_profile(self, project: Project) -> ConnectionProfile:
        if project.connection_profile_id is None:
            raise NotFoundError(f"Project '{project.name}' has no connection profile")
        profile = self.store.get_profile(project.connection_profile_id)
        if profile is None:
            raise NotFoundError(
                f"Connection profile {project.connection_profile_id} for project '{project.name}' not found"
            )
        return profile

    def _get_table(self, project: Project, logical_name: str) -> TableDefinition:
        definition = self.store.find_table_by_name_and_project(logical_name, project.id)
        if definition is None:
            raise NotFoundError(f"Table '{logical_name}' not found in project '{project.name}'")
        return definition

    def _accessor(self, project: Project) -> DynamicTableAccessor:
        return DynamicTableAccessor(self.registry.get_pool(self._get_profile(project)))

    def _allocate_physical_name(
        self, logical_name: str, app_suffix: str | None, max_length: int
    ) -> str:
        for _ in range(self.settings.physical_name_attempts):
            candidate = generate_physical_name(logical_name, app_suffix, max_length=max_length)
            if not self.store.physical_name_exists(candidate):
                return candidate
            logger.info("Physical name %s already taken, retrying", candidate)
        raise ConflictError(
            f"Could not allocate a unique physical name for '{logical_name}' "
            f"after {self.settings.physical_name_attempts} attempts"
        )

    def _drop_physical_table(self, accessor: DynamicTableAccessor, physical_name: str) -> None:
        try:
            accessor.drop_table(physical_name)
        except ExecutionError as exc:
            logger.error("Dropping physical table %s failed: %s", physical_name, exc)

    @staticmethod
    def _build_columns(payloads: list[ColumnDefinitionCreate]) -> list[ColumnDefinition]:
        if not payloads:
            raise TableValidationError("A table definition requires at least one column")

        columns: list[ColumnDefinition] = []
        seen: set[str] = set()
        for position, payload in enumerate(payloads):
            name = sanitize_identifier(payload.name)
            if name.lower() == SYSTEM_ROW_ID_COLUMN:
                raise TableValidationError(f"Column name '{name}' is reserved")
            if name.lower() in seen:
                raise TableValidationError(f"Duplicate column name '{name}'")
            seen.add(name.lower())

            columns.append(
                ColumnDefinition(
                    name=name,
                    display_name=payload.display_name,
                    column_type=payload.column_type.value,
                    is_nullable=payload.is_nullable,
                    is_unique=payload.is_unique,
                    is_primary_key=payload.is_primary_key,
                    default_value=payload.default_value,
                    ordinal_position=position,
                    referenced_table_id=payload.referenced_table_id,
                    referenced_column_id=payload.referenced_column_id,
                )
            )
        return columns

    @staticmethod
    def _ensure_known_columns(definition: TableDefinition, names: Iterable[str]) -> None:
        known = {column.name for column in definition.columns} | {SYSTEM_ROW_ID_COLUMN}
        for name in names:
            sanitize_identifier(name)
            if name not in known:
                raise TableValidationError(
                    f"Unknown column '{name}' for table '{definition.logical_name}'"
                )


_COLUMN_ATTRIBUTES = (
    "display_name",
    "column_type",
    "is_nullable",
    "is_unique",
    "is_primary_key",
    "default_value",
    "ordinal_position",
    "referenced_table_id",
    "referenced_column_id",
    "referenced_table_name",
    "referenced_column_name",
)
