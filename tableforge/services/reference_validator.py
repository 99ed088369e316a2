from __future__ import annotations

import uuid
from logging import getLogger
from typing import TYPE_CHECKING, Any, Mapping

from tableforge.services.dynamic_table_accessor import DynamicTableAccessor
from tableforge.services.errors import ReferenceIntegrityError, TableValidationError

if TYPE_CHECKING:
    from tableforge.models import ColumnDefinition, TableDefinition
    from tableforge.services.metadata_store import MetadataStore

logger = getLogger(__name__)


class ReferenceValidator:
    """Checks reference columns, both when a table is defined and when rows are written."""

    def __init__(self, store: "MetadataStore") -> None:
        self.store = store

    def validate_reference(
        self,
        column: "ColumnDefinition",
        project_id: uuid.UUID,
    ) -> None:
        if column.referenced_table_id is None:
            raise TableValidationError(
                f"Reference column '{column.name}' is missing a referenced table id"
            )
        if column.referenced_column_id is None:
            raise TableValidationError(
                f"Reference column '{column.name}' is missing a referenced column id"
            )

        referenced = self.store.get_table(column.referenced_table_id)
        if referenced is None:
            raise TableValidationError(
                f"Referenced table {column.referenced_table_id} for column '{column.name}' does not exist"
            )
        if referenced.project_id != project_id:
            raise TableValidationError(
                f"Reference column '{column.name}' points at a table owned by another project"
            )

        target = self.store.get_column(column.referenced_column_id)
        if target is None or target.table_definition_id != referenced.id:
            raise TableValidationError(
                f"Referenced column {column.referenced_column_id} does not exist in table "
                f"'{referenced.logical_name}'"
            )
        if not (target.is_primary_key or target.is_unique):
            raise TableValidationError(
                f"Referenced column '{referenced.logical_name}.{target.name}' must be a primary key or unique"
            )

        column.referenced_table_name = referenced.logical_name
        column.referenced_column_name = target.name

    def check_exists(
        self, accessor: DynamicTableAccessor, physical_table: str, column: str, value: Any
    ) -> bool:
        return accessor.count(physical_table, column, value) > 0

    def ensure_row_references(
        self,
        accessor: DynamicTableAccessor,
        definition: "TableDefinition",
        values: Mapping[str, Any],
        *,
        partial: bool = False,
    ) -> None:
        """Verify every reference value in ``values`` exists in its referenced table.

        With ``partial`` set (updates) only the columns present in ``values`` are
        checked; otherwise a missing non-nullable reference is an error.
        """

        for column in definition.columns:
            if not column.is_reference:
                continue
            if partial and column.name not in values:
                continue

            value = values.get(column.name)
            if value is None or value == "":
                if not column.is_nullable:
                    raise ReferenceIntegrityError(
                        column.name,
                        value,
                        column.referenced_table_name,
                        column.referenced_column_name,
                        reason=f"Reference column '{column.name}' is required",
                    )
                continue

            if not isinstance(value, str):
                raise TableValidationError(
                    f"Value for reference column '{column.name}' must be a string"
                )

            referenced = self.store.get_table(column.referenced_table_id) if column.referenced_table_id else None
            if referenced is None:
                raise ReferenceIntegrityError(
                    column.name,
                    value,
                    column.referenced_table_name,
                    column.referenced_column_name,
                    reason=(
                        f"Referenced table '{column.referenced_table_name}' for column "
                        f"'{column.name}' no longer exists"
                    ),
                )

            referenced_column = column.referenced_column_name
            for candidate in referenced.columns:
                if candidate.id == column.referenced_column_id:
                    referenced_column = candidate.name
                    break

            if not self.check_exists(accessor, referenced.physical_name, referenced_column, value):
                logger.info(
                    "Rejected %s=%r: no matching %s.%s",
                    column.name,
                    value,
                    referenced.logical_name,
                    referenced_column,
                )
                raise ReferenceIntegrityError(
                    column.name, value, referenced.logical_name, referenced_column
                )
