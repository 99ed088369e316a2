"""Error taxonomy shared by the table services and mapped to HTTP codes by the routers."""
from __future__ import annotations


class TableServiceError(Exception):
    """Base class for failures raised by the dynamic table services."""


class TableValidationError(TableServiceError):
    """Raised when a definition, identifier or row payload is malformed."""


class InvalidIdentifierError(TableValidationError):
    """Raised when a name cannot safely be used as a SQL identifier."""

    def __init__(self, identifier: object) -> None:
        super().__init__(f"Invalid SQL identifier: {identifier!r}")
        self.identifier = identifier


class ConflictError(TableServiceError):
    """Raised when a logical or physical table name is already taken."""


class NotFoundError(TableServiceError):
    """Raised when a project, connection profile or table definition does not exist."""


class ReferenceIntegrityError(TableServiceError):
    """Raised when a row value points at a referenced row that does not exist."""

    def __init__(
        self,
        column: str,
        value: object,
        referenced_table: str | None,
        referenced_column: str | None,
        reason: str | None = None,
    ) -> None:
        message = reason or (
            f"Value '{value}' for column '{column}' does not exist in referenced table "
            f"'{referenced_table}' (column '{referenced_column}')"
        )
        super().__init__(message)
        self.column = column
        self.value = value
        self.referenced_table = referenced_table
        self.referenced_column = referenced_column


class ExecutionError(TableServiceError):
    """Raised when the target database rejects or fails a statement."""


class ConfigurationError(TableServiceError):
    """Raised when a connection profile cannot be turned into a working engine."""
