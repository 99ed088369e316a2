from tableforge.models.entities import (
    ColumnDefinition,
    ConnectionProfile,
    Project,
    TableDefinition,
    TimestampMixin,
)

__all__ = [
    "ColumnDefinition",
    "ConnectionProfile",
    "Project",
    "TableDefinition",
    "TimestampMixin",
]
