from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class TimestampSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    created_at: datetime
    updated_at: datetime


class DatabaseEngine(str, Enum):
    MYSQL = "mysql"
    POSTGRESQL = "postgresql"
    SQLSERVER = "sqlserver"
    ORACLE = "oracle"
    SQLITE = "sqlite"


class ColumnType(str, Enum):
    STRING = "string"
    TEXT = "text"
    INTEGER = "integer"
    LONG = "long"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    DECIMAL = "decimal"
    REFERENCE = "reference"


class ConnectionProfileBase(BaseModel):
    name: str = Field(..., max_length=200)
    engine: DatabaseEngine
    host: Optional[str] = Field(None, max_length=255)
    port: Optional[int] = Field(None, ge=1, le=65535)
    database_name: Optional[str] = Field(None, max_length=255)
    username: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None


class ConnectionProfileCreate(ConnectionProfileBase):
    password: Optional[str] = Field(None, max_length=500)


class ConnectionProfileRead(ConnectionProfileBase, TimestampSchema):
    id: UUID


class ProjectBase(BaseModel):
    name: str = Field(..., max_length=200)
    description: Optional[str] = None
    connection_profile_id: Optional[UUID] = None


class ProjectCreate(ProjectBase):
    pass


class ProjectRead(ProjectBase, TimestampSchema):
    id: UUID


class ColumnDefinitionBase(BaseModel):
    name: str = Field(..., max_length=200)
    display_name: Optional[str] = Field(None, max_length=200)
    column_type: ColumnType
    is_nullable: bool = True
    is_unique: bool = False
    is_primary_key: bool = False
    default_value: Optional[str] = None
    referenced_table_id: Optional[UUID] = None
    referenced_column_id: Optional[UUID] = None

    @field_validator("column_type", mode="before")
    @classmethod
    def _normalize_column_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            # Accepted aliases for the canonical semantic types.
            return {"varchar": "string", "int": "integer"}.get(lowered, lowered)
        return value


class ColumnDefinitionCreate(ColumnDefinitionBase):
    pass


class ColumnDefinitionRead(ColumnDefinitionBase, TimestampSchema):
    id: UUID
    ordinal_position: int
    referenced_table_name: Optional[str] = None
    referenced_column_name: Optional[str] = None


class TableDefinitionBase(BaseModel):
    logical_name: str = Field(..., max_length=200)
    app_suffix: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None


class TableDefinitionCreate(TableDefinitionBase):
    columns: list[ColumnDefinitionCreate] = Field(default_factory=list)


class TableDefinitionUpdate(BaseModel):
    description: Optional[str] = None
    columns: Optional[list[ColumnDefinitionCreate]] = None


class TableDefinitionRead(TableDefinitionBase, TimestampSchema):
    id: UUID
    project_id: UUID
    physical_name: str
    columns: list[ColumnDefinitionRead] = Field(default_factory=list)


class RowInsertResult(BaseModel):
    system_row_id: str
    rows_affected: int


class RowUpdateRequest(BaseModel):
    values: dict[str, Any]
    filter_column: str
    filter_value: Any

    @model_validator(mode="after")
    def _require_values(self) -> "RowUpdateRequest":
        if not self.values:
            raise ValueError("At least one column value must be supplied for an update")
        return self


class RowFilterRequest(BaseModel):
    filters: dict[str, Any] = Field(default_factory=dict)


class RowsAffected(BaseModel):
    rows_affected: int


class TableDataRead(BaseModel):
    definition: TableDefinitionRead
    rows: list[dict[str, Any]]


class ConnectionTestResult(BaseModel):
    success: bool
    message: str
    duration_ms: Optional[float] = None
    connection_summary: Optional[str] = None
