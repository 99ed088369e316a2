import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tableforge.database import Base


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class ConnectionProfile(Base, TimestampMixin):
    __tablename__ = "connection_profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    engine: Mapped[str] = mapped_column(
        sa.Enum(
            "mysql",
            "postgresql",
            "sqlserver",
            "oracle",
            "sqlite",
            name="database_engine_enum",
        ),
        nullable=False,
    )
    host: Mapped[str | None] = mapped_column(String(255), nullable=True)
    port: Mapped[int | None] = mapped_column(Integer, nullable=True)
    database_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    username: Mapped[str | None] = mapped_column(String(200), nullable=True)
    password: Mapped[str | None] = mapped_column(String(500), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    projects: Mapped[list["Project"]] = relationship(
        "Project", back_populates="connection_profile"
    )


class Project(Base, TimestampMixin):
    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    connection_profile_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("connection_profiles.id", ondelete="SET NULL"),
        nullable=True,
    )

    connection_profile: Mapped[Optional[ConnectionProfile]] = relationship(
        "ConnectionProfile", back_populates="projects"
    )
    tables: Mapped[list["TableDefinition"]] = relationship(
        "TableDefinition",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class TableDefinition(Base, TimestampMixin):
    __tablename__ = "table_definitions"
    __table_args__ = (
        sa.UniqueConstraint("project_id", "logical_name", name="uq_table_definition_project_name"),
        sa.UniqueConstraint("physical_name", name="uq_table_definition_physical_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    logical_name: Mapped[str] = mapped_column(String(200), nullable=False)
    app_suffix: Mapped[str | None] = mapped_column(String(100), nullable=True)
    physical_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    project: Mapped[Project] = relationship("Project", back_populates="tables")
    columns: Mapped[list["ColumnDefinition"]] = relationship(
        "ColumnDefinition",
        back_populates="table_definition",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ColumnDefinition.ordinal_position",
    )

    def get_column(self, name: str) -> Optional["ColumnDefinition"]:
        for column in self.columns:
            if column.name == name:
                return column
        return None


class ColumnDefinition(Base, TimestampMixin):
    __tablename__ = "column_definitions"
    __table_args__ = (
        sa.UniqueConstraint("table_definition_id", "name", name="uq_column_definition_table_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    table_definition_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("table_definitions.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    column_type: Mapped[str] = mapped_column(
        sa.Enum(
            "string",
            "text",
            "integer",
            "long",
            "boolean",
            "date",
            "datetime",
            "decimal",
            "reference",
            name="column_type_enum",
        ),
        nullable=False,
    )
    is_nullable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_unique: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_primary_key: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    default_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    ordinal_position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Soft links: referenced definitions live in the same project but may be dropped later.
    referenced_table_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    referenced_column_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    referenced_table_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    referenced_column_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    table_definition: Mapped[TableDefinition] = relationship(
        "TableDefinition", back_populates="columns"
    )

    @property
    def is_reference(self) -> bool:
        return self.column_type == "reference"
