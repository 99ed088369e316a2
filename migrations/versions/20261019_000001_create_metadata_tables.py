"""create metadata tables

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None

database_engine_enum = sa.Enum(
    "mysql",
    "postgresql",
    "sqlserver",
    "oracle",
    "sqlite",
    name="database_engine_enum",
)

column_type_enum = sa.Enum(
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
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "connection_profiles",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False, unique=True),
        sa.Column("engine", database_engine_enum, nullable=False),
        sa.Column("host", sa.String(length=255), nullable=True),
        sa.Column("port", sa.Integer(), nullable=True),
        sa.Column("database_name", sa.String(length=255), nullable=True),
        sa.Column("username", sa.String(length=200), nullable=True),
        sa.Column("password", sa.String(length=500), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "projects",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("connection_profile_id", sa.Uuid(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["connection_profile_id"], ["connection_profiles.id"], ondelete="SET NULL"
        ),
    )

    op.create_table(
        "table_definitions",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("project_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("logical_name", sa.String(length=200), nullable=False),
        sa.Column("app_suffix", sa.String(length=100), nullable=True),
        sa.Column("physical_name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("project_id", "logical_name", name="uq_table_definition_project_name"),
        sa.UniqueConstraint("physical_name", name="uq_table_definition_physical_name"),
    )

    op.create_table(
        "column_definitions",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("table_definition_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("display_name", sa.String(length=200), nullable=True),
        sa.Column("column_type", column_type_enum, nullable=False),
        sa.Column("is_nullable", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_unique", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_primary_key", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("default_value", sa.Text(), nullable=True),
        sa.Column("ordinal_position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("referenced_table_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("referenced_column_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("referenced_table_name", sa.String(length=200), nullable=True),
        sa.Column("referenced_column_name", sa.String(length=200), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["table_definition_id"], ["table_definitions.id"], ondelete="CASCADE"
        ),
        sa.UniqueConstraint("table_definition_id", "name", name="uq_column_definition_table_name"),
    )
    op.create_index(
        "ix_column_definitions_referenced_table_id",
        "column_definitions",
        ["referenced_table_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_column_definitions_referenced_table_id", table_name="column_definitions")
    op.drop_table("column_definitions")
    op.drop_table("table_definitions")
    op.drop_table("projects")
    op.drop_table("connection_profiles")
    column_type_enum.drop(op.get_bind(), checkfirst=True)
    database_engine_enum.drop(op.get_bind(), checkfirst=True)
