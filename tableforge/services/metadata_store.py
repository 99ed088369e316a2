from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from tableforge.models import ColumnDefinition, ConnectionProfile, Project, TableDefinition


class MetadataStore:
    """Repository over the metadata database, bound to one request-scoped session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # Projects and connection profiles

    def get_project(self, project_id: uuid.UUID) -> Optional[Project]:
        return self.session.get(Project, project_id)

    def get_profile(self, profile_id: uuid.UUID) -> Optional[ConnectionProfile]:
        return self.session.get(ConnectionProfile, profile_id)

    def find_profile_by_name(self, name: str) -> Optional[ConnectionProfile]:
        stmt = select(ConnectionProfile).where(ConnectionProfile.name == name)
        return self.session.execute(stmt).scalars().first()

    # Table and column definitions

    def get_table(self, table_id: uuid.UUID) -> Optional[TableDefinition]:
        return self.session.get(TableDefinition, table_id)

    def get_column(self, column_id: uuid.UUID) -> Optional[ColumnDefinition]:
        return self.session.get(ColumnDefinition, column_id)

    def find_table_by_name_and_project(
        self, logical_name: str, project_id: uuid.UUID
    ) -> Optional[TableDefinition]:
        stmt = (
            select(TableDefinition)
            .options(selectinload(TableDefinition.columns))
            .where(
                TableDefinition.project_id == project_id,
                TableDefinition.logical_name == logical_name,
            )
        )
        return self.session.execute(stmt).scalars().first()

    def find_tables_by_project(self, project_id: uuid.UUID) -> list[TableDefinition]:
        stmt = (
            select(TableDefinition)
            .options(selectinload(TableDefinition.columns))
            .where(TableDefinition.project_id == project_id)
            .order_by(TableDefinition.logical_name)
        )
        return list(self.session.execute(stmt).scalars().all())

    def find_table_by_physical_name(self, physical_name: str) -> Optional[TableDefinition]:
        stmt = select(TableDefinition).where(TableDefinition.physical_name == physical_name)
        return self.session.execute(stmt).scalars().first()

    def physical_name_exists(self, physical_name: str) -> bool:
        return self.find_table_by_physical_name(physical_name) is not None

    def find_columns_referencing_table(self, table_id: uuid.UUID) -> list[ColumnDefinition]:
        stmt = select(ColumnDefinition).where(
            ColumnDefinition.referenced_table_id == table_id,
            ColumnDefinition.table_definition_id != table_id,
        )
        return list(self.session.execute(stmt).scalars().all())

    def save_table(self, definition: TableDefinition) -> TableDefinition:
        self.session.add(definition)
        return definition

    def delete_all_columns_of_table(self, definition: TableDefinition) -> None:
        for column in list(definition.columns):
            self.session.delete(column)

    def delete_table(self, definition: TableDefinition) -> None:
        self.delete_all_columns_of_table(definition)
        self.session.delete(definition)

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
