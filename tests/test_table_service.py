import re
import uuid

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError

from tableforge.models import ConnectionProfile, Project
from tableforge.schemas import ColumnDefinitionCreate, TableDefinitionCreate, TableDefinitionUpdate
from tableforge.services import table_service as table_service_module
from tableforge.services.dynamic_table_accessor import DynamicTableAccessor
from tableforge.services.errors import (
    ConfigurationError,
    ConflictError,
    ExecutionError,
    InvalidIdentifierError,
    NotFoundError,
    ReferenceIntegrityError,
    TableValidationError,
)
from tableforge.services.metadata_store import MetadataStore


def _column(name: str, column_type: str = "string", **kwargs) -> ColumnDefinitionCreate:
    return ColumnDefinitionCreate(name=name, column_type=column_type, **kwargs)


def _people_table(**kwargs) -> TableDefinitionCreate:
    return TableDefinitionCreate(
        logical_name="people",
        columns=[_column("name", is_nullable=False), _column("age", "integer")],
        **kwargs,
    )


def _has_table(engine, name: str) -> bool:
    return inspect(engine).has_table(name)


@pytest.fixture()
def customers(service, project):
    return service.create_table(
        project.id,
        TableDefinitionCreate(
            logical_name="customers",
            columns=[
                _column("code", is_primary_key=True, is_nullable=False),
                _column("name"),
            ],
        ),
    )


@pytest.fixture()
def orders(service, project, customers):
    code = customers.get_column("code")
    return service.create_table(
        project.id,
        TableDefinitionCreate(
            logical_name="orders",
            columns=[
                _column("label", is_nullable=False),
                _column(
                    "customer",
                    "reference",
                    referenced_table_id=customers.id,
                    referenced_column_id=code.id,
                ),
            ],
        ),
    )


def test_create_then_get_returns_equal_definition(service, project, tenant_engine):
    created = service.create_table(project.id, _people_table(app_suffix="crm", description="People"))

    fetched = service.get_table_definition(project.id, "people")

    assert fetched is not None
    assert fetched.id == created.id
    assert fetched.project_id == project.id
    assert fetched.logical_name == "people"
    assert [(c.name, c.column_type, c.is_nullable) for c in fetched.columns] == [
        ("name", "string", False),
        ("age", "integer", True),
    ]
    assert fetched.physical_name != "people"
    assert re.fullmatch(r"people_crm_[0-9a-f]{8}", fetched.physical_name)
    assert _has_table(tenant_engine, fetched.physical_name)


def test_physical_names_are_unique_across_projects(db_session, service, project, profile):
    other = Project(name="Other", connection_profile_id=profile.id)
    db_session.add(other)
    db_session.commit()

    first = service.create_table(project.id, _people_table())
    second = service.create_table(other.id, _people_table())

    assert first.physical_name != second.physical_name
    assert [table.logical_name for table in service.list_tables(project.id)] == ["people"]


def test_long_names_fit_identifier_limits(service, project, tenant_engine):
    created = service.create_table(
        project.id,
        TableDefinitionCreate(
            logical_name="a" * 200,
            app_suffix="b" * 100,
            columns=[_column("name")],
        ),
    )

    assert len(created.physical_name) <= 63
    assert re.fullmatch(r"a+_[0-9a-f]{8}", created.physical_name)
    assert _has_table(tenant_engine, created.physical_name)


def test_get_table_definition_by_id(db_session, service, project, profile):
    created = service.create_table(project.id, _people_table())
    other = Project(name="Other", connection_profile_id=profile.id)
    db_session.add(other)
    db_session.commit()

    assert service.get_table_definition_by_id(project.id, created.id).logical_name == "people"
    assert service.get_table_definition_by_id(other.id, created.id) is None
    assert service.get_table_definition_by_id(project.id, uuid.uuid4()) is None
    with pytest.raises(NotFoundError):
        service.get_table_definition_by_id(uuid.uuid4(), created.id)


def test_get_missing_table_returns_none(service, project):
    assert service.get_table_definition(project.id, "nothing") is None


def test_unknown_project_is_not_found(service):
    with pytest.raises(NotFoundError):
        service.list_tables(uuid.uuid4())


def test_project_without_profile_is_not_found(db_session, service):
    orphan = Project(name="Orphan")
    db_session.add(orphan)
    db_session.commit()

    with pytest.raises(NotFoundError, match="no connection profile"):
        service.create_table(orphan.id, _people_table())


def test_duplicate_logical_name_conflicts(service, project):
    service.create_table(project.id, _people_table())

    with pytest.raises(ConflictError):
        service.create_table(project.id, _people_table())


def test_concurrent_creation_loser_conflicts_and_drops_its_table(
    monkeypatch, service, project, tenant_engine
):
    winner = service.create_table(project.id, _people_table())
    created_names = []
    original_execute_ddl = DynamicTableAccessor.execute_ddl

    def recording_execute_ddl(self, statement):
        if statement.startswith("CREATE TABLE"):
            created_names.append(statement.split()[2])
        return original_execute_ddl(self, statement)

    # Simulate a racing request that passed the existence check before the winner committed.
    monkeypatch.setattr(MetadataStore, "find_table_by_name_and_project", lambda self, name, pid: None)
    monkeypatch.setattr(DynamicTableAccessor, "execute_ddl", recording_execute_ddl)

    with pytest.raises(ConflictError):
        service.create_table(project.id, _people_table())

    assert len(created_names) == 1
    assert created_names[0] != winner.physical_name
    assert not _has_table(tenant_engine, created_names[0])
    assert _has_table(tenant_engine, winner.physical_name)


def test_metadata_failure_drops_physical_table(monkeypatch, service, project, tenant_engine):
    created_names = []
    original_execute_ddl = DynamicTableAccessor.execute_ddl

    def recording_execute_ddl(self, statement):
        if statement.startswith("CREATE TABLE"):
            created_names.append(statement.split()[2])
        return original_execute_ddl(self, statement)

    def failing_commit(self):
        raise OperationalError("COMMIT", {}, Exception("metadata store unavailable"))

    monkeypatch.setattr(DynamicTableAccessor, "execute_ddl", recording_execute_ddl)
    monkeypatch.setattr(MetadataStore, "commit", failing_commit)

    with pytest.raises(ExecutionError, match="persist"):
        service.create_table(project.id, _people_table())

    monkeypatch.undo()
    assert created_names and not _has_table(tenant_engine, created_names[0])
    assert service.get_table_definition(project.id, "people") is None


def test_create_table_failure_persists_nothing(monkeypatch, service, project):
    def failing_execute_ddl(self, statement):
        raise ExecutionError("permission denied")

    monkeypatch.setattr(DynamicTableAccessor, "execute_ddl", failing_execute_ddl)

    with pytest.raises(ExecutionError, match="permission denied"):
        service.create_table(project.id, _people_table())

    monkeypatch.undo()
    assert service.get_table_definition(project.id, "people") is None


def test_index_failures_are_only_warnings(monkeypatch, caplog, service, project):
    original_execute_ddl = DynamicTableAccessor.execute_ddl

    def flaky_execute_ddl(self, statement):
        if statement.startswith("CREATE INDEX"):
            raise ExecutionError("index failed")
        return original_execute_ddl(self, statement)

    monkeypatch.setattr(DynamicTableAccessor, "execute_ddl", flaky_execute_ddl)

    definition = service.create_table(
        project.id,
        TableDefinitionCreate(logical_name="codes", columns=[_column("code", is_unique=True)]),
    )

    assert definition.id is not None
    assert "Index creation failed" in caplog.text


def test_physical_name_collision_retries(monkeypatch, service, project, customers):
    candidates = iter([customers.physical_name, "people_deadbeef"])
    monkeypatch.setattr(
        table_service_module,
        "generate_physical_name",
        lambda logical_name, app_suffix=None, max_length=None: next(candidates),
    )

    definition = service.create_table(project.id, _people_table())

    assert definition.physical_name == "people_deadbeef"


def test_physical_name_collision_exhaustion_conflicts(monkeypatch, service, project, customers):
    monkeypatch.setattr(
        table_service_module,
        "generate_physical_name",
        lambda logical_name, app_suffix=None, max_length=None: customers.physical_name,
    )

    with pytest.raises(ConflictError, match="physical name"):
        service.create_table(project.id, _people_table())


@pytest.mark.parametrize(
    "payload",
    [
        TableDefinitionCreate(logical_name="bad name", columns=[_column("a")]),
        TableDefinitionCreate(logical_name="t", columns=[_column("a;drop")]),
        TableDefinitionCreate(logical_name="t", app_suffix="x y", columns=[_column("a")]),
    ],
)
def test_unsafe_identifiers_are_rejected_before_ddl(monkeypatch, service, project, payload):
    def unexpected_ddl(self, statement):
        raise AssertionError("DDL should not run")

    monkeypatch.setattr(DynamicTableAccessor, "execute_ddl", unexpected_ddl)

    with pytest.raises(InvalidIdentifierError):
        service.create_table(project.id, payload)


@pytest.mark.parametrize(
    ("columns", "message"),
    [
        ([], "at least one column"),
        ([_column("a"), _column("A")], "Duplicate"),
        ([_column("system_row_id")], "reserved"),
        ([_column("n", "integer", default_value="ten")], "not an integer"),
    ],
)
def test_invalid_definitions_are_rejected(service, project, columns, message):
    with pytest.raises(TableValidationError, match=message):
        service.create_table(project.id, TableDefinitionCreate(logical_name="t", columns=columns))


def test_reference_to_non_unique_column_never_reaches_ddl(monkeypatch, service, project, customers):
    def unexpected_ddl(self, statement):
        raise AssertionError("DDL should not run")

    monkeypatch.setattr(DynamicTableAccessor, "execute_ddl", unexpected_ddl)
    name_column = customers.get_column("name")

    with pytest.raises(TableValidationError, match="primary key or unique"):
        service.create_table(
            project.id,
            TableDefinitionCreate(
                logical_name="orders",
                columns=[
                    _column(
                        "customer",
                        "reference",
                        referenced_table_id=customers.id,
                        referenced_column_id=name_column.id,
                    )
                ],
            ),
        )


def test_row_round_trip(service, project):
    service.create_table(project.id, _people_table())

    result = service.insert_row(project.id, "people", {"name": "Alice", "age": 30})
    row = service.get_row(project.id, "people", result.system_row_id)

    assert result.rows_affected == 1
    assert len(result.system_row_id) == 36
    assert row["name"] == "Alice"
    assert row["age"] == 30
    assert row["system_row_id"] == result.system_row_id


def test_string_defaults_containing_colons_are_kept(service, project):
    service.create_table(
        project.id,
        TableDefinitionCreate(
            logical_name="notes",
            columns=[_column("title"), _column("body", default_value="see :ref")],
        ),
    )

    result = service.insert_row(project.id, "notes", {"title": "first"})

    assert service.get_row(project.id, "notes", result.system_row_id)["body"] == "see :ref"


def test_insert_keeps_supplied_system_row_id(service, project):
    service.create_table(project.id, _people_table())

    result = service.insert_row(project.id, "people", {"system_row_id": "fixed-id", "name": "Bob"})

    assert result.system_row_id == "fixed-id"
    assert service.get_row(project.id, "people", "fixed-id")["age"] is None


def test_insert_validates_columns(service, project):
    service.create_table(project.id, _people_table())

    with pytest.raises(TableValidationError, match="Unknown column"):
        service.insert_row(project.id, "people", {"name": "Alice", "height": 170})
    with pytest.raises(TableValidationError, match="required"):
        service.insert_row(project.id, "people", {"age": 30})


def test_update_rows_changes_only_given_columns(service, project):
    service.create_table(project.id, _people_table())
    alice = service.insert_row(project.id, "people", {"name": "Alice", "age": 30})
    bob = service.insert_row(project.id, "people", {"name": "Bob", "age": 50})

    affected = service.update_rows(project.id, "people", {"age": 31}, "name", "Alice")

    assert affected == 1
    assert service.get_row(project.id, "people", alice.system_row_id) == {
        "system_row_id": alice.system_row_id,
        "name": "Alice",
        "age": 31,
    }
    assert service.get_row(project.id, "people", bob.system_row_id)["age"] == 50


@pytest.mark.parametrize(
    ("values", "filter_column", "message"),
    [
        ({}, "name", "At least one column"),
        ({"system_row_id": "x"}, "name", "cannot be updated"),
        ({"height": 1}, "name", "Unknown column"),
        ({"age": 1}, "height", "Unknown column"),
        ({"name": None}, "age", "cannot be set to null"),
    ],
)
def test_update_rows_validation(service, project, values, filter_column, message):
    service.create_table(project.id, _people_table())

    with pytest.raises(TableValidationError, match=message):
        service.update_rows(project.id, "people", values, filter_column, "Alice")


def test_delete_rows(service, project):
    service.create_table(project.id, _people_table())
    service.insert_row(project.id, "people", {"name": "Alice", "age": 30})
    service.insert_row(project.id, "people", {"name": "Bob", "age": 50})

    assert service.delete_rows(project.id, "people", "name", "Alice") == 1

    remaining = service.list_rows(project.id, "people")
    assert [row["name"] for row in remaining] == ["Bob"]


def test_find_rows_filters(service, project):
    service.create_table(project.id, _people_table())
    service.insert_row(project.id, "people", {"name": "Alice", "age": 30})
    service.insert_row(project.id, "people", {"name": "Bob", "age": 30})

    rows = service.find_rows(project.id, "people", {"age": 30, "name": "Bob"})

    assert [row["name"] for row in rows] == ["Bob"]
    assert len(service.find_rows(project.id, "people", {})) == 2


def test_reference_rows_are_checked_and_resolved(service, project, customers, orders):
    service.insert_row(project.id, "customers", {"code": "C-1", "name": "Acme Corp"})

    with pytest.raises(ReferenceIntegrityError) as exc_info:
        service.insert_row(project.id, "orders", {"label": "first", "customer": "C-404"})
    assert "C-404" in str(exc_info.value)
    assert "customers" in str(exc_info.value)

    inserted = service.insert_row(project.id, "orders", {"label": "first", "customer": "C-1"})
    rows = service.list_rows(project.id, "orders")

    assert rows == [
        {
            "system_row_id": inserted.system_row_id,
            "label": "first",
            "customer_id": "C-1",
            "customer_display_name": "Acme Corp",
        }
    ]
    raw = service.get_row(project.id, "orders", inserted.system_row_id)
    resolved = service.get_row(project.id, "orders", inserted.system_row_id, resolve_references=True)
    assert raw["customer"] == "C-1"
    assert resolved["customer_display_name"] == "Acme Corp"


def test_update_checks_reference_values(service, project, customers, orders):
    service.insert_row(project.id, "customers", {"code": "C-1", "name": "Acme Corp"})
    service.insert_row(project.id, "orders", {"label": "first", "customer": "C-1"})

    with pytest.raises(ReferenceIntegrityError):
        service.update_rows(project.id, "orders", {"customer": "C-2"}, "label", "first")

    assert service.update_rows(project.id, "orders", {"label": "renamed"}, "label", "first") == 1


def test_orders_definition_caches_reference_names(orders):
    customer = orders.get_column("customer")
    assert customer.referenced_table_name == "customers"
    assert customer.referenced_column_name == "code"


def test_update_table_definition_is_metadata_only(caplog, service, project, tenant_engine):
    created = service.create_table(project.id, _people_table())
    name_id = created.get_column("name").id

    updated = service.update_table_definition(
        project.id,
        "people",
        TableDefinitionUpdate(
            description="Updated",
            columns=[_column("name", display_name="Full name"), _column("email")],
        ),
    )

    assert updated.description == "Updated"
    assert [column.name for column in updated.columns] == ["name", "email"]
    assert updated.get_column("name").id == name_id
    assert updated.get_column("name").display_name == "Full name"
    assert "physical table" in caplog.text
    physical_columns = {column["name"] for column in inspect(tenant_engine).get_columns(created.physical_name)}
    assert physical_columns == {"system_row_id", "name", "age"}


def test_delete_table_refuses_referenced_tables(service, project, customers, orders):
    with pytest.raises(ConflictError, match="orders.customer"):
        service.delete_table(project.id, "customers")


def test_delete_table_drops_physical_table(service, project, tenant_engine):
    created = service.create_table(project.id, _people_table())
    column_ids = [column.id for column in created.columns]

    service.delete_table(project.id, "people")

    assert service.get_table_definition(project.id, "people") is None
    assert all(service.store.get_column(column_id) is None for column_id in column_ids)
    assert not _has_table(tenant_engine, created.physical_name)
    with pytest.raises(NotFoundError):
        service.insert_row(project.id, "people", {"name": "Alice"})


def test_delete_table_keeps_physical_table_when_metadata_delete_fails(
    monkeypatch, service, project, tenant_engine
):
    created = service.create_table(project.id, _people_table())

    def failing_commit(self):
        raise OperationalError("COMMIT", {}, Exception("metadata store unavailable"))

    monkeypatch.setattr(MetadataStore, "commit", failing_commit)

    with pytest.raises(ExecutionError, match="delete"):
        service.delete_table(project.id, "people")

    monkeypatch.undo()
    assert _has_table(tenant_engine, created.physical_name)
    assert service.get_table_definition(project.id, "people") is not None


def test_get_table_data_combines_definition_and_rows(service, project):
    service.create_table(project.id, _people_table())
    service.insert_row(project.id, "people", {"name": "Alice", "age": 30})

    data = service.get_table_data(project.id, "people")

    assert data.definition.logical_name == "people"
    assert [row["name"] for row in data.rows] == ["Alice"]
    with pytest.raises(NotFoundError):
        service.get_table_data(project.id, "missing")


def test_project_connection_probe(service, project):
    elapsed_ms, summary = service.test_project_connection(project.id)

    assert elapsed_ms >= 0
    assert summary.startswith("sqlite")


def test_unsupported_profile_engine_is_configuration_error(db_session, service):
    legacy = ConnectionProfile(name="legacy", engine="db2", host="db", database_name="app")
    db_session.add(legacy)
    db_session.commit()
    project = Project(name="Legacy", connection_profile_id=legacy.id)
    db_session.add(project)
    db_session.commit()

    with pytest.raises(ConfigurationError):
        service.create_table(project.id, _people_table())
