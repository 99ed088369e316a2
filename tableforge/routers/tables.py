from logging import getLogger
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from tableforge.database import get_db
from tableforge.schemas import (
    ConnectionTestResult,
    RowFilterRequest,
    RowInsertResult,
    RowsAffected,
    RowUpdateRequest,
    TableDataRead,
    TableDefinitionCreate,
    TableDefinitionRead,
    TableDefinitionUpdate,
)
from tableforge.services.connection_pool import ConnectionPoolRegistry, get_pool_registry
from tableforge.services.connection_testing import ConnectionTestError
from tableforge.services.errors import (
    ConfigurationError,
    ConflictError,
    ExecutionError,
    NotFoundError,
    ReferenceIntegrityError,
    TableServiceError,
    TableValidationError,
)
from tableforge.services.table_service import TableService

logger = getLogger(__name__)

router = APIRouter(prefix="/projects/{project_id}", tags=["Dynamic Tables"])

_STATUS_BY_ERROR: tuple[tuple[type[TableServiceError], int], ...] = (
    (TableValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ReferenceIntegrityError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (ExecutionError, status.HTTP_502_BAD_GATEWAY),
)


def get_table_service(
    db: Session = Depends(get_db),
    registry: ConnectionPoolRegistry = Depends(get_pool_registry),
) -> TableService:
    return TableService(db, registry)


def _http_error(exc: TableServiceError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    if status_code >= 500:
        logger.error("Table operation failed: %s", exc)
    return HTTPException(status_code=status_code, detail=str(exc))


@router.post("/tables", response_model=TableDefinitionRead, status_code=status.HTTP_201_CREATED)
def create_table(
    project_id: UUID,
    payload: TableDefinitionCreate,
    service: TableService = Depends(get_table_service),
) -> TableDefinitionRead:
    try:
        return service.create_table(project_id, payload)
    except TableServiceError as exc:
        raise _http_error(exc) from exc


@router.get("/tables", response_model=list[TableDefinitionRead])
def list_tables(
    project_id: UUID, service: TableService = Depends(get_table_service)
) -> list[TableDefinitionRead]:
    try:
        return service.list_tables(project_id)
    except TableServiceError as exc:
        raise _http_error(exc) from exc


@router.get("/tables/by-id/{table_id}", response_model=TableDefinitionRead)
def get_table_definition_by_id(
    project_id: UUID, table_id: UUID, service: TableService = Depends(get_table_service)
) -> TableDefinitionRead:
    try:
        definition = service.get_table_definition_by_id(project_id, table_id)
    except TableServiceError as exc:
        raise _http_error(exc) from exc
    if definition is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Table not found")
    return definition


@router.get("/tables/{logical_name}", response_model=TableDefinitionRead)
def get_table_definition(
    project_id: UUID, logical_name: str, service: TableService = Depends(get_table_service)
) -> TableDefinitionRead:
    try:
        definition = service.get_table_definition(project_id, logical_name)
    except TableServiceError as exc:
        raise _http_error(exc) from exc
    if definition is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Table not found")
    return definition


@router.put("/tables/{logical_name}", response_model=TableDefinitionRead)
def update_table_definition(
    project_id: UUID,
    logical_name: str,
    payload: TableDefinitionUpdate,
    service: TableService = Depends(get_table_service),
) -> TableDefinitionRead:
    try:
        return service.update_table_definition(project_id, logical_name, payload)
    except TableServiceError as exc:
        raise _http_error(exc) from exc


@router.delete("/tables/{logical_name}", status_code=status.HTTP_204_NO_CONTENT)
def delete_table(
    project_id: UUID, logical_name: str, service: TableService = Depends(get_table_service)
) -> None:
    try:
        service.delete_table(project_id, logical_name)
    except TableServiceError as exc:
        raise _http_error(exc) from exc


@router.get("/tables/{logical_name}/data", response_model=TableDataRead)
def get_table_data(
    project_id: UUID, logical_name: str, service: TableService = Depends(get_table_service)
) -> TableDataRead:
    try:
        data = service.get_table_data(project_id, logical_name)
    except TableServiceError as exc:
        raise _http_error(exc) from exc
    return TableDataRead(
        definition=TableDefinitionRead.model_validate(data.definition), rows=data.rows
    )


@router.post(
    "/tables/{logical_name}/rows",
    response_model=RowInsertResult,
    status_code=status.HTTP_201_CREATED,
)
def insert_row(
    project_id: UUID,
    logical_name: str,
    payload: dict[str, Any],
    service: TableService = Depends(get_table_service),
) -> RowInsertResult:
    try:
        return service.insert_row(project_id, logical_name, payload)
    except TableServiceError as exc:
        raise _http_error(exc) from exc


@router.get("/tables/{logical_name}/rows", response_model=list[dict[str, Any]])
def list_rows(
    project_id: UUID, logical_name: str, service: TableService = Depends(get_table_service)
) -> list[dict[str, Any]]:
    try:
        return service.list_rows(project_id, logical_name)
    except TableServiceError as exc:
        raise _http_error(exc) from exc


@router.post("/tables/{logical_name}/rows/search", response_model=list[dict[str, Any]])
def search_rows(
    project_id: UUID,
    logical_name: str,
    payload: RowFilterRequest,
    service: TableService = Depends(get_table_service),
) -> list[dict[str, Any]]:
    try:
        return service.find_rows(project_id, logical_name, payload.filters)
    except TableServiceError as exc:
        raise _http_error(exc) from exc


@router.get("/tables/{logical_name}/rows/{system_row_id}", response_model=dict[str, Any])
def get_row(
    project_id: UUID,
    logical_name: str,
    system_row_id: str,
    resolve_references: bool = False,
    service: TableService = Depends(get_table_service),
) -> dict[str, Any]:
    try:
        row = service.get_row(project_id, logical_name, system_row_id, resolve_references)
    except TableServiceError as exc:
        raise _http_error(exc) from exc
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Row not found")
    return row


@router.patch("/tables/{logical_name}/rows", response_model=RowsAffected)
def update_rows(
    project_id: UUID,
    logical_name: str,
    payload: RowUpdateRequest,
    service: TableService = Depends(get_table_service),
) -> RowsAffected:
    try:
        affected = service.update_rows(
            project_id, logical_name, payload.values, payload.filter_column, payload.filter_value
        )
    except TableServiceError as exc:
        raise _http_error(exc) from exc
    return RowsAffected(rows_affected=affected)


@router.delete("/tables/{logical_name}/rows", response_model=RowsAffected)
def delete_rows(
    project_id: UUID,
    logical_name: str,
    filter_column: str,
    filter_value: str,
    service: TableService = Depends(get_table_service),
) -> RowsAffected:
    try:
        affected = service.delete_rows(project_id, logical_name, filter_column, filter_value)
    except TableServiceError as exc:
        raise _http_error(exc) from exc
    return RowsAffected(rows_affected=affected)


@router.post("/connection-test", response_model=ConnectionTestResult)
def test_project_connection(
    project_id: UUID, service: TableService = Depends(get_table_service)
) -> ConnectionTestResult:
    try:
        duration_ms, sanitized = service.test_project_connection(project_id)
    except ConnectionTestError as exc:
        return ConnectionTestResult(success=False, message=str(exc))
    except TableServiceError as exc:
        raise _http_error(exc) from exc

    return ConnectionTestResult(
        success=True,
        message="Connection successful.",
        duration_ms=duration_ms,
        connection_summary=sanitized,
    )
