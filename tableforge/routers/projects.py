from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tableforge.database import get_db
from tableforge.models import ConnectionProfile, Project
from tableforge.schemas import (
    ConnectionProfileCreate,
    ConnectionProfileRead,
    ProjectCreate,
    ProjectRead,
)
from tableforge.services.connection_pool import ConnectionPoolRegistry, get_pool_registry
from tableforge.services.metadata_store import MetadataStore

router = APIRouter(tags=["Projects"])


@router.post(
    "/connection-profiles",
    response_model=ConnectionProfileRead,
    status_code=status.HTTP_201_CREATED,
)
def create_connection_profile(
    payload: ConnectionProfileCreate, db: Session = Depends(get_db)
) -> ConnectionProfileRead:
    if MetadataStore(db).find_profile_by_name(payload.name) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Connection profile '{payload.name}' already exists",
        )

    profile = ConnectionProfile(**payload.model_dump(mode="json"))
    db.add(profile)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Connection profile '{payload.name}' already exists",
        ) from exc
    db.refresh(profile)
    return profile


@router.get("/connection-profiles", response_model=list[ConnectionProfileRead])
def list_connection_profiles(db: Session = Depends(get_db)) -> list[ConnectionProfileRead]:
    return db.query(ConnectionProfile).order_by(ConnectionProfile.name).all()


@router.delete("/connection-profiles/{profile_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_connection_profile(
    profile_id: UUID,
    db: Session = Depends(get_db),
    registry: ConnectionPoolRegistry = Depends(get_pool_registry),
) -> None:
    profile = db.get(ConnectionProfile, profile_id)
    if not profile:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Connection profile not found"
        )

    registry.close_pool(profile.id)
    db.delete(profile)
    db.commit()


@router.post("/projects", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
def create_project(payload: ProjectCreate, db: Session = Depends(get_db)) -> ProjectRead:
    if payload.connection_profile_id and not db.get(ConnectionProfile, payload.connection_profile_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Connection profile not found"
        )

    project = Project(**payload.model_dump())
    db.add(project)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Project '{payload.name}' already exists",
        ) from exc
    db.refresh(project)
    return project


@router.get("/projects", response_model=list[ProjectRead])
def list_projects(db: Session = Depends(get_db)) -> list[ProjectRead]:
    return db.query(Project).order_by(Project.name).all()


@router.get("/projects/{project_id}", response_model=ProjectRead)
def get_project(project_id: UUID, db: Session = Depends(get_db)) -> ProjectRead:
    project = db.get(Project, project_id)
    if not project:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return project
