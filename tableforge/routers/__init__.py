from fastapi import APIRouter

from tableforge.routers import projects, tables

api_router = APIRouter()
api_router.include_router(projects.router)
api_router.include_router(tables.router)
