import logging

from fastapi import FastAPI

from tableforge.config import get_settings
from tableforge.database import run_migrations
from tableforge.routers import api_router
from tableforge.services.connection_pool import ConnectionPoolRegistry

settings = get_settings()
log_level_name = (settings.log_level or "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
logging.getLogger("tableforge").setLevel(log_level)

app = FastAPI(title=settings.app_name)

logger = logging.getLogger(__name__)

app.include_router(api_router, prefix="/api")


@app.get("/health", tags=["Health"])
def health_check() -> dict[str, str]:
    return {"status": "ok"}


@app.on_event("startup")
async def startup_registry() -> None:
    run_migrations()
    app.state.pool_registry = ConnectionPoolRegistry(settings)
    logger.info("Connection pool registry ready")


@app.on_event("shutdown")
async def shutdown_registry() -> None:
    registry = getattr(app.state, "pool_registry", None)
    if registry is not None:
        registry.close_all()
