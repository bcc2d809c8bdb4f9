from fastapi import APIRouter, FastAPI

from .admin import router as admin_router
from .members import router as members_router
from .presence import router as presence_router


def include_modular_routers(app: FastAPI) -> None:
    app.include_router(members_router, tags=["members"])
    app.include_router(presence_router, tags=["presence"])
    app.include_router(admin_router, tags=["admin"])


__all__ = ["include_modular_routers", "APIRouter"]
