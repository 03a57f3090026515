"""V1 API router aggregation."""

from fastapi import APIRouter

from app.api.v1.metrics import router as metrics_router
from app.api.v1.projects import router as projects_router
from app.api.v1.targets import router as targets_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(metrics_router)
v1_router.include_router(projects_router)
v1_router.include_router(targets_router)
