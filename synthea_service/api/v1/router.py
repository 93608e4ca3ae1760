"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from synthea_service.api.v1.health import router as health_router
from synthea_service.api.v1.generation import router as generation_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(generation_router, tags=["generation"])
