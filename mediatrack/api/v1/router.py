"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from mediatrack.api.v1.health import router as health_router
from mediatrack.api.v1.jobs import router as jobs_router
from mediatrack.api.v1.events import router as events_router
from mediatrack.api.v1.github import router as github_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(jobs_router, tags=["jobs"])
v1_router.include_router(events_router, tags=["events"])
v1_router.include_router(github_router, tags=["github"])
