from __future__ import annotations
"""Master API router: mounts all sub-routers."""

from fastapi import APIRouter

from mediaforge.api.generations import router as generations_router
from mediaforge.api.models import router as models_router

api_router = APIRouter(prefix="/api", redirect_slashes=False)

api_router.include_router(models_router, prefix="/models", tags=["Models"])
api_router.include_router(generations_router, tags=["Generations"])
