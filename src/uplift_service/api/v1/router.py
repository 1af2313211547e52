"""Storefront-facing v1 routes, mounted under /api/v1."""

from fastapi import APIRouter

from uplift_service.api.v1 import bundles, health, learning, recommendations

api_router = APIRouter()
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(recommendations.router, prefix="/recommendations", tags=["Recommendations"])
api_router.include_router(bundles.router, prefix="/bundles", tags=["Bundles"])
api_router.include_router(learning.router, prefix="/learning", tags=["Learning"])
