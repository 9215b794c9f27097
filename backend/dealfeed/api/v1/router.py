"""API v1 router -- aggregates all v1 endpoint routers."""

from fastapi import APIRouter

from dealfeed.api.v1 import deals, health, redirect, search

api_v1_router = APIRouter()

api_v1_router.include_router(health.router, tags=["health"])
api_v1_router.include_router(deals.router, prefix="/deals", tags=["deals"])
api_v1_router.include_router(search.router, prefix="/search", tags=["search"])
api_v1_router.include_router(redirect.router, tags=["redirect"])
