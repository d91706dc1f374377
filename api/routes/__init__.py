from __future__ import annotations

from fastapi import APIRouter

from api.routes import actors, anchors, batches, health


def get_api_router() -> APIRouter:
    router = APIRouter()

    router.include_router(health.router, tags=["health"])
    router.include_router(batches.router, tags=["batches"])
    router.include_router(actors.router, tags=["actors"])
    router.include_router(anchors.router, tags=["anchors"])

    return router
