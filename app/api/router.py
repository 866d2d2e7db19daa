from __future__ import annotations

from fastapi import APIRouter

from app.api.routers import affiliates, billing, credits, search

router = APIRouter(prefix="/api/v1")
router.include_router(search.router)
router.include_router(affiliates.router)
router.include_router(credits.router)
router.include_router(billing.router)
