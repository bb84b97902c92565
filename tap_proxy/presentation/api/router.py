"""Top-level API router — versioned sub-routers plus the log inspection API."""

from fastapi import APIRouter

from tap_proxy.presentation.api.endpoints.logs import router as logs_router
from tap_proxy.presentation.api.v1.router import router as v1_router

router = APIRouter(prefix="/api")
router.include_router(v1_router)
router.include_router(logs_router)
