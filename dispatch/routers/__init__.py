"""API routers."""

from dispatch.routers.jobs import router as jobs_router
from dispatch.routers.payments import router as payments_router
from dispatch.routers.technicians import router as technicians_router

__all__ = ["jobs_router", "payments_router", "technicians_router"]
