"""
API Module
FastAPI routers for the PillMind dose engine
"""

from api.doses import router as doses_router
from api.schedules import router as schedules_router
from api.prescriptions import router as prescriptions_router
from api.inventory import router as inventory_router
from api.settings import router as settings_router
from api.analytics import router as analytics_router
from api.cron import router as cron_router

from api.deps import (
    get_db,
    get_current_user_id,
    verify_cron_secret,
    services,
)


__all__ = [
    # Routers
    "doses_router",
    "schedules_router",
    "prescriptions_router",
    "inventory_router",
    "settings_router",
    "analytics_router",
    "cron_router",
    # Dependencies
    "get_db",
    "get_current_user_id",
    "verify_cron_secret",
    "services",
]


def include_routers(app):
    """
    Include all API routers in the FastAPI app

    Usage:
        from api import include_routers
        include_routers(app)
    """
    app.include_router(doses_router, prefix="/api/v1")
    app.include_router(schedules_router, prefix="/api/v1")
    app.include_router(prescriptions_router, prefix="/api/v1")
    app.include_router(inventory_router, prefix="/api/v1")
    app.include_router(settings_router, prefix="/api/v1")
    app.include_router(analytics_router, prefix="/api/v1")
    app.include_router(cron_router, prefix="/api/v1")
