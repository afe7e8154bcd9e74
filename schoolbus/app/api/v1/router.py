"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from schoolbus.app.api.v1.endpoints import trips, notifications, admin_ops

router = APIRouter()

# Trip lifecycle
router.include_router(trips.router)
router.include_router(trips.visibility_router)

# Notifications
router.include_router(notifications.router)
router.include_router(notifications.admin_router)

# Ops
router.include_router(admin_ops.router)
