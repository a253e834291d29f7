"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import auto_scheduler

router = APIRouter()

# Auto scheduler (dispatch) endpoints
router.include_router(auto_scheduler.router)
