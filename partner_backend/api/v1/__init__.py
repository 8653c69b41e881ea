"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import applications, admin_logs, partners, earnings, webhooks

api_router = APIRouter()

api_router.include_router(
    applications.router,
    tags=["partner-applications"]
)

api_router.include_router(
    admin_logs.router,
    prefix="/admin-logs",
    tags=["admin-logs"]
)

api_router.include_router(
    partners.router,
    prefix="/partners",
    tags=["partners"]
)

api_router.include_router(
    earnings.router,
    prefix="/partner-earnings",
    tags=["partner-earnings"]
)

api_router.include_router(
    webhooks.router,
    prefix="/webhooks",
    tags=["webhooks"]
)
