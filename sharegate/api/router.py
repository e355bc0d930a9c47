"""sharegate API Router - aggregates the admin API routes."""

from fastapi import APIRouter

from sharegate.api import admin

# Admin API router - all routes will be prefixed with /api
api_router = APIRouter(prefix="/api")

api_router.include_router(admin.router)
