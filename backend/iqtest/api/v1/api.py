"""
API v1 router combining all v1 endpoints.
"""
from fastapi import APIRouter

from iqtest.api.v1 import admin, auth, health, results, test, users

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(test.router, prefix="/test", tags=["test"])
api_router.include_router(results.router, prefix="/results", tags=["results"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
