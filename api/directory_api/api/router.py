from fastapi import APIRouter

from directory_api.api.routes import admin, health, interactions, moderation, resources, submissions

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(resources.router, prefix="/resources", tags=["public"])
api_router.include_router(submissions.router, prefix="/submissions", tags=["submissions"])
api_router.include_router(interactions.router, prefix="/interactions", tags=["interactions"])
api_router.include_router(moderation.router, prefix="/moderation", tags=["moderation"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
