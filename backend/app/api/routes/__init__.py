"""API routes."""

from fastapi import APIRouter

from app.api.routes import kitchen

api_router = APIRouter()

api_router.include_router(kitchen.router, prefix="/kitchen", tags=["kitchen"])
