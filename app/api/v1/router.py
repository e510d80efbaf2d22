"""API v1 router aggregator."""

from fastapi import APIRouter

from app.api.v1.pipeline import routes as pipeline

api_router = APIRouter()

api_router.include_router(pipeline.router, prefix="/pipeline", tags=["Pipeline"])
