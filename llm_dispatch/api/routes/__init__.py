from fastapi import APIRouter

from llm_dispatch.api.routes import dispatch, health

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(dispatch.router, prefix="/dispatch", tags=["dispatch"])
