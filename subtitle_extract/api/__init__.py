from fastapi import APIRouter

from .control_api import router as control_router
from .webhook_api import router as webhook_router

api_router = APIRouter()
api_router.include_router(control_router, prefix="/control", tags=["External Control API"])
api_router.include_router(webhook_router, prefix="/webhook", tags=["Webhook"])

__all__ = ['api_router']
