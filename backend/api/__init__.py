"""FastAPI router aggregation."""

from fastapi import APIRouter

from api.conversations import router as conversations_router
from api.messages import router as messages_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(conversations_router, prefix="/conversations", tags=["conversations"])
api_router.include_router(messages_router, prefix="/messages", tags=["messages"])
