from fastapi import APIRouter

from support_chat.api.v1.routes import agent, chat, health

api_router = APIRouter()
api_router.include_router(health.router, prefix="/v1", tags=["health"])
api_router.include_router(chat.router, prefix="/v1/chat", tags=["chat"])
api_router.include_router(agent.router, prefix="/v1/agent", tags=["agent"])
