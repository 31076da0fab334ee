from fastapi import APIRouter

from .health import router as health_router

from app.api.conversations import router as conversations_router
from app.api.presence import router as presence_router
from app.api.status import router as status_router

"""
Router principal de l’API.

Rôle (fonctionnel) :
- Regroupe les routeurs HTTP par domaine (health, chat, présence, statut système).
- Le WebSocket (/ws/chat) est inclus séparément dans main.py.
"""

api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
api_router.include_router(conversations_router)
api_router.include_router(presence_router)
api_router.include_router(status_router)
