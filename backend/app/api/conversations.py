from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import AppHTTPException
from app.core.security import UserId, require_user
from app.db.session import get_db
from app.schemas.chat import ConversationListResponse, MessageListResponse, MessageOut, SendMessageIn
from app.services.conversation_service import list_conversation_messages, list_user_conversations

"""
API Conversations / Messages.

Rôle (fonctionnel) :
- Lister les conversations de l’utilisateur courant (avec dernier message).
- Lire l’historique d’une conversation (participants uniquement).
- Envoyer un message en REST : même pipeline que la frame WS `sendMessage`
  (validation -> persistance -> fan-out vers les connexions vivantes).
"""

router = APIRouter(tags=["chat"])


def _db_user(user_id: UserId) -> int:
    # Les conversations sont indexées par ids numériques
    if not isinstance(user_id, int):
        raise AppHTTPException(403, "FORBIDDEN", "Identité non numérique")
    return user_id


@router.get("/conversations", response_model=ConversationListResponse)
async def get_conversations(
    user_id: UserId = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    return {"data": await list_user_conversations(db, _db_user(user_id))}


@router.get("/conversations/{conversation_id}/messages", response_model=MessageListResponse)
async def get_messages(
    conversation_id: int,
    user_id: UserId = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    return {"data": await list_conversation_messages(db, conversation_id, _db_user(user_id))}


@router.post("/messages", response_model=MessageOut, status_code=201)
async def post_message(
    payload: SendMessageIn,
    request: Request,
    user_id: UserId = Depends(require_user),
):
    gateway = request.app.state.realtime.gateway

    # RealtimeError -> handler global (même format d’erreur que le reste de l’API)
    message, _report = await gateway.submit(user_id, payload.model_dump(by_alias=True, exclude_none=True))

    return MessageOut(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        receiver_id=message.receiver_id,
        content=message.content,
        created_at=message.created_at,
    )
