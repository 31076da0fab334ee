from __future__ import annotations

from typing import List, Optional

from sqlalchemy import asc, desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import AppHTTPException
from app.models.conversation import Conversation, ordered_pair
from app.models.message import Message
from app.schemas.chat import ConversationOut, MessageOut

"""
Conversation Service.

Rôle (fonctionnel) :
- Requêtes de lecture du chat pour l’API REST :
  - conversations d’un utilisateur (avec dernier message),
  - historique d’une conversation (réservé aux participants).
- Recherche de la conversation d’un couple (ordre indifférent),
  réutilisée par le MessageStore lors d’un premier envoi.
"""


async def find_conversation(db: AsyncSession, user_a: int, user_b: int) -> Optional[Conversation]:
    user1, user2 = ordered_pair(user_a, user_b)
    stmt = select(Conversation).where(Conversation.user1_id == user1, Conversation.user2_id == user2)
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_user_conversations(db: AsyncSession, user_id: int) -> List[ConversationOut]:
    # Dernier message par conversation (id max = dernier écrit)
    last_ids = (
        select(Message.conversation_id, func.max(Message.id).label("last_id"))
        .group_by(Message.conversation_id)
        .subquery()
    )

    stmt = (
        select(Conversation, Message)
        .outerjoin(last_ids, last_ids.c.conversation_id == Conversation.id)
        .outerjoin(Message, Message.id == last_ids.c.last_id)
        .where(or_(Conversation.user1_id == user_id, Conversation.user2_id == user_id))
        .order_by(desc(Conversation.created_at), desc(Conversation.id))
    )
    rows = (await db.execute(stmt)).all()

    return [
        ConversationOut(
            id=conv.id,
            user1_id=conv.user1_id,
            user2_id=conv.user2_id,
            created_at=conv.created_at,
            last_message=MessageOut.model_validate(msg) if msg is not None else None,
        )
        for conv, msg in rows
    ]


async def list_conversation_messages(db: AsyncSession, conversation_id: int, user_id: int) -> List[MessageOut]:
    """Historique chronologique. 404 si inconnue, 403 si l’appelant n’est pas participant."""
    conv = await db.get(Conversation, conversation_id)
    if conv is None:
        raise AppHTTPException(404, "NOT_FOUND", "Conversation introuvable")
    if not conv.has_participant(user_id):
        raise AppHTTPException(403, "FORBIDDEN", "Accès refusé à cette conversation")

    stmt = (
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(asc(Message.created_at), asc(Message.id))
    )
    messages = (await db.execute(stmt)).scalars().all()
    return [MessageOut.model_validate(m) for m in messages]
