from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import InvalidPayload, PersistenceFailure
from app.core.security import UserId
from app.models.conversation import Conversation, ordered_pair
from app.models.message import Message
from app.realtime.events import ChatMessage
from app.services.conversation_service import find_conversation

"""
Message Store (persistance du chat).

Rôle (fonctionnel) :
- Écrit durablement un message (1 transaction) et renvoie le ChatMessage avec
  l’id et le created_at attribués par le serveur.
- Sans conversationId : retrouve la conversation du couple (ordre indifférent) ou la crée
  via INSERT ... ON CONFLICT DO NOTHING sur la contrainte unique du couple canonique.
- Avec conversationId : la conversation doit exister et avoir exactement
  l’expéditeur et le destinataire comme participants.

Erreurs :
- InvalidPayload : identifiants non numériques, conversation inconnue ou incohérente.
- PersistenceFailure : toute erreur SQLAlchemy (base indisponible, contrainte…).
  Pas de retry ici, pas de timeout : la politique appartient à l’engine / au pool.
"""

log = logging.getLogger("app.messages")

# Dialectes supportant ON CONFLICT DO NOTHING (Postgres en prod, SQLite en tests)
_INSERT_BY_DIALECT = {"postgresql": pg_insert, "sqlite": sqlite_insert}


class MessageStore(Protocol):
    async def save(
        self,
        *,
        sender_id: UserId,
        receiver_id: UserId,
        content: str,
        conversation_id: Optional[int] = None,
    ) -> ChatMessage: ...


def _db_user_id(value: UserId, field: str) -> int:
    if isinstance(value, int):
        return value
    raise InvalidPayload(f"{field} doit être un identifiant numérique", details={"field": field})


def to_chat_message(message: Message) -> ChatMessage:
    return ChatMessage(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        receiver_id=message.receiver_id,
        content=message.content,
        created_at=message.created_at,
    )


class SqlMessageStore:
    """MessageStore SQLAlchemy async : une session courte par message."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def save(
        self,
        *,
        sender_id: UserId,
        receiver_id: UserId,
        content: str,
        conversation_id: Optional[int] = None,
    ) -> ChatMessage:
        sender = _db_user_id(sender_id, "senderId")
        receiver = _db_user_id(receiver_id, "receiverId")

        try:
            async with self._session_factory() as db:
                conv = await self._resolve_conversation(db, sender, receiver, conversation_id)

                message = Message(
                    conversation_id=conv.id,
                    sender_id=sender,
                    receiver_id=receiver,
                    content=content,
                    created_at=datetime.now(timezone.utc),
                )
                db.add(message)
                await db.commit()

                chat_message = to_chat_message(message)
        except SQLAlchemyError as exc:
            log.exception("message_persist_failed", extra={"user_id": sender})
            raise PersistenceFailure(details={"reason": exc.__class__.__name__}) from exc

        log.info(
            "message_persisted",
            extra={
                "user_id": sender,
                "conversation_id": chat_message.conversation_id,
                "message_id": chat_message.id,
            },
        )
        return chat_message

    async def _resolve_conversation(
        self,
        db: AsyncSession,
        sender: int,
        receiver: int,
        conversation_id: Optional[int],
    ) -> Conversation:
        if conversation_id is not None:
            conv = await db.get(Conversation, conversation_id)
            if conv is None:
                raise InvalidPayload("Conversation introuvable", details={"conversationId": conversation_id})
            if {conv.user1_id, conv.user2_id} != {sender, receiver}:
                raise InvalidPayload(
                    "Le destinataire ne fait pas partie de cette conversation",
                    details={"conversationId": conversation_id},
                )
            return conv

        conv = await find_conversation(db, sender, receiver)
        if conv is not None:
            return conv

        user1, user2 = ordered_pair(sender, receiver)
        insert = _INSERT_BY_DIALECT.get(db.get_bind().dialect.name)
        if insert is None:
            conv = Conversation(user1_id=user1, user2_id=user2, created_at=datetime.now(timezone.utc))
            db.add(conv)
            await db.flush()
            log.info("conversation_created", extra={"conversation_id": conv.id, "user_id": sender})
            return conv

        # Premiers envois simultanés A->B / B->A : un seul INSERT gagne, l’autre relit sa ligne
        stmt = (
            insert(Conversation)
            .values(user1_id=user1, user2_id=user2, created_at=datetime.now(timezone.utc))
            .on_conflict_do_nothing(index_elements=["user1_id", "user2_id"])
        )
        result = await db.execute(stmt)

        conv = await find_conversation(db, sender, receiver)
        if conv is None:
            raise PersistenceFailure(details={"reason": "conversation_not_created"})
        if result.rowcount:
            log.info("conversation_created", extra={"conversation_id": conv.id, "user_id": sender})
        return conv
