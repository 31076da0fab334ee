from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base

"""
Model Message.

Rôle (fonctionnel) :
- Message direct écrit dans une conversation (1 ligne = 1 envoi).
- L’id et created_at sont attribués par le serveur à l’écriture, puis le message est
  poussé tel quel aux connexions vivantes (voir app.realtime).

Index :
- (conversation_id, created_at) : historique chronologique et “dernier message”.
"""


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Conversation parente (cascade delete)
    conversation_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )

    sender_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    receiver_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    content: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    conversation = relationship("Conversation", back_populates="messages")

    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )
