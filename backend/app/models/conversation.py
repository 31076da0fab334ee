from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base

"""
Model Conversation.

Rôle (fonctionnel) :
- Conversation privée entre deux utilisateurs.
- Les utilisateurs sont gérés par un autre service : simples identifiants entiers, sans FK.

Contraintes :
- Couple stocké sous forme canonique : user1_id < user2_id (voir `ordered_pair`).
  A->B et B->A désignent la même ligne ; la contrainte unique empêche donc deux
  conversations pour un même couple, y compris sur des premiers envois simultanés.
"""


def ordered_pair(user_a: int, user_b: int) -> tuple[int, int]:
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user1_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    user2_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow, index=True)

    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("user1_id", "user2_id", name="uq_conversations_pair"),
        CheckConstraint("user1_id < user2_id", name="ck_conversations_ordered_pair"),
    )

    def has_participant(self, user_id: int) -> bool:
        return user_id in (self.user1_id, self.user2_id)
