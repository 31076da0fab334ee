"""
app.models

Package ORM (SQLAlchemy) : définition des entités persistées en base.

Rôle (fonctionnel) :
- Centralise les modèles du chat (Conversation, Message).
- Permet des imports plus simples depuis app.models (ex: from app.models import Message).
"""

from app.models.conversation import Conversation
from app.models.message import Message

__all__ = ["Conversation", "Message"]
