from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.security import normalize_user_id

"""
Schemas Chat (Pydantic).

Rôle (fonctionnel) :
- Valide le payload d’envoi de message (frame WS `sendMessage` et POST /messages).
- Sérialise conversations, messages et présence pour l’API REST.

Notes :
- Entrée en camelCase (contrat historique du front), alias acceptés aussi en snake_case.
- L’expéditeur n’est jamais lu dans le payload : il vient de la session authentifiée.
"""


class SendMessageIn(BaseModel):
    """Payload d’envoi d’un message."""
    conversation_id: Optional[int] = Field(default=None, alias="conversationId", ge=1)
    receiver_id: Union[int, str] = Field(alias="receiverId")
    content: str = Field(min_length=1)

    # Identifiant libre côté client, renvoyé dans les frames d’erreur
    client_id: Optional[str] = Field(default=None, alias="clientId", max_length=100)

    # senderId éventuel ignoré (anti-spoofing), autres champs inconnus ignorés
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("receiver_id", mode="before")
    @classmethod
    def _receiver(cls, value: Any) -> Union[int, str]:
        uid = normalize_user_id(value)
        if uid is None:
            raise ValueError("receiverId is required")
        return uid

    @field_validator("content")
    @classmethod
    def _content(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be blank")
        return value


class MessageOut(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    receiver_id: int
    content: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConversationOut(BaseModel):
    """Conversation + dernier message (aperçu pour la liste)."""
    id: int
    user1_id: int
    user2_id: int
    created_at: datetime
    last_message: Optional[MessageOut] = None

    model_config = ConfigDict(from_attributes=True)


class ConversationListResponse(BaseModel):
    data: List[ConversationOut]


class MessageListResponse(BaseModel):
    data: List[MessageOut]


class PresenceOut(BaseModel):
    user_id: Union[int, str]
    online: bool
    connections: int
