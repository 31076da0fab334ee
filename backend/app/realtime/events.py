from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.core.security import UserId

"""
Realtime Events (contrat des frames WebSocket).

Format unique : {"event": <nom>, "data": {...}}

Entrants :
- sendMessage {conversationId?, receiverId, content, clientId?}
- ping

Sortants :
- connected, receiveMessage, presence, pong, error
"""

SEND_MESSAGE = "sendMessage"
PING = "ping"

CONNECTED = "connected"
RECEIVE_MESSAGE = "receiveMessage"
PRESENCE = "presence"
PONG = "pong"
ERROR = "error"


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def frame(event: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"event": event, "data": data or {}}


@dataclass(frozen=True)
class ChatMessage:
    """Message persisté, transporté tel quel jusqu’aux connexions. Immuable."""
    id: int
    conversation_id: int
    sender_id: UserId
    receiver_id: UserId
    content: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "conversationId": self.conversation_id,
            "senderId": self.sender_id,
            "receiverId": self.receiver_id,
            "content": self.content,
            "createdAt": _iso(self.created_at),
        }


@dataclass(frozen=True)
class DispatchEvent:
    """Payload poussé à une connexion ; dérivé à chaque dispatch, sans identité propre."""
    message: ChatMessage

    def to_frame(self) -> Dict[str, Any]:
        return frame(RECEIVE_MESSAGE, self.message.to_dict())


def presence_frame(user_id: UserId, online: bool) -> Dict[str, Any]:
    return frame(PRESENCE, {"userId": user_id, "online": online})


def pong_frame() -> Dict[str, Any]:
    return frame(PONG, {"ts": datetime.now(timezone.utc).isoformat()})


def error_frame(payload: Dict[str, Any], client_id: Optional[str] = None) -> Dict[str, Any]:
    data = dict(payload)
    if client_id is not None:
        data["clientId"] = client_id
    return frame(ERROR, data)
