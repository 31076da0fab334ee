from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Optional, Protocol, Set

from app.core.security import UserId

"""
Realtime Registry (connexions actives).

Rôle (fonctionnel) :
- Table d’autorité UserId -> ensemble des connexions vivantes (multi-device / multi-onglets).
- Index inverse connection_id -> UserId pour un retrait O(1) à la déconnexion.

Invariants :
- Un connection_id appartient à au plus une entrée.
- Aucune entrée vide : retirer la dernière connexion d’un user supprime l’entrée.

Concurrence :
- Méthodes synchrones (aucun await) : atomiques les unes par rapport aux autres sur la
  boucle asyncio. Pas de verrou tant que le registre n’est touché que depuis la boucle.
- État purement en mémoire : vide au redémarrage (tout le monde hors-ligne).
"""

log = logging.getLogger("realtime")


class Transport(Protocol):
    """Canal bidirectionnel : il suffit de savoir pousser un JSON (ex : fastapi.WebSocket)."""

    async def send_json(self, data: Any) -> None: ...


def new_connection_id() -> str:
    return uuid.uuid4().hex


@dataclass(eq=False)
class Connection:
    """Connexion vivante, possédée par le registre pendant toute sa durée de vie."""
    user_id: UserId
    transport: Transport
    id: str = field(default_factory=new_connection_id)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class PresenceChange:
    """Transition 0 <-> 1+ connexions pour un utilisateur."""
    user_id: UserId
    online: bool


class ConnectionRegistry:
    def __init__(self) -> None:
        self._by_user: Dict[UserId, Set[str]] = {}
        self._owner: Dict[str, UserId] = {}
        self._connections: Dict[str, Connection] = {}

    def register(self, user_id: UserId, connection: Connection) -> Optional[PresenceChange]:
        """
        Ajoute `connection` à l’ensemble de `user_id` (créé si absent).

        Idempotent si déjà présente. Une connexion possédée par un autre utilisateur est
        déplacée. Renvoie PresenceChange(online=True) si l’utilisateur passe en ligne.
        """
        cid = connection.id
        current = self._owner.get(cid)
        if current == user_id:
            self._connections[cid] = connection
            return None
        if current is not None:
            self.deregister(cid)

        conns = self._by_user.get(user_id)
        became_online = conns is None
        if conns is None:
            conns = self._by_user[user_id] = set()
        conns.add(cid)
        self._owner[cid] = user_id
        self._connections[cid] = connection

        log.debug("registered", extra={"user_id": user_id, "connection_id": cid})
        return PresenceChange(user_id, True) if became_online else None

    def deregister(self, connection_id: str) -> Optional[PresenceChange]:
        """
        Retire une connexion. No-op si inconnue (double déconnexion).

        Renvoie PresenceChange(online=False) si c’était la dernière connexion du user.
        """
        user_id = self._owner.pop(connection_id, None)
        self._connections.pop(connection_id, None)
        if user_id is None:
            return None

        conns = self._by_user.get(user_id)
        if conns is not None:
            conns.discard(connection_id)
            if not conns:
                del self._by_user[user_id]
                log.debug("deregistered", extra={"user_id": user_id, "connection_id": connection_id})
                return PresenceChange(user_id, False)

        log.debug("deregistered", extra={"user_id": user_id, "connection_id": connection_id})
        return None

    def lookup(self, user_id: UserId) -> FrozenSet[str]:
        """Connexions vivantes d’un utilisateur (ensemble vide si hors-ligne)."""
        return frozenset(self._by_user.get(user_id, ()))

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def owner(self, connection_id: str) -> Optional[UserId]:
        return self._owner.get(connection_id)

    def users(self) -> FrozenSet[UserId]:
        return frozenset(self._by_user)

    def connection_ids(self) -> FrozenSet[str]:
        return frozenset(self._connections)

    def user_count(self) -> int:
        return len(self._by_user)

    def connection_count(self) -> int:
        return len(self._connections)

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    def clear(self) -> None:
        self._by_user.clear()
        self._owner.clear()
        self._connections.clear()
