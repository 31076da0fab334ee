from __future__ import annotations

import logging
from typing import Awaitable, Callable, FrozenSet, List, Optional

from app.core.security import UserId
from app.realtime.registry import ConnectionRegistry, PresenceChange

"""
Realtime Presence.

Rôle (fonctionnel) :
- Vue dérivée du registre : un utilisateur est en ligne s’il a au moins une connexion vivante.
- Aucune donnée propre : is_online() lit directement le registre.
- Notifications “edge-triggered” : publish() ne reçoit que les transitions 0 <-> 1+
  renvoyées par register/deregister, jamais l’état courant.
"""

log = logging.getLogger("realtime.presence")

PresenceCallback = Callable[[PresenceChange], Awaitable[None]]


class PresenceTracker:
    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry
        self._subscribers: List[PresenceCallback] = []

    def is_online(self, user_id: UserId) -> bool:
        return bool(self.registry.lookup(user_id))

    def online_users(self) -> FrozenSet[UserId]:
        return self.registry.users()

    def subscribe(self, callback: PresenceCallback) -> Callable[[], None]:
        """Abonne un callback async ; renvoie une fonction de désabonnement."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def publish(self, change: Optional[PresenceChange]) -> None:
        """Notifie les abonnés d’une transition. Les erreurs d’un abonné sont loggées, pas propagées."""
        if change is None:
            return

        log.info(
            "presence_changed",
            extra={"user_id": change.user_id, "online": change.online},
        )

        for callback in list(self._subscribers):
            try:
                await callback(change)
            except Exception:
                log.exception("presence subscriber failed", extra={"user_id": change.user_id})
