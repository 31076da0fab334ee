from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from app.core.rate_limit import InMemoryRateLimiter
from app.core.security import IdentityResolver
from app.realtime.dispatcher import DispatchReport, FanoutDispatcher
from app.realtime.events import ChatMessage, DispatchEvent, presence_frame
from app.realtime.gateway import Session, SessionGateway, SessionState
from app.realtime.presence import PresenceTracker
from app.realtime.registry import Connection, ConnectionRegistry, PresenceChange

"""
app.realtime

Cœur temps réel du chat : registre des connexions, présence, fan-out et gateway de sessions.

Le tout est assemblé dans un RealtimeHub explicite (un par application FastAPI,
créé par create_app() et fermé au shutdown) : pas d’état global de module, ce qui
permet plusieurs hubs indépendants dans un même process (tests).

Limite connue : le registre est local au process. Un déploiement multi-instance
demanderait un store de présence partagé (pub/sub), non couvert ici.
"""

log = logging.getLogger("realtime")


@dataclass
class RealtimeHub:
    registry: ConnectionRegistry
    presence: PresenceTracker
    dispatcher: FanoutDispatcher
    gateway: SessionGateway

    async def shutdown(self) -> None:
        """Ferme toutes les connexions (best-effort) et vide le registre."""
        conns = [self.registry.get(cid) for cid in self.registry.connection_ids()]
        self.registry.clear()

        for conn in conns:
            close = getattr(conn.transport, "close", None) if conn is not None else None
            if close is None:
                continue
            try:
                await close(code=1001)
            except Exception as exc:
                log.info("close_failed: %s", exc, extra={"connection_id": conn.id})

        log.info("realtime hub stopped (%s conns closed)", len(conns))


def create_hub(
    store: Any,
    auth: IdentityResolver,
    *,
    presence_broadcast: bool = False,
    rate_limiter: Optional[InMemoryRateLimiter] = None,
    send_rate_per_min: int = 0,
    max_content_length: int = 4000,
) -> RealtimeHub:
    registry = ConnectionRegistry()
    presence = PresenceTracker(registry)
    dispatcher = FanoutDispatcher(registry, on_presence_change=presence.publish)
    gateway = SessionGateway(
        registry,
        dispatcher,
        presence,
        auth,
        store,
        rate_limiter=rate_limiter,
        send_rate_per_min=send_rate_per_min,
        max_content_length=max_content_length,
    )

    if presence_broadcast:
        async def _broadcast_presence(change: PresenceChange) -> None:
            await dispatcher.broadcast(presence_frame(change.user_id, change.online))

        presence.subscribe(_broadcast_presence)

    return RealtimeHub(registry=registry, presence=presence, dispatcher=dispatcher, gateway=gateway)


__all__ = [
    "ChatMessage",
    "Connection",
    "ConnectionRegistry",
    "DispatchEvent",
    "DispatchReport",
    "FanoutDispatcher",
    "PresenceChange",
    "PresenceTracker",
    "RealtimeHub",
    "Session",
    "SessionGateway",
    "SessionState",
    "create_hub",
]
