from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from app.realtime.events import ChatMessage, DispatchEvent
from app.realtime.registry import ConnectionRegistry, PresenceChange

"""
Realtime Dispatcher (fan-out).

Rôle (fonctionnel) :
- Pousse un message déjà persisté à toutes les connexions vivantes de l’expéditeur
  et du destinataire (une copie par connexion, multi-device compris).
- Fournit aussi l’envoi unitaire et le broadcast (utilisé par la présence).

Notes :
- “Best-effort” : au plus une fois par connexion vivante au moment du dispatch.
  Pas de file d’attente hors-ligne, pas de retry.
- Purge automatique : une connexion dont l’envoi échoue est retirée du registre
  et son transport est fermé (code 1011) ; le client doit se reconnecter.
- Tous les envois sont terminés quand dispatch() rend la main.
"""

log = logging.getLogger("realtime.dispatcher")


@dataclass
class DispatchReport:
    delivered: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.delivered) + len(self.failed)


class FanoutDispatcher:
    def __init__(
        self,
        registry: ConnectionRegistry,
        on_presence_change: Optional[Callable[[PresenceChange], Awaitable[None]]] = None,
    ) -> None:
        self.registry = registry
        # Appelé quand une purge fait passer un utilisateur hors-ligne
        self.on_presence_change = on_presence_change

    async def dispatch(self, message: ChatMessage) -> DispatchReport:
        """Fan-out d’un ChatMessage vers sender + receiver (cibles résolues maintenant)."""
        targets = self.registry.lookup(message.sender_id) | self.registry.lookup(message.receiver_id)
        report = await self._push_many(targets, DispatchEvent(message).to_frame())

        log.info(
            "message_dispatched",
            extra={
                "message_id": message.id,
                "conversation_id": message.conversation_id,
                "delivered": len(report.delivered),
                "failed": len(report.failed),
            },
        )
        return report

    async def send(self, connection_id: str, payload: Dict[str, Any]) -> bool:
        """Envoi vers une seule connexion (best-effort). False si inconnue ou morte."""
        report = await self._push_many([connection_id], payload)
        return bool(report.delivered)

    async def broadcast(self, payload: Dict[str, Any]) -> DispatchReport:
        """Diffuse un payload à toutes les connexions vivantes."""
        return await self._push_many(self.registry.connection_ids(), payload)

    async def _push_many(self, connection_ids: Iterable[str], payload: Dict[str, Any]) -> DispatchReport:
        report = DispatchReport()
        conns = [c for c in (self.registry.get(cid) for cid in connection_ids) if c is not None]
        if not conns:
            return report

        results: List[Tuple[str, BaseException | None]] = await asyncio.gather(
            *(self._push_one(c.id, c.transport, payload) for c in conns)
        )

        transports = {c.id: c.transport for c in conns}
        dead = []
        for cid, exc in results:
            if exc is None:
                report.delivered.append(cid)
            else:
                report.failed.append(cid)
                dead.append(cid)
                log.warning("push_failed: %s", exc, extra={"connection_id": cid})

        for cid in dead:
            change = self.registry.deregister(cid)
            await self._close_quietly(cid, transports[cid])
            if change is not None and self.on_presence_change is not None:
                await self.on_presence_change(change)
        if dead:
            log.info("purged %s dead conns (%s remaining)", len(dead), self.registry.connection_count())

        return report

    @staticmethod
    async def _close_quietly(cid: str, transport: Any) -> None:
        # Connexion évincée : socket fermé (1011), la boucle de réception se termine
        close = getattr(transport, "close", None)
        if close is None:
            return
        try:
            await close(code=1011)
        except Exception as exc:
            log.debug("close_failed: %s", exc, extra={"connection_id": cid})

    @staticmethod
    async def _push_one(cid: str, transport: Any, payload: Dict[str, Any]) -> Tuple[str, BaseException | None]:
        try:
            await transport.send_json(payload)
        except Exception as exc:
            return cid, exc
        return cid, None
