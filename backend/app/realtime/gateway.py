from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import ValidationError

from app.core.errors import InvalidPayload, PersistenceFailure, RealtimeError, Unauthenticated, error_payload
from app.core.rate_limit import InMemoryRateLimiter
from app.core.security import IdentityResolver, UserId
from app.realtime import events
from app.realtime.dispatcher import DispatchReport, FanoutDispatcher
from app.realtime.events import ChatMessage
from app.realtime.presence import PresenceTracker
from app.realtime.registry import Connection, ConnectionRegistry, Transport, new_connection_id
from app.schemas.chat import SendMessageIn

"""
Realtime Gateway (sessions WebSocket).

Rôle (fonctionnel) :
- Fait le pont entre le cycle de vie d’une connexion transport et le registre :
  - connect : résout l’identité (collaborateur d’auth), enregistre si authentifiée,
  - handle : traite les frames entrantes (sendMessage, ping),
  - disconnect : retire la connexion du registre.
- Pipeline d’envoi (submit) : validation -> persistance -> fan-out. Partagé avec POST /messages.

Machine à états par connexion :
    CONNECTING -> AUTHENTICATED | ANONYMOUS -> CLOSED
- Aucune sortie de CLOSED ; ANONYMOUS ne devient jamais AUTHENTICATED
  (une reconnexion avec credentials est une nouvelle connexion).

Erreurs :
- Toute RealtimeError est renvoyée à la seule connexion d’origine (frame “error”),
  la connexion reste ouverte. Rien ici n’est fatal au process.
"""

log = logging.getLogger("realtime.gateway")


class SessionState(str, Enum):
    CONNECTING = "CONNECTING"
    AUTHENTICATED = "AUTHENTICATED"
    ANONYMOUS = "ANONYMOUS"
    CLOSED = "CLOSED"


@dataclass(eq=False)
class Session:
    """État d’une connexion côté gateway."""
    transport: Transport
    id: str = field(default_factory=new_connection_id)
    state: SessionState = SessionState.CONNECTING
    user_id: Optional[UserId] = None
    connection: Optional[Connection] = None

    @property
    def authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED


class SessionGateway:
    def __init__(
        self,
        registry: ConnectionRegistry,
        dispatcher: FanoutDispatcher,
        presence: PresenceTracker,
        auth: IdentityResolver,
        store: Any,
        *,
        rate_limiter: Optional[InMemoryRateLimiter] = None,
        send_rate_per_min: int = 0,
        max_content_length: int = 4000,
    ) -> None:
        self.registry = registry
        self.dispatcher = dispatcher
        self.presence = presence
        self.auth = auth
        self.store = store
        self.rate_limiter = rate_limiter
        self.send_rate_per_min = send_rate_per_min
        self.max_content_length = max_content_length

    # ---------------------------------------------------------------- lifecycle

    async def connect(
        self,
        transport: Transport,
        credentials: Mapping[str, Any],
        connection_id: Optional[str] = None,
    ) -> Session:
        """
        Crée la session ; une identité absente/invalide donne une session anonyme (acceptée).

        `connection_id` permet à l’appelant de lier l’id de corrélation des logs avant la connexion.
        """
        session = Session(transport=transport, id=connection_id or new_connection_id())
        user_id = self.auth.resolve(credentials)
        change = None

        if user_id is None:
            session.state = SessionState.ANONYMOUS
            log.info("ws_connected_anonymous", extra={"connection_id": session.id})
        else:
            session.user_id = user_id
            session.connection = Connection(user_id=user_id, transport=transport, id=session.id)
            session.state = SessionState.AUTHENTICATED
            change = self.registry.register(user_id, session.connection)
            log.info(
                "ws_connected",
                extra={"connection_id": session.id, "user_id": user_id},
            )

        await self._reply(
            session,
            events.frame(
                events.CONNECTED,
                {
                    "connectionId": session.id,
                    "userId": session.user_id,
                    "authenticated": session.authenticated,
                    "ts": datetime.now(timezone.utc).isoformat(),
                },
            ),
        )
        if change is not None:
            await self.presence.publish(change)
        return session

    async def disconnect(self, session: Session) -> None:
        """Ferme la session et retire la connexion du registre (idempotent)."""
        if session.closed:
            return

        was_authenticated = session.authenticated
        session.state = SessionState.CLOSED

        if self.rate_limiter is not None:
            self.rate_limiter.forget(("ws", session.id))

        if was_authenticated:
            change = self.registry.deregister(session.id)
            await self.presence.publish(change)

        log.info("ws_disconnected", extra={"connection_id": session.id, "user_id": session.user_id})

    # ------------------------------------------------------------------ inbound

    async def handle(self, session: Session, frame: Any) -> None:
        """Traite une frame entrante ; les erreurs sont renvoyées à cette connexion uniquement."""
        if session.closed:
            return

        data = frame.get("data") if isinstance(frame, dict) else None
        client_id = data.get("clientId") if isinstance(data, dict) else None
        if not isinstance(client_id, str):
            client_id = None

        try:
            if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                raise InvalidPayload("Frame invalide : {\"event\": str, \"data\": {...}} attendu")

            event = frame["event"]
            if event == events.PING:
                await self._reply(session, events.pong_frame())
            elif event == events.SEND_MESSAGE:
                await self._handle_send(session, data)
            else:
                raise InvalidPayload(f"Event inconnu : {event}", details={"event": event})

        except RealtimeError as exc:
            log.info(
                "event_rejected: %s",
                exc.message,
                extra={"connection_id": session.id, "user_id": session.user_id, "code": exc.code},
            )
            await self._reply(session, events.error_frame(exc.to_payload(session.id), client_id))

        except Exception:
            log.exception("event_failed", extra={"connection_id": session.id, "user_id": session.user_id})
            payload = error_payload(
                code="INTERNAL_ERROR",
                message="Erreur interne du serveur",
                status=500,
                request_id=session.id,
            )
            await self._reply(session, events.error_frame(payload, client_id))

    async def _handle_send(self, session: Session, data: Any) -> None:
        if not session.authenticated or session.user_id is None:
            raise Unauthenticated()

        if self.rate_limiter is not None:
            self.rate_limiter.check_connection(session.id, self.send_rate_per_min)

        await self.submit(session.user_id, data)

    async def submit(self, sender_id: UserId, data: Any) -> Tuple[ChatMessage, DispatchReport]:
        """
        Valide, persiste puis diffuse un message.

        L’expéditeur vient toujours de l’appelant authentifié, jamais du payload.
        Si la persistance échoue, rien n’est diffusé.
        """
        if not isinstance(data, Mapping):
            raise InvalidPayload("data doit être un objet")

        try:
            payload = SendMessageIn.model_validate(dict(data))
        except ValidationError as exc:
            raise InvalidPayload(
                details=exc.errors(include_url=False, include_context=False, include_input=False),
            ) from exc

        if len(payload.content) > self.max_content_length:
            raise InvalidPayload(
                f"Message trop long (max {self.max_content_length} caractères)",
                details={"max_length": self.max_content_length},
            )
        if payload.receiver_id == sender_id:
            raise InvalidPayload("Impossible de s’envoyer un message à soi-même")

        try:
            message = await self.store.save(
                sender_id=sender_id,
                receiver_id=payload.receiver_id,
                content=payload.content,
                conversation_id=payload.conversation_id,
            )
        except RealtimeError:
            raise
        except Exception as exc:
            log.exception("store_failed", extra={"user_id": sender_id})
            raise PersistenceFailure() from exc

        report = await self.dispatcher.dispatch(message)
        return message, report

    # ----------------------------------------------------------------- outbound

    async def _reply(self, session: Session, payload: Dict[str, Any]) -> None:
        """Envoi direct à la connexion (y compris anonyme, donc hors registre). Best-effort."""
        try:
            await session.transport.send_json(payload)
        except Exception as exc:
            log.info("reply_failed: %s", exc, extra={"connection_id": session.id})
