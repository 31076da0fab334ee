from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.core.request_id import bound_request_id
from app.core.security import credentials_from_headers_and_query
from app.realtime.registry import new_connection_id

"""
API Realtime (WebSocket chat).

Rôle (fonctionnel) :
- Canal WebSocket /ws/chat : livraison instantanée des messages directs.
- Handshake : credentials lus dans la query (`token`, `userId` en dev), le header Authorization
  ou le cookie `token`.
  Sans identité valide la connexion est acceptée mais anonyme (elle ne reçoit rien).
- Chaque frame texte JSON {"event": ..., "data": {...}} est confiée au SessionGateway.

Notes :
- Une boucle de réception par connexion : la persistance d’un message ne bloque pas
  les autres connexions ; au sein d’une connexion les frames sont traitées dans l’ordre.
- Le texte brut "PING" reste accepté (compat clients legacy) -> frame "pong".
- Tous les logs de la connexion portent son id (request_id = connection_id).
"""

router = APIRouter(tags=["realtime"])
log = logging.getLogger("realtime")


def _parse_frame(raw: Optional[str]) -> Any:
    if raw is None:
        return None
    if raw.strip().upper() == "PING":
        return {"event": "ping", "data": {}}
    try:
        return json.loads(raw)
    except ValueError:
        # Frame non JSON : le gateway répondra INVALID_PAYLOAD
        return raw


@router.websocket("/ws/chat")
async def ws_chat(ws: WebSocket):
    # Hub temps réel créé au démarrage (app.state.realtime)
    hub = getattr(ws.app.state, "realtime", None)
    if hub is None:
        await ws.close(code=1011)
        return

    await ws.accept()

    creds = credentials_from_headers_and_query(ws.headers, ws.query_params, ws.cookies)
    connection_id = new_connection_id()

    with bound_request_id(connection_id):
        session = await hub.gateway.connect(ws, creds, connection_id=connection_id)
        try:
            while True:
                message = await ws.receive()
                if message["type"] == "websocket.disconnect":
                    break

                raw = message.get("text")
                if raw is None and message.get("bytes") is not None:
                    raw = message["bytes"].decode("utf-8", errors="replace")

                await hub.gateway.handle(session, _parse_frame(raw))
        except WebSocketDisconnect:
            pass
        except Exception:
            log.exception("ws_loop_failed", extra={"connection_id": session.id})
        finally:
            # Nettoyage garanti, même en cas d’erreur inattendue
            await hub.gateway.disconnect(session)
