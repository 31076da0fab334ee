from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException

"""
Core Errors.

Rôle (fonctionnel) :
- Standardise le format des erreurs renvoyées au client (payload homogène HTTP et WebSocket).
- Fournit une exception HTTP applicative (AppHTTPException) pour les routes REST.
- Fournit la famille RealtimeError pour le chat temps réel : chaque erreur porte un code
  stable et un statut “HTTP-like”, et n’est jamais fatale au process.

Convention de réponse (exemple) :
{
  "error": {
    "code": "PERSISTENCE_FAILURE",
    "message": "Message non enregistré",
    "status": 503,
    "request_id": "...",
    "timestamp": "...",
    "details": {...}
  }
}

Côté WebSocket, le même payload est envoyé dans une frame {"event": "error", "data": ...},
uniquement à la connexion qui a provoqué l’erreur.
"""


def now_iso() -> str:
    """Timestamp ISO-8601 en UTC (utilisé dans toutes les erreurs)."""
    return datetime.now(timezone.utc).isoformat()


def error_payload(
    *,
    code: str,
    message: str,
    status: int,
    request_id: str,
    details: Optional[Any] = None,
) -> Dict[str, Any]:
    """Construit un payload d’erreur homogène pour l’API."""
    payload: Dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
            "status": status,
            "request_id": request_id,
            "timestamp": now_iso(),
        }
    }
    if details is not None:
        payload["error"]["details"] = details
    return payload


class AppHTTPException(HTTPException):
    """
    Exception HTTP applicative standardisée.

    Exemple :
        raise AppHTTPException(403, "FORBIDDEN", "Accès refusé à cette conversation")
    """

    def __init__(self, status_code: int, code: str, message: str, details: Any = None):
        super().__init__(status_code=status_code, detail={"code": code, "message": message, "details": details})


class RealtimeError(Exception):
    """
    Erreur du cœur temps réel.

    Gérée à la frontière de la connexion : convertie en frame d’erreur pour la seule
    connexion fautive, jamais propagée aux autres connexions.
    """

    code = "REALTIME_ERROR"
    status = 400
    default_message = "Erreur temps réel"

    def __init__(self, message: str | None = None, details: Any = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_payload(self, request_id: str) -> Dict[str, Any]:
        return error_payload(
            code=self.code,
            message=self.message,
            status=self.status,
            request_id=request_id,
            details=self.details,
        )


class Unauthenticated(RealtimeError):
    """Connexion sans identité valide (acceptée mais anonyme)."""

    code = "UNAUTHENTICATED"
    status = 401
    default_message = "Authentification requise"


class InvalidPayload(RealtimeError):
    """Event mal formé : la connexion reste ouverte."""

    code = "INVALID_PAYLOAD"
    status = 422
    default_message = "Payload invalide"


class PersistenceFailure(RealtimeError):
    """Le stockage a refusé l’écriture : aucun dispatch, aucun retry."""

    code = "PERSISTENCE_FAILURE"
    status = 503
    default_message = "Message non enregistré"


class RateLimited(RealtimeError):
    code = "RATE_LIMITED"
    status = 429
    default_message = "Trop de messages"
