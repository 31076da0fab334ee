from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

"""
Core Request ID (corrélation).

Rôle (fonctionnel) :
- Gère un identifiant de corrélation stocké dans un ContextVar.
- HTTP : un id par requête (header X-Request-Id ou UUID généré).
- WebSocket : un id par connexion (l’identifiant de connexion du registre),
  lié pendant toute la durée de la boucle de réception.

Notes :
- ContextVar est adapté aux contextes async : chaque tâche garde sa propre valeur.
- Utilisé par le logging (injection dans chaque ligne) et par les payloads d’erreur.
"""

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)


def set_request_id(rid: str | None) -> None:
    """Force la valeur du request_id pour le contexte courant."""
    _request_id.set(rid)


def get_request_id() -> str | None:
    """Retourne le request_id du contexte courant (ou None)."""
    return _request_id.get()


def ensure_request_id(incoming: str | None = None) -> str:
    """
    Garantit un request_id pour le contexte courant.

    - Si un id entrant est fourni, il est nettoyé et réutilisé.
    - Sinon, on génère un UUID.
    """
    rid = (incoming or "").strip() or str(uuid.uuid4())
    set_request_id(rid)
    return rid


@contextmanager
def bound_request_id(rid: str) -> Iterator[str]:
    """Lie `rid` au contexte courant le temps du bloc, puis restaure la valeur précédente."""
    token = _request_id.set(rid)
    try:
        yield rid
    finally:
        _request_id.reset(token)
