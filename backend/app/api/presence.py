from fastapi import APIRouter, Request

from app.api.deps import AuthDep
from app.core.errors import AppHTTPException
from app.core.security import normalize_user_id
from app.schemas.chat import PresenceOut

"""
API Presence.

Rôle (fonctionnel) :
- Expose le statut en ligne d’un utilisateur (dérivé du registre des connexions).
- Local au process : un user connecté sur une autre instance apparaît hors-ligne.
"""

router = APIRouter(prefix="/presence", tags=["presence"])


@router.get("/{user_id}", response_model=PresenceOut, dependencies=[AuthDep])
def get_presence(user_id: str, request: Request):
    uid = normalize_user_id(user_id)
    if uid is None:
        raise AppHTTPException(422, "VALIDATION_ERROR", "user_id invalide")

    hub = request.app.state.realtime
    conns = hub.registry.lookup(uid)
    return PresenceOut(user_id=uid, online=bool(conns), connections=len(conns))
