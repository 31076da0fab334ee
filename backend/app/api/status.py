from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db

"""
API System Status.

Rôle (fonctionnel) :
- Vérifie la disponibilité de la base (requête simple).
- Expose l’occupation du registre temps réel (connexions / utilisateurs en ligne).
"""

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/status")
async def system_status(request: Request, db: AsyncSession = Depends(get_db)):
    # 1) DB check (requête minimale)
    db_ok = True
    try:
        await db.execute(text("SELECT 1"))
    except Exception:
        db_ok = False

    # 2) Realtime (registre local au process)
    hub = getattr(request.app.state, "realtime", None)
    realtime = {
        "ok": hub is not None,
        "connections": hub.registry.connection_count() if hub else 0,
        "online_users": hub.registry.user_count() if hub else 0,
    }

    return {
        "ok": bool(db_ok and realtime["ok"]),
        "db": {"ok": db_ok},
        "realtime": realtime,
        "ts": datetime.now(timezone.utc).isoformat(),
    }
