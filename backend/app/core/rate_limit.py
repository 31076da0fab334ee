from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Hashable, Optional

from fastapi import Request

from app.core.errors import AppHTTPException, RateLimited
from app.core.settings import settings

"""
Core Rate Limit.

Rôle (fonctionnel) :
- Protège l’API et le chat contre les rafales (anti-spam) avec un compteur à fenêtre fixe de 60s.
- HTTP : clé (IP, "METHOD /path"), limite RATE_LIMIT_RPM, activé par RATE_LIMIT_ENABLED.
- WebSocket : clé (“ws”, connection_id), limite WS_SEND_RATE_PER_MIN (0 = désactivé).
- Conçu pour un process unique : en multi-instance, une implémentation partagée (ex : Redis) est requise.
"""


@dataclass
class _Bucket:
    """État minimal d’un compteur sur une fenêtre fixe."""
    window_start: float
    count: int


class InMemoryRateLimiter:
    """
    Rate limiter en mémoire (best-effort).

    Principe :
    - Stocke un compteur par clé sur une fenêtre de `window` secondes.
    - Réinitialise le compteur à chaque nouvelle fenêtre.
    - hit() renvoie False si la limite est dépassée ; check()/check_connection() lèvent l’erreur adaptée.
    """

    def __init__(self, window: float = 60.0) -> None:
        # Lock pour garantir la cohérence en cas de concurrence (threads / workers)
        self._lock = Lock()
        self._window = window
        self._buckets: Dict[Hashable, _Bucket] = {}

    def hit(self, key: Hashable, limit: int, now: Optional[float] = None) -> bool:
        """Compte un appel pour `key`. True si l’appel reste dans la limite."""
        if limit <= 0:
            return True

        now = time.time() if now is None else now

        with self._lock:
            bucket = self._buckets.get(key)

            # Nouvelle fenêtre : on réinitialise
            if bucket is None or (now - bucket.window_start) >= self._window:
                self._buckets[key] = _Bucket(window_start=now, count=1)
                return True

            bucket.count += 1
            return bucket.count <= limit

    def forget(self, key: Hashable) -> None:
        """Supprime le compteur d’une clé (ex : connexion fermée)."""
        with self._lock:
            self._buckets.pop(key, None)

    def _client_ip(self, request: Request) -> str:
        """Récupère l’IP client (à adapter si reverse proxy : X-Forwarded-For)."""
        return request.client.host if request.client else "unknown"

    def check(self, request: Request) -> None:
        """Vérifie la limite HTTP pour (IP + route). Lève 429 si dépassement."""
        if not getattr(settings, "RATE_LIMIT_ENABLED", False):
            return

        limit = int(getattr(settings, "RATE_LIMIT_RPM", 120) or 120)
        key = (self._client_ip(request), f"{request.method} {request.url.path}")

        if not self.hit(key, limit):
            raise AppHTTPException(
                429,
                "RATE_LIMITED",
                f"Trop de requêtes (limite: {limit}/min).",
                details={"limit_rpm": limit},
            )

    def check_connection(self, connection_id: str, limit: int) -> None:
        """Vérifie la limite d’envoi d’une connexion WS. Lève RateLimited si dépassement."""
        if not self.hit(("ws", connection_id), limit):
            raise RateLimited(
                f"Trop de messages (limite: {limit}/min).",
                details={"limit_per_min": limit},
            )


# Instance globale importable (utilisée dans le middleware HTTP)
rate_limiter = InMemoryRateLimiter()
