from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union

import jwt
from fastapi import Request

from app.core.errors import AppHTTPException
from app.core.settings import settings

"""
Core Security (identité).

Rôle (fonctionnel) :
- Collaborateur d’authentification du chat : résout des credentials de handshake
  en identité utilisateur (UserId), ou None si non authentifié.
- Sources supportées :
  - token JWT (HS256, claim `id` ou `sub`, `exp` obligatoire) : query, Bearer ou cookie `token`,
  - `userId` en clair, uniquement si ALLOW_INSECURE_USER_ID (dev) et ENV != prod.
- Fournit la dépendance FastAPI `require_user` pour les routes REST.

Notes :
- Les tokens sont émis par le service d’authentification (hors périmètre) avec le même secret.
- Un secret vide ne valide aucun token : toute connexion devient anonyme.
"""

UserId = Union[int, str]

log = logging.getLogger("app.security")


def normalize_user_id(value: Any) -> Optional[UserId]:
    """Normalise un identifiant : int conservé, chaîne numérique -> int, autre chaîne -> str."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        return int(value) if value.isdigit() else value
    return None


class IdentityResolver:
    """Résout des credentials (token / userId) en UserId."""

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        allow_insecure_user_id: bool = False,
    ) -> None:
        self.secret = secret
        self.algorithm = algorithm
        self.allow_insecure_user_id = allow_insecure_user_id

    def decode_token(self, token: str) -> Optional[UserId]:
        if not self.secret or not token:
            return None
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError:
            log.info("jwt_expired")
            return None
        except jwt.InvalidTokenError as exc:
            log.info("jwt_invalid: %s", exc)
            return None

        return normalize_user_id(claims.get("id", claims.get("sub")))

    def resolve(self, credentials: Mapping[str, Any]) -> Optional[UserId]:
        """Renvoie l’identité portée par les credentials, ou None (connexion anonyme)."""
        token = credentials.get("token")
        if isinstance(token, str) and token.strip():
            return self.decode_token(token.strip())

        if self.allow_insecure_user_id:
            return normalize_user_id(credentials.get("userId"))

        return None


def build_identity_resolver() -> IdentityResolver:
    """Construit le resolver depuis les settings (userId en clair jamais accepté en prod)."""
    is_prod = str(getattr(settings, "ENV", "dev")).lower() == "prod"
    if not settings.JWT_SECRET_KEY:
        log.warning("JWT_SECRET_KEY vide : aucun token ne sera accepté")
    return IdentityResolver(
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
        allow_insecure_user_id=bool(settings.ALLOW_INSECURE_USER_ID) and not is_prod,
    )


def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    """Extrait le token d’un header `Authorization: Bearer <token>`."""
    if authorization:
        parts = authorization.split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1].strip()
    return None


def credentials_from_headers_and_query(
    headers: Mapping[str, str],
    query: Mapping[str, str],
    cookies: Optional[Mapping[str, str]] = None,
) -> dict[str, Any]:
    """
    Rassemble les credentials d’un handshake (WS) ou d’une requête (HTTP).

    Priorité : query `token`, puis Authorization Bearer, puis cookie `token` (clients web
    authentifiés par cookie). `userId` (query) ou `X-User-Id` (header) sont transmis tels
    quels ; le resolver décide s’ils sont acceptés.
    """
    token = (
        query.get("token")
        or _extract_bearer(headers.get("authorization"))
        or (cookies or {}).get("token")
    )
    user_id = query.get("userId") or headers.get("x-user-id")
    return {"token": token, "userId": user_id}


async def require_user(request: Request) -> UserId:
    """
    Dépendance FastAPI : renvoie l’identité de l’appelant.

    Lève AppHTTPException(401) si aucune identité valide n’est fournie.
    """
    resolver: IdentityResolver = request.app.state.identity_resolver
    creds = credentials_from_headers_and_query(request.headers, request.query_params, request.cookies)
    user_id = resolver.resolve(creds)
    if user_id is None:
        raise AppHTTPException(401, "UNAUTHORIZED", "Token invalide ou manquant")
    return user_id
