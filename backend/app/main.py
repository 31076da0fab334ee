from __future__ import annotations

import time
import uuid
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.router import api_router
from app.api.ws import router as ws_router
from app.core.settings import settings
from app.core.logging import setup_logging
from app.core.errors import AppHTTPException, RealtimeError, error_payload
from app.core.request_id import set_request_id, get_request_id, ensure_request_id
from app.core.rate_limit import rate_limiter
from app.core.security import IdentityResolver, build_identity_resolver
from app.realtime import create_hub

"""
Application FastAPI (entrypoint).

Rôle (fonctionnel) :
- Configure l’application (settings, CORS, middlewares, routers HTTP + WebSocket).
- Crée le hub temps réel (registre, présence, fan-out, gateway) et le ferme au shutdown.
- Centralise l’observabilité :
  - request_id propagé (X-Request-Id)
  - logs structurés JSON (timing, status, client_ip)
  - seuil de “slow request”
- Applique un rate-limit simple (optionnel) sur les endpoints du chat.
- Uniformise les erreurs côté client (format error_payload), y compris les RealtimeError
  levées par le pipeline d’envoi en REST.

Ce fichier ne contient pas de logique métier :
- Le temps réel est dans app.realtime
- La persistance est dans app.services
- Les routes sont dans app.api
"""


class UTF8JSONResponse(JSONResponse):
    """Réponse JSON avec charset UTF-8 explicite (cohérent sur tous les endpoints)."""
    media_type = "application/json; charset=utf-8"


LOG_LEVEL = getattr(settings, "LOG_LEVEL", "INFO")
setup_logging(LOG_LEVEL)

log = logging.getLogger("pulse")

# logger dédié observabilité HTTP (séparé du métier)
http_log = logging.getLogger("app.http")

SLOW_MS = int(getattr(settings, "SLOW_REQUEST_MS", 800))

RATE_LIMITED_PREFIXES = ("/conversations", "/messages")


def _split_origins(value: str) -> list[str]:
    """Parse une liste d’origines CORS depuis une string 'a,b,c'."""
    if not value:
        return []
    return [o.strip() for o in value.split(",") if o.strip()]


def _rid(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid.uuid4())


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("startup", extra={"event": "startup"})
    yield
    # Shutdown : ferme les WebSockets restantes (le registre n’est pas persisté)
    await app.state.realtime.shutdown()


def create_app(
    *,
    store: Optional[Any] = None,
    identity_resolver: Optional[IdentityResolver] = None,
) -> FastAPI:
    """
    Construit l’application.

    `store` et `identity_resolver` sont injectables (tests) ; par défaut :
    MessageStore SQLAlchemy + resolver JWT construit depuis les settings.
    """
    if store is None:
        from app.db.session import AsyncSessionLocal
        from app.services.message_store import SqlMessageStore

        store = SqlMessageStore(AsyncSessionLocal)

    resolver = identity_resolver or build_identity_resolver()

    app = FastAPI(
        title=getattr(settings, "APP_NAME", "Pulse API"),
        debug=getattr(settings, "DEBUG", False),
        default_response_class=UTF8JSONResponse,
        lifespan=lifespan,
    )

    # Hub temps réel propre à cette application (ws + REST via request.app.state.realtime)
    app.state.identity_resolver = resolver
    app.state.realtime = create_hub(
        store,
        resolver,
        presence_broadcast=bool(settings.PRESENCE_BROADCAST),
        rate_limiter=rate_limiter,
        send_rate_per_min=int(settings.WS_SEND_RATE_PER_MIN),
        max_content_length=int(settings.CHAT_MAX_CONTENT_LENGTH),
    )

    # --- CORS ---
    origins = _split_origins(getattr(settings, "CORS_ORIGINS", ""))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-Id", "X-User-Id"],
    )

    # --- Routers ---
    app.include_router(api_router)
    app.include_router(ws_router)

    _install_middlewares(app)
    _install_error_handlers(app)
    return app


def _install_middlewares(app: FastAPI) -> None:
    @app.middleware("http")
    async def request_observability(request: Request, call_next):
        # Prend le header s’il existe, sinon génère un UUID
        rid = ensure_request_id(request.headers.get("X-Request-Id"))
        request.state.request_id = rid

        start = time.perf_counter()
        response = None
        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = int((time.perf_counter() - start) * 1000)

            if response is not None:
                response.headers["X-Request-Id"] = rid

            level = logging.WARNING if duration_ms >= SLOW_MS else logging.INFO
            http_log.log(
                level,
                "request",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": getattr(response, "status_code", None),
                    "duration_ms": duration_ms,
                    "client_ip": request.client.host if request.client else None,
                },
            )

            set_request_id(None)

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        """Rate-limit (optionnel) sur les endpoints du chat ; jamais sur les préflights CORS."""
        if request.method == "OPTIONS" or not request.url.path.startswith(RATE_LIMITED_PREFIXES):
            return await call_next(request)

        try:
            rate_limiter.check(request)
        except AppHTTPException as exc:
            detail = exc.detail if isinstance(exc.detail, dict) else {}
            return UTF8JSONResponse(
                status_code=exc.status_code,
                content=error_payload(
                    code=str(detail.get("code", "RATE_LIMITED")),
                    message=str(detail.get("message", "Trop de requêtes")),
                    status=exc.status_code,
                    request_id=_rid(request),
                    details=detail.get("details", None),
                ),
            )

        return await call_next(request)


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppHTTPException)
    async def app_http_exception_handler(request: Request, exc: AppHTTPException):
        """Erreurs applicatives (AppHTTPException) -> payload standard."""
        detail = exc.detail if isinstance(exc.detail, dict) else {}
        return UTF8JSONResponse(
            status_code=exc.status_code,
            content=error_payload(
                code=str(detail.get("code", "HTTP_ERROR")),
                message=str(detail.get("message", "Erreur HTTP")),
                status=exc.status_code,
                request_id=_rid(request),
                details=detail.get("details", None),
            ),
        )

    @app.exception_handler(RealtimeError)
    async def realtime_error_handler(request: Request, exc: RealtimeError):
        """Erreurs du pipeline chat (validation, persistance…) levées depuis une route REST."""
        return UTF8JSONResponse(status_code=exc.status, content=exc.to_payload(_rid(request)))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Erreurs HTTP natives (404, 405, etc.) -> payload standard."""
        if isinstance(exc.detail, dict):
            code = str(exc.detail.get("code", "HTTP_ERROR"))
            message = str(exc.detail.get("message", "Erreur HTTP"))
            details = exc.detail.get("details", None)
        else:
            code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
            message = str(exc.detail)
            details = None

        return UTF8JSONResponse(
            status_code=exc.status_code,
            content=error_payload(code=code, message=message, status=exc.status_code, request_id=_rid(request), details=details),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Erreurs de validation Pydantic -> 422 + details."""
        return UTF8JSONResponse(
            status_code=422,
            content=error_payload(
                code="VALIDATION_ERROR",
                message="Requête invalide",
                status=422,
                request_id=_rid(request),
                details=jsonable_errors(exc),
            ),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        """Fallback : toute exception non gérée -> 500 + log serveur."""
        log.exception("Unhandled error: %s", exc)
        return UTF8JSONResponse(
            status_code=500,
            content=error_payload(
                code="INTERNAL_ERROR",
                message="Erreur interne du serveur",
                status=500,
                request_id=_rid(request),
            ),
        )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    # ctx peut contenir des exceptions (field_validator) non sérialisables
    return [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]


app = create_app()
