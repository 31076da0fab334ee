"""
app.core

Package “cœur” transverse : ce qui s’applique aussi bien aux routes REST qu’au WebSocket.

- settings    : configuration (pydantic-settings, .env).
- errors      : format d’erreur uniforme + AppHTTPException (REST) + RealtimeError (chat).
- logging     : logs JSON, request_id injecté (id de requête HTTP ou id de connexion WS).
- request_id  : ContextVar de corrélation.
- security    : collaborateur d’identité (JWT, userId en dev) + dépendance require_user.
- rate_limit  : compteur en mémoire (HTTP par IP, WS par connexion).

Le temps réel lui-même (registre, fan-out) vit dans app.realtime.
"""
