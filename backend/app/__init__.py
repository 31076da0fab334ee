"""
app

Package racine du backend Pulse (messagerie directe temps réel).

Organisation (haute-level) :
- app.api      : routes FastAPI (REST chat, présence, statut) + WebSocket /ws/chat
- app.core     : briques transverses (settings, errors, logs, identité, rate-limit, request_id)
- app.realtime : registre des connexions, présence, fan-out, gateway de sessions
- app.db       : base SQLAlchemy + session async
- app.models   : modèles ORM (conversations, messages)
- app.schemas  : schémas Pydantic (entrées/sorties)
- app.services : persistance des messages + requêtes de lecture
"""
