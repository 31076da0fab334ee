"""
app.services

Package “services” : logique applicative indépendante du transport (HTTP / WebSocket).

Rôle (fonctionnel) :
- message_store : collaborateur de persistance du chat (écriture d’un message,
  création de conversation à la volée).
- conversation_service : requêtes de lecture (liste des conversations, historique).

Principe :
- app.api = transport HTTP / WS (routes, validation, dépendances)
- app.realtime = registre des connexions + fan-out
- app.services = orchestration DB (réutilisable, testable)
"""
