"""
app.schemas

Package des schémas API (Pydantic).

Rôle (fonctionnel) :
- Contrat d’entrée du chat (SendMessageIn), partagé par la frame WS `sendMessage` et POST /messages.
- Modèles de sortie REST (conversations, messages, présence).
- Distincts des modèles ORM (app.models) et des frames temps réel (app.realtime.events).
"""
