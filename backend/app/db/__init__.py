"""
app.db

Package base de données : connexion, session et helpers d’accès DB.

Contenu typique :
- base : classe Declarative commune (Conversation, Message).
- session : engine async + factory de sessions ; dépendance FastAPI Depends(get_db).
- migrations : configuration Alembic (côté sync) via DATABASE_URL_SYNC.
"""
