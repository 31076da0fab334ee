from __future__ import annotations

from fastapi import Depends

from app.core.security import require_user

"""
Dépendances API.

Rôle (fonctionnel) :
- Centralise les dépendances réutilisables sur les routes.
- Ici : identité de l’appelant (JWT Bearer, ou X-User-Id en dev).
"""

# Dépendance prête à l’emploi pour protéger un endpoint sans lire l’identité
AuthDep = Depends(require_user)
