from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

from app.core.settings import settings
from app.db.base import Base

# Import des modèles : Alembic ne voit que les tables enregistrées dans Base.metadata
from app.models import Conversation, Message  # noqa: F401

"""
Alembic env.

Rôle (fonctionnel) :
- Exécute les migrations en mode sync via DATABASE_URL_SYNC (psycopg),
  l’application utilisant l’URL async (asyncpg) au runtime.
- Expose Base.metadata pour --autogenerate.
"""

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# Source unique de configuration : les settings, pas alembic.ini
config.set_main_option("sqlalchemy.url", settings.DATABASE_URL_SYNC)


def run_migrations_offline() -> None:
    """Génère le SQL sans connexion (revue avant application)."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
