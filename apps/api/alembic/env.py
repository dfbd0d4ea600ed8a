from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context
from app.core.config import settings

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Runtime access is raw asyncpg; migrations are hand-written op calls, so
# there is no metadata to autogenerate against.
target_metadata = None


def _sync_url(url: str) -> str:
    # Alembic runs on a sync engine; drop the async driver suffix
    return url.replace("+asyncpg", "")


config.set_main_option("sqlalchemy.url", _sync_url(settings.DATABASE_URL))


def run_migrations_offline() -> None:
    """Emit SQL for the sessions/messages/tags schema without a live database."""
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
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_server_default=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
