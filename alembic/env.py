from logging.config import fileConfig

from sqlalchemy import create_engine, pool

from alembic import context

from app.db.base import Base, DATABASE_URL
from app.auth.models import User  # noqa: F401
from app.db.kv_store import KVEntry  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# SQLite cannot ALTER most columns in place; batch mode recreates the table
AS_BATCH = DATABASE_URL.startswith("sqlite")


def run_migrations_offline() -> None:
    context.configure(
        url=DATABASE_URL,
        target_metadata=Base.metadata,
        literal_binds=True,
        render_as_batch=AS_BATCH,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    # DATABASE_URL is already normalized (postgres:// -> postgresql+psycopg2://)
    engine = create_engine(DATABASE_URL, poolclass=pool.NullPool)
    print(f"[MIGRATE] running migrations on {engine.url.render_as_string(hide_password=True)}", flush=True)
    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=Base.metadata,
            render_as_batch=AS_BATCH,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
