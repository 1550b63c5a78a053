"""Alembic environment for the billing schema."""

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context

# Registers invoices, orders, subscriptions and the CRM tables on Base.metadata
import finishops.models  # noqa: F401
from finishops.database import Base, get_database_url

# Invoice and webhook writes keep running during a deploy; a migration that
# cannot take its lock quickly fails instead of queueing them behind it.
POSTGRES_LOCK_TIMEOUT = "5s"

config = context.config

if config.config_file_name is not None:
  fileConfig(config.config_file_name)

database_url = get_database_url()
if database_url:
  config.set_main_option("sqlalchemy.url", database_url)

target_metadata = Base.metadata


def _configure_options(url: str) -> dict:
  # SQLite cannot ALTER most columns in place
  return {
    "target_metadata": target_metadata,
    "compare_type": True,
    "render_as_batch": url.startswith("sqlite"),
  }


def run_migrations_offline() -> None:
  """Render the migration SQL for review without a database connection."""
  url = config.get_main_option("sqlalchemy.url")
  context.configure(
    url=url,
    literal_binds=True,
    dialect_opts={"paramstyle": "named"},
    **_configure_options(url),
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
    if connection.dialect.name == "postgresql":
      connection.exec_driver_sql(f"SET lock_timeout = '{POSTGRES_LOCK_TIMEOUT}'")
    context.configure(
      connection=connection,
      **_configure_options(str(connection.engine.url)),
    )

    with context.begin_transaction():
      context.run_migrations()


if context.is_offline_mode():
  run_migrations_offline()
else:
  run_migrations_online()
