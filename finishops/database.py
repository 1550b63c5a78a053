import asyncio
import threading
from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, scoped_session, sessionmaker

from finishops.config import env

APPLICATION_NAME = "finishops-service"


def get_database_url():
  """The billing database URL, forcing TLS outside local and test runs."""
  database_url = env.DATABASE_URL

  if (env.is_staging() or env.is_production()) and database_url:
    if "?" not in database_url:
      database_url += "?sslmode=require"
    elif "sslmode" not in database_url:
      database_url += "&sslmode=require"

  return database_url


def engine_options(database_url: str) -> Dict[str, Any]:
  """Keyword arguments for create_engine() suited to the URL's backend.

  SQLite (local tooling and tests) takes no pool sizing. Postgres
  connections are tagged with the service name so long-running invoice
  or webhook transactions can be traced in pg_stat_activity.
  """
  options: Dict[str, Any] = {"echo": env.DATABASE_ECHO}
  if database_url.startswith("sqlite"):
    options["connect_args"] = {"check_same_thread": False}
    return options

  options.update(
    pool_size=env.DATABASE_POOL_SIZE,
    max_overflow=env.DATABASE_MAX_OVERFLOW,
    pool_timeout=env.DATABASE_POOL_TIMEOUT,
    pool_recycle=env.DATABASE_POOL_RECYCLE,
    pool_pre_ping=True,
  )
  if database_url.startswith("postgres"):
    options["connect_args"] = {"application_name": APPLICATION_NAME}
  return options


def _session_scope():
  # One session per asyncio task for request handlers, per thread otherwise
  try:
    current_task = asyncio.current_task()
  except RuntimeError:
    current_task = None

  if current_task is not None:
    return current_task

  return threading.get_ident()


_database_url = get_database_url()
engine = create_engine(_database_url, **engine_options(_database_url))
SessionFactory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
session = scoped_session(SessionFactory, scopefunc=_session_scope)


class Base(DeclarativeBase):
  pass


def get_db_session():
  """FastAPI dependency yielding the scoped billing session for a request."""
  db = session()
  try:
    yield db
  finally:
    session.remove()
