import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("NOTIFICATIONS_BACKEND", "log")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")

from decimal import Decimal  # noqa: E402
from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import finishops.models  # noqa: E402,F401
from finishops.database import Base, get_db_session  # noqa: E402
from finishops.models.crm import (  # noqa: E402
  Company,
  Contact,
  DistributorCustomer,
  SalesRep,
)
from finishops.models.catalog import Product  # noqa: E402
from finishops.operations.billing.notifications import NotificationSink, PortalCache  # noqa: E402
from finishops.operations.pricing import LadderCache, StaticLadderSource  # noqa: E402
from finishops.routers.dependencies import get_notifier, get_portal_cache  # noqa: E402
from main import create_app  # noqa: E402


@pytest.fixture
def db_engine():
  """In-memory SQLite with working SAVEPOINTs.

  pysqlite's own transaction handling breaks begin_nested(); the documented
  SQLAlchemy recipe hands BEGIN back to the engine.
  """
  engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
  )

  @event.listens_for(engine, "connect")
  def do_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None

  @event.listens_for(engine, "begin")
  def do_begin(conn):
    conn.exec_driver_sql("BEGIN")

  Base.metadata.create_all(engine)
  yield engine
  engine.dispose()


@pytest.fixture
def db_session(db_engine):
  TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
  session = TestingSessionLocal()
  yield session
  session.close()


@pytest.fixture
def ladder_cache():
  """Static ladders with max 15 standard / 10 premium units per SKU."""
  return LadderCache(StaticLadderSource(max_qty_standard=15, max_qty_premium=10))


@pytest.fixture
def notifier():
  sink = Mock(spec=NotificationSink)
  for name in (
    "send_order_confirmation",
    "send_trial_confirmation",
    "notify_sales_rep_invoice_paid",
    "send_invoice_email",
    "alert_operators",
  ):
    getattr(sink, name).return_value = True
  return sink


@pytest.fixture
def crm(db_session):
  """A customer with a contact, an owning sales rep and a distributor."""
  rep = SalesRep(full_name="Sam Rep", email="sam@finishops.co.uk")
  db_session.add(rep)
  db_session.flush()

  customer = Company(company_name="Acme Cartons", account_owner=rep.id, country="GB")
  distributor = Company(company_name="North Print Supplies", company_type="distributor")
  db_session.add_all([customer, distributor])
  db_session.flush()

  contact = Contact(
    company_id=customer.id, full_name="Alex Buyer", email="alex@acme.example"
  )
  association = DistributorCustomer(
    distributor_id=distributor.id,
    customer_id=customer.id,
    tool_commission_rate=Decimal("20.00"),
    consumable_commission_rate=Decimal("10.00"),
  )
  db_session.add_all(
    [
      contact,
      association,
      Product(product_code="CK-001", description="Cutting Knife", type="tool"),
      Product(product_code="SPACER-01", description="Spacer", type="consumable"),
    ]
  )
  db_session.commit()
  return {
    "rep": rep,
    "customer": customer,
    "distributor": distributor,
    "contact": contact,
    "association": association,
  }


@pytest.fixture
def app(db_session, notifier, ladder_cache):
  """App wired to the test session, a mock notifier and static ladders."""
  application = create_app(ladder_cache)
  application.dependency_overrides[get_db_session] = lambda: db_session
  application.dependency_overrides[get_notifier] = lambda: notifier
  application.dependency_overrides[get_portal_cache] = lambda: Mock(spec=PortalCache)
  yield application
  application.dependency_overrides = {}


@pytest.fixture
def client(app):
  with TestClient(app) as test_client:
    yield test_client
