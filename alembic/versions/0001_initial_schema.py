"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated: bool = False) -> list:
  columns = [sa.Column("created_at", sa.DateTime(), nullable=False)]
  if updated:
    columns.append(sa.Column("updated_at", sa.DateTime(), nullable=False))
  return columns


def upgrade() -> None:
  # CRM
  op.create_table(
    "sales_reps",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("full_name", sa.String(), nullable=False),
    sa.Column("email", sa.String(), nullable=False, unique=True),
    sa.Column("active", sa.Boolean(), nullable=False),
    *_timestamps(),
  )
  op.create_table(
    "companies",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("company_name", sa.String(), nullable=False),
    sa.Column("company_type", sa.String(), nullable=False),
    sa.Column("account_owner", sa.String(), sa.ForeignKey("sales_reps.id"), nullable=True),
    sa.Column("country", sa.String(), nullable=True),
    sa.Column("billing_country", sa.String(), nullable=True),
    sa.Column("vat_number", sa.String(), nullable=True),
    sa.Column("stripe_customer_id", sa.String(), nullable=True, unique=True),
    *_timestamps(updated=True),
  )
  op.create_index("idx_company_account_owner", "companies", ["account_owner"])
  op.create_table(
    "contacts",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("company_id", sa.String(), sa.ForeignKey("companies.id"), nullable=False),
    sa.Column("full_name", sa.String(), nullable=True),
    sa.Column("email", sa.String(), nullable=True),
    *_timestamps(),
  )
  op.create_index("idx_contact_company", "contacts", ["company_id"])
  op.create_table(
    "distributor_customers",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("distributor_id", sa.String(), sa.ForeignKey("companies.id"), nullable=False),
    sa.Column("customer_id", sa.String(), sa.ForeignKey("companies.id"), nullable=False),
    sa.Column("tool_commission_rate", sa.Numeric(5, 2), nullable=True),
    sa.Column("consumable_commission_rate", sa.Numeric(5, 2), nullable=True),
    sa.Column("status", sa.String(), nullable=False),
    *_timestamps(),
  )
  op.create_index(
    "idx_distributor_customer_customer", "distributor_customers", ["customer_id"]
  )
  op.create_index(
    "idx_distributor_customer_distributor", "distributor_customers", ["distributor_id"]
  )

  # Catalogue and pricing
  op.create_table(
    "products",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("product_code", sa.String(), nullable=False, unique=True),
    sa.Column("description", sa.String(), nullable=False),
    sa.Column("type", sa.String(), nullable=False),
    sa.Column("category", sa.String(), nullable=True),
    sa.Column("pricing_tier", sa.String(), nullable=True),
    sa.Column("base_price_cents", sa.Integer(), nullable=False),
    sa.Column("active", sa.Boolean(), nullable=False),
    *_timestamps(updated=True),
  )
  op.create_table(
    "standard_pricing_tiers",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("min_quantity", sa.Integer(), nullable=False),
    sa.Column("max_quantity", sa.Integer(), nullable=True),
    sa.Column("unit_price_cents", sa.Integer(), nullable=False),
    sa.Column("active", sa.Boolean(), nullable=False),
    *_timestamps(),
  )
  op.create_table(
    "premium_pricing_tiers",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("min_quantity", sa.Integer(), nullable=False),
    sa.Column("max_quantity", sa.Integer(), nullable=True),
    sa.Column("discount_percent", sa.Numeric(5, 2), nullable=False),
    sa.Column("active", sa.Boolean(), nullable=False),
    *_timestamps(),
  )
  op.create_table(
    "pricing_rules",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("pricing_tier", sa.String(), nullable=False),
    sa.Column("rule_type", sa.String(), nullable=False),
    sa.Column("value", sa.Integer(), nullable=False),
    sa.Column("active", sa.Boolean(), nullable=False),
  )

  # Invoices
  op.create_table(
    "invoices",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("company_id", sa.String(), sa.ForeignKey("companies.id"), nullable=False),
    sa.Column("contact_id", sa.String(), sa.ForeignKey("contacts.id"), nullable=True),
    sa.Column("quote_id", sa.String(), nullable=True),
    sa.Column("invoice_number", sa.String(), nullable=True),
    sa.Column("invoice_type", sa.String(), nullable=False),
    sa.Column("currency", sa.String(), nullable=False),
    sa.Column("subtotal_cents", sa.Integer(), nullable=False),
    sa.Column("shipping_cents", sa.Integer(), nullable=False),
    sa.Column("tax_cents", sa.Integer(), nullable=False),
    sa.Column("total_cents", sa.Integer(), nullable=False),
    sa.Column("amount_refunded_cents", sa.Integer(), nullable=False),
    sa.Column("shipping_country", sa.String(), nullable=True),
    sa.Column("vat_exempt_reason", sa.String(), nullable=True),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("payment_status", sa.String(), nullable=False),
    sa.Column("stripe_invoice_id", sa.String(), nullable=True, unique=True),
    sa.Column("stripe_payment_intent_id", sa.String(), nullable=True, unique=True),
    sa.Column("stripe_checkout_session_id", sa.String(), nullable=True, unique=True),
    sa.Column("stripe_customer_id", sa.String(), nullable=True),
    sa.Column("stripe_subscription_id", sa.String(), nullable=True),
    sa.Column("invoice_url", sa.String(), nullable=True),
    sa.Column("invoice_pdf_url", sa.String(), nullable=True),
    sa.Column("sent_at", sa.DateTime(), nullable=True),
    sa.Column("paid_at", sa.DateTime(), nullable=True),
    sa.Column("voided_at", sa.DateTime(), nullable=True),
    sa.Column("notes", sa.String(), nullable=True),
    *_timestamps(updated=True),
  )
  op.create_index("idx_invoice_company", "invoices", ["company_id"])
  op.create_index("idx_invoice_status", "invoices", ["status"])
  op.create_index("idx_invoice_payment_status", "invoices", ["payment_status"])
  op.create_table(
    "invoice_items",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("invoice_id", sa.String(), sa.ForeignKey("invoices.id"), nullable=False),
    sa.Column("line_number", sa.Integer(), nullable=False),
    sa.Column("product_code", sa.String(), nullable=False),
    sa.Column("description", sa.String(), nullable=True),
    sa.Column("quantity", sa.Integer(), nullable=False),
    sa.Column("unit_price_cents", sa.Integer(), nullable=False),
    sa.Column("line_total_cents", sa.Integer(), nullable=False),
    sa.Column("discount_applied", sa.String(), nullable=True),
    *_timestamps(),
  )
  op.create_index("idx_invoice_item_invoice", "invoice_items", ["invoice_id"])
  op.create_table(
    "quotes",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("company_id", sa.String(), sa.ForeignKey("companies.id"), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("invoice_id", sa.String(), sa.ForeignKey("invoices.id"), nullable=True),
    sa.Column("won_at", sa.DateTime(), nullable=True),
    *_timestamps(),
  )

  # Legacy orders
  op.create_table(
    "orders",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("company_id", sa.String(), sa.ForeignKey("companies.id"), nullable=False),
    sa.Column("contact_id", sa.String(), sa.ForeignKey("contacts.id"), nullable=True),
    sa.Column("invoice_id", sa.String(), sa.ForeignKey("invoices.id"), nullable=True),
    sa.Column("stripe_checkout_session_id", sa.String(), nullable=True, unique=True),
    sa.Column("stripe_payment_intent_id", sa.String(), nullable=True),
    sa.Column("stripe_customer_id", sa.String(), nullable=True),
    sa.Column("offer_key", sa.String(), nullable=True),
    sa.Column("campaign_key", sa.String(), nullable=True),
    sa.Column("items", sa.JSON(), nullable=True),
    sa.Column("currency", sa.String(), nullable=False),
    sa.Column("subtotal_cents", sa.Integer(), nullable=False),
    sa.Column("tax_cents", sa.Integer(), nullable=False),
    sa.Column("total_cents", sa.Integer(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("payment_status", sa.String(), nullable=False),
    sa.Column("paid_at", sa.DateTime(), nullable=True),
    *_timestamps(updated=True),
  )
  op.create_index("idx_order_company", "orders", ["company_id"])
  op.create_index("idx_order_payment_intent", "orders", ["stripe_payment_intent_id"])
  op.create_table(
    "order_items",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("order_id", sa.String(), sa.ForeignKey("orders.id"), nullable=False),
    sa.Column("product_code", sa.String(), nullable=False),
    sa.Column("description", sa.String(), nullable=True),
    sa.Column("quantity", sa.Integer(), nullable=False),
    sa.Column("unit_price_cents", sa.Integer(), nullable=False),
    sa.Column("total_price_cents", sa.Integer(), nullable=False),
  )
  op.create_index("idx_order_item_order", "order_items", ["order_id"])

  # Subscriptions
  op.create_table(
    "subscriptions",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("company_id", sa.String(), sa.ForeignKey("companies.id"), nullable=False),
    sa.Column("contact_id", sa.String(), sa.ForeignKey("contacts.id"), nullable=True),
    sa.Column("stripe_subscription_id", sa.String(), nullable=False, unique=True),
    sa.Column("stripe_customer_id", sa.String(), nullable=True),
    sa.Column("machine_slug", sa.String(), nullable=True),
    sa.Column("machine_name", sa.String(), nullable=True),
    sa.Column("monthly_price_cents", sa.Integer(), nullable=False),
    sa.Column("ratchet_max_cents", sa.Integer(), nullable=False),
    sa.Column("currency", sa.String(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("current_period_start", sa.DateTime(), nullable=True),
    sa.Column("current_period_end", sa.DateTime(), nullable=True),
    sa.Column("trial_end_date", sa.DateTime(), nullable=True),
    sa.Column("cancelled_at", sa.DateTime(), nullable=True),
    *_timestamps(updated=True),
  )
  op.create_index("idx_subscription_company", "subscriptions", ["company_id"])
  op.create_index("idx_subscription_status", "subscriptions", ["status"])
  op.create_table(
    "subscription_events",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column(
      "subscription_id", sa.String(), sa.ForeignKey("subscriptions.id"), nullable=False
    ),
    sa.Column("event_type", sa.String(), nullable=False),
    sa.Column("old_status", sa.String(), nullable=True),
    sa.Column("new_status", sa.String(), nullable=True),
    sa.Column("old_price_cents", sa.Integer(), nullable=True),
    sa.Column("new_price_cents", sa.Integer(), nullable=True),
    sa.Column("ratchet_max_cents", sa.Integer(), nullable=True),
    sa.Column("source_event_id", sa.String(), nullable=True),
    sa.Column("notes", sa.String(), nullable=True),
    *_timestamps(),
    sa.UniqueConstraint(
      "subscription_id",
      "event_type",
      "source_event_id",
      name="uq_subscription_event_source",
    ),
  )
  op.create_index(
    "idx_subscription_event_subscription", "subscription_events", ["subscription_id"]
  )

  # Commissions, analytics, outbox, audit
  op.create_table(
    "commission_records",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column(
      "invoice_id", sa.String(), sa.ForeignKey("invoices.id"), nullable=False, unique=True
    ),
    sa.Column("distributor_id", sa.String(), sa.ForeignKey("companies.id"), nullable=False),
    sa.Column("customer_id", sa.String(), sa.ForeignKey("companies.id"), nullable=False),
    sa.Column("sales_rep_id", sa.String(), sa.ForeignKey("sales_reps.id"), nullable=True),
    sa.Column("invoice_total_cents", sa.Integer(), nullable=False),
    sa.Column("partner_commission_cents", sa.Integer(), nullable=False),
    sa.Column("sales_rep_commission_cents", sa.Integer(), nullable=False),
    sa.Column("partner_payment_status", sa.String(), nullable=False),
    sa.Column("sales_rep_payment_status", sa.String(), nullable=False),
    sa.Column("calculation", sa.JSON(), nullable=True),
    *_timestamps(),
  )
  op.create_index("idx_commission_distributor", "commission_records", ["distributor_id"])
  op.create_index("idx_commission_sales_rep", "commission_records", ["sales_rep_id"])
  op.create_table(
    "engagement_events",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("company_id", sa.String(), sa.ForeignKey("companies.id"), nullable=False),
    sa.Column("contact_id", sa.String(), nullable=True),
    sa.Column("source", sa.String(), nullable=False),
    sa.Column("source_event_id", sa.String(), nullable=False),
    sa.Column("event_name", sa.String(), nullable=False),
    sa.Column("offer_key", sa.String(), nullable=True),
    sa.Column("campaign_key", sa.String(), nullable=True),
    sa.Column("value", sa.Numeric(12, 2), nullable=True),
    sa.Column("currency", sa.String(), nullable=True),
    sa.Column("meta", sa.JSON(), nullable=True),
    *_timestamps(),
    sa.UniqueConstraint(
      "source", "source_event_id", "event_name", name="uq_engagement_event_source"
    ),
  )
  op.create_index("idx_engagement_company", "engagement_events", ["company_id"])
  op.create_table(
    "outbox_jobs",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("job_type", sa.String(), nullable=False),
    sa.Column("payload", sa.JSON(), nullable=False),
    sa.Column("company_id", sa.String(), nullable=True),
    sa.Column("order_id", sa.String(), nullable=True),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("attempts", sa.Integer(), nullable=False),
    *_timestamps(),
  )
  op.create_index("idx_outbox_status", "outbox_jobs", ["status"])
  op.create_table(
    "billing_audit_logs",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("event_type", sa.String(), nullable=False),
    sa.Column("event_timestamp", sa.DateTime(), nullable=False),
    sa.Column("company_id", sa.String(), nullable=True),
    sa.Column("subscription_id", sa.String(), nullable=True),
    sa.Column("invoice_id", sa.String(), nullable=True),
    sa.Column("provider", sa.String(), nullable=True),
    sa.Column("provider_event_id", sa.String(), nullable=True),
    sa.Column("event_data", sa.JSON(), nullable=True),
    sa.Column("description", sa.String(), nullable=False),
    sa.Column("actor_type", sa.String(), nullable=False),
    *_timestamps(),
    sa.UniqueConstraint(
      "provider", "provider_event_id", name="uq_billing_audit_provider_event"
    ),
  )
  op.create_index("idx_billing_audit_company", "billing_audit_logs", ["company_id"])
  op.create_index("idx_billing_audit_invoice", "billing_audit_logs", ["invoice_id"])
  op.create_index("idx_billing_audit_event_type", "billing_audit_logs", ["event_type"])


def downgrade() -> None:
  for table in (
    "billing_audit_logs",
    "outbox_jobs",
    "engagement_events",
    "commission_records",
    "subscription_events",
    "subscriptions",
    "order_items",
    "orders",
    "quotes",
    "invoice_items",
    "invoices",
    "pricing_rules",
    "premium_pricing_tiers",
    "standard_pricing_tiers",
    "products",
    "distributor_customers",
    "contacts",
    "companies",
    "sales_reps",
  ):
    op.drop_table(table)
