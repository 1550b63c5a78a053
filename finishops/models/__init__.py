# Importing the packages registers every table on Base.metadata

from .billing import (
  BillingAuditLog,
  CommissionRecord,
  EngagementEvent,
  Invoice,
  InvoiceLineItem,
  Order,
  OrderItem,
  OutboxJob,
  Subscription,
  SubscriptionEvent,
)
from .catalog import PremiumPricingTier, PricingRule, Product, StandardPricingTier
from .crm import Company, Contact, DistributorCustomer, Quote, SalesRep

__all__ = [
  "BillingAuditLog",
  "CommissionRecord",
  "Company",
  "Contact",
  "DistributorCustomer",
  "EngagementEvent",
  "Invoice",
  "InvoiceLineItem",
  "Order",
  "OrderItem",
  "OutboxJob",
  "PremiumPricingTier",
  "PricingRule",
  "Product",
  "Quote",
  "SalesRep",
  "StandardPricingTier",
  "Subscription",
  "SubscriptionEvent",
]
