"""CRM models package: the company, contact and partner records billing reads."""

from .company import Company, Contact, SalesRep
from .distributor import AssociationStatus, DistributorCustomer
from .quote import Quote, QuoteStatus

__all__ = [
  "AssociationStatus",
  "Company",
  "Contact",
  "DistributorCustomer",
  "Quote",
  "QuoteStatus",
  "SalesRep",
]
