"""
ULID (Universally Unique Lexicographically Sortable Identifier) utilities.

Primary keys are prefixed ULIDs ("inv_01J..."): time-ordered, so B-tree
indexes on invoices and events stay append-friendly, and the prefix tells a
support engineer which table an id belongs to.
"""

from typing import Optional

from ulid import ULID


def generate_ulid() -> str:
  """
  Generate a time-ordered ULID.

  Returns:
      A string representation of a ULID (26 characters).
  """
  return str(ULID())


def generate_prefixed_ulid(prefix: str) -> str:
  """
  Generate a prefixed ULID for readability and type identification.

  Args:
      prefix: A short prefix to identify the record type

  Returns:
      A prefixed ULID string, e.g. "inv_01ARZ3NDEKTSV4RRFFQ69G5FAV"
  """
  return f"{prefix}_{ULID()}"


def parse_ulid(ulid_str: str) -> Optional[ULID]:
  """Parse a (possibly prefixed) ULID string, returning None when invalid."""
  try:
    if "_" in ulid_str:
      ulid_str = ulid_str.split("_", 1)[1]
    return ULID.from_str(ulid_str)
  except (ValueError, IndexError):
    return None
