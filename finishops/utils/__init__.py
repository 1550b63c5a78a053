from .money import from_minor_units, quantize_money, to_minor_units
from .ulid import generate_prefixed_ulid, generate_ulid, parse_ulid

__all__ = [
  "from_minor_units",
  "generate_prefixed_ulid",
  "generate_ulid",
  "parse_ulid",
  "quantize_money",
  "to_minor_units",
]
