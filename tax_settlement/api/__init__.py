"""HTTP surface."""

from tax_settlement.api.app import create_app
from tax_settlement.api.dto import normalize_keys

__all__ = ["create_app", "normalize_keys"]
