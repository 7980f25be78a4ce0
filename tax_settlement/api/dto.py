"""Request models and casing normalisation for the HTTP boundary.

Clients send PascalCase or camelCase keys. ``normalize_keys`` turns them
into snake_case once, before the pydantic models validate them, so the
services never see transport casing.
"""

import re
from dataclasses import fields, is_dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from tax_settlement.models import PaymentStatus, as_naive_utc
from tax_settlement.sinks.serialization import serialize_value

_ACRONYM_BOUNDARY = re.compile(r"([A-Z]+)([A-Z][a-z])")
_WORD_BOUNDARY = re.compile(r"([a-z\d])([A-Z])")


def to_snake(key: str) -> str:
    """``PropertyId``, ``propertyId`` and ``propertyID`` all become ``property_id``."""
    key = _ACRONYM_BOUNDARY.sub(r"\1_\2", key)
    key = _WORD_BOUNDARY.sub(r"\1_\2", key)
    return key.replace("-", "_").lower()


def to_camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(word.capitalize() for word in rest)


def normalize_keys(data: Any) -> Any:
    """Recursively convert dict keys to snake_case."""
    if isinstance(data, dict):
        return {to_snake(k): normalize_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [normalize_keys(v) for v in data]
    return data


def to_response(value: Any) -> Any:
    """JSON-ready value with camelCase keys and decimals as numbers."""
    if isinstance(value, Decimal):
        return float(value)
    if is_dataclass(value) and not isinstance(value, type):
        return {to_camel(f.name): to_response(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {to_camel(k): to_response(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_response(v) for v in value]
    return serialize_value(value)


class RequestModel(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class InstallmentRequest(RequestModel):
    """Body of ``POST /paymentdetails``."""

    property_id: str
    amount: Any
    payment_method_id: str
    collected_by: str
    payment_id: str | None = None
    payment_date: datetime | None = None
    receipt_number: str | None = None
    notes: str | None = None

    @field_validator("payment_date")
    @classmethod
    def payment_date_as_utc(cls, value: datetime | None) -> datetime | None:
        # Stored timestamps are naive UTC; an offset in the request is honoured
        return as_naive_utc(value)


class PaymentUpdateRequest(RequestModel):
    """Body of ``PUT /payments/<id>``; every field is optional."""

    discount_amount: Any = None
    discount_reason: str | None = None
    is_exempt: bool | None = None
    exemption_reason: str | None = None
    status: PaymentStatus | None = None


class CommissionPolicyRequest(RequestModel):
    rate_percent: Decimal
    description: str | None = None


class RevenueSplitRequest(RequestModel):
    company_share_percent: Decimal
    municipality_share_percent: Decimal
    description: str | None = None
