# Overview: JSON (de)serialization of checkout session state.

"""
Session state <-> JSON-safe dict.

The same shape is stored in checkout_sessions.state_json and returned by the
API: snake_case keys, decimals as strings ("1180.00", rates as "9"), enums as
their tag, datetimes as ISO-8601 with a trailing Z.
"""

from __future__ import annotations

from dataclasses import fields, is_dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from ..time_utils import parse_iso_datetime, to_utc_z
from .types import (
    AppliedDiscount,
    AppliedTo,
    CalculationType,
    CardType,
    CheckoutTotals,
    CustomerSnapshot,
    DiscountType,
    ItemType,
    LineItem,
    PaymentEntry,
    PaymentMethod,
    SessionState,
    SessionStatus,
)

_ENUMS = {
    "ItemType": ItemType,
    "DiscountType": DiscountType,
    "CalculationType": CalculationType,
    "AppliedTo": AppliedTo,
    "PaymentMethod": PaymentMethod,
    "CardType": CardType,
    "SessionStatus": SessionStatus,
}


def to_plain(value):
    """Recursively convert engine values into JSON-safe primitives."""
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return to_utc_z(value)
    if is_dataclass(value):
        return {f.name: to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def state_to_dict(state: SessionState) -> dict:
    return to_plain(state)


def _decode_value(annotation: str, value):
    if value is None:
        return None
    base = annotation.split("|")[0].strip()
    if base == "Decimal":
        return Decimal(value)
    if base in _ENUMS:
        return _ENUMS[base](value)
    if base == "datetime":
        return parse_iso_datetime(value)
    if base.startswith("tuple["):
        return tuple(value)
    return value


def _decode(cls, data: dict):
    kwargs = {}
    for f in fields(cls):
        if f.name in data:
            kwargs[f.name] = _decode_value(f.type, data[f.name])
    return cls(**kwargs)


def state_from_dict(data: dict) -> SessionState:
    nested = {"customer", "line_items", "applied_discounts", "payments", "totals"}
    kwargs = {}
    for f in fields(SessionState):
        if f.name in nested or f.name not in data:
            continue
        kwargs[f.name] = _decode_value(f.type, data[f.name])

    customer = data.get("customer")
    return SessionState(
        customer=_decode(CustomerSnapshot, customer) if customer else None,
        line_items=tuple(_decode(LineItem, i) for i in data.get("line_items", [])),
        applied_discounts=tuple(_decode(AppliedDiscount, d) for d in data.get("applied_discounts", [])),
        payments=tuple(_decode(PaymentEntry, p) for p in data.get("payments", [])),
        totals=_decode(CheckoutTotals, data.get("totals") or {}),
        **kwargs,
    )
