"""
Request types for the ledger operations.

Each transaction kind has its own frozen request dataclass, built from a raw
JSON payload by from_payload(). Parsing rejects malformed input with
ValidationError before anything touches the database, so the services only
ever see well-typed values: whole-number point amounts, spends already
converted to integer cents, de-duplicated promotion ids.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from .errors import ValidationError
from .models.transactions import (
    KIND_PURCHASE,
    KIND_ADJUSTMENT,
    KIND_REDEMPTION,
    KIND_TRANSFER,
    KIND_EVENT,
)


# Maximum spend on one purchase: $999,999.99
MAX_SPENT_CENTS = 99_999_999

# Keeps point amounts well inside a 32-bit integer column
MAX_POINTS = 1_000_000_000

MAX_REMARK_LENGTH = 1000


def _require_type(payload: dict, expected: str) -> None:
    if payload.get("type") != expected:
        raise ValidationError(f'Transaction type must be "{expected}"')


def _require_dict(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def coerce_whole_number(value: Any, field: str) -> int:
    """
    Strict integer coercion: rejects bools, decimals and scientific notation.
    """
    if value is None:
        raise ValidationError(f"{field} is required")
    # bool is a subclass of int
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a whole number")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{field} must be a whole number")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be a whole number")
        if "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a whole number")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be a whole number")
    raise ValidationError(f"{field} must be a whole number")


def coerce_positive_points(value: Any, field: str = "amount") -> int:
    amount = coerce_whole_number(value, field)
    if amount <= 0:
        raise ValidationError(f"{field} must be a positive number")
    if amount > MAX_POINTS:
        raise ValidationError(f"{field} cannot exceed {MAX_POINTS}")
    return amount


def coerce_spent_cents(value: Any, field: str = "spent") -> int:
    """Dollar amount (number or numeric string) -> integer cents, half-up."""
    if value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a positive number")
    try:
        dollars = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a positive number")
    if not dollars.is_finite():
        raise ValidationError(f"{field} must be a positive number")

    cents = int((dollars * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents <= 0:
        raise ValidationError(f"{field} must be a positive number")
    if cents > MAX_SPENT_CENTS:
        raise ValidationError(f"{field} cannot exceed ${MAX_SPENT_CENTS / 100:,.2f}")
    return cents


def coerce_handle(value: Any, field: str = "utorid") -> str:
    if value is None or not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


def coerce_remark(value: Any) -> str:
    if value is None:
        return ""
    remark = str(value).strip()
    if len(remark) > MAX_REMARK_LENGTH:
        raise ValidationError(f"remark exceeds max length {MAX_REMARK_LENGTH}")
    return remark


def coerce_query_flag(value: Any, field: str) -> bool | None:
    """Parse an optional "true"/"false" query-string flag."""
    if value is None or value == "":
        return None
    lowered = str(value).strip().lower()
    if lowered not in ("true", "false"):
        raise ValidationError(f"{field} must be true or false")
    return lowered == "true"


def coerce_promotion_ids(value: Any) -> tuple[int, ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        raise ValidationError("promotionIds must be a list")
    ids: list[int] = []
    for raw in value:
        promotion_id = coerce_whole_number(raw, "promotionIds")
        if promotion_id <= 0:
            raise ValidationError("promotionIds must contain positive ids")
        if promotion_id not in ids:
            ids.append(promotion_id)
    return tuple(ids)


@dataclass(frozen=True)
class PurchaseRequest:
    utorid: str
    spent_cents: int
    promotion_ids: tuple[int, ...] = ()
    remark: str = ""

    kind = KIND_PURCHASE

    @classmethod
    def from_payload(cls, payload: Any) -> "PurchaseRequest":
        payload = _require_dict(payload)
        _require_type(payload, cls.kind)
        return cls(
            utorid=coerce_handle(payload.get("utorid")),
            spent_cents=coerce_spent_cents(payload.get("spent")),
            promotion_ids=coerce_promotion_ids(payload.get("promotionIds")),
            remark=coerce_remark(payload.get("remark")),
        )


@dataclass(frozen=True)
class AdjustmentRequest:
    utorid: str
    amount: int
    related_id: int
    promotion_ids: tuple[int, ...] = ()
    remark: str = ""

    kind = KIND_ADJUSTMENT

    @classmethod
    def from_payload(cls, payload: Any) -> "AdjustmentRequest":
        payload = _require_dict(payload)
        _require_type(payload, cls.kind)

        amount = coerce_whole_number(payload.get("amount"), "amount")
        if amount == 0:
            raise ValidationError("amount must be non-zero")
        if abs(amount) > MAX_POINTS:
            raise ValidationError(f"amount cannot exceed {MAX_POINTS}")

        if payload.get("relatedId") is None:
            raise ValidationError("Related transaction ID is required")
        related_id = coerce_whole_number(payload.get("relatedId"), "relatedId")
        if related_id <= 0:
            raise ValidationError("Invalid related transaction ID")

        return cls(
            utorid=coerce_handle(payload.get("utorid")),
            amount=amount,
            related_id=related_id,
            promotion_ids=coerce_promotion_ids(payload.get("promotionIds")),
            remark=coerce_remark(payload.get("remark")),
        )


@dataclass(frozen=True)
class RedemptionRequest:
    amount: int
    remark: str = ""

    kind = KIND_REDEMPTION

    @classmethod
    def from_payload(cls, payload: Any) -> "RedemptionRequest":
        payload = _require_dict(payload)
        _require_type(payload, cls.kind)
        return cls(
            amount=coerce_positive_points(payload.get("amount")),
            remark=coerce_remark(payload.get("remark")),
        )


@dataclass(frozen=True)
class TransferRequest:
    recipient_utorid: str
    amount: int
    remark: str = ""

    kind = KIND_TRANSFER

    @classmethod
    def from_payload(cls, payload: Any, recipient_utorid: Optional[str] = None) -> "TransferRequest":
        payload = _require_dict(payload)
        _require_type(payload, cls.kind)
        recipient = recipient_utorid if recipient_utorid is not None else payload.get("utorid")
        return cls(
            recipient_utorid=coerce_handle(recipient),
            amount=coerce_positive_points(payload.get("amount")),
            remark=coerce_remark(payload.get("remark")),
        )


@dataclass(frozen=True)
class EventAwardRequest:
    amount: int
    # None awards every guest of the event
    utorid: Optional[str] = None
    remark: str = ""

    kind = KIND_EVENT

    @property
    def awards_all_guests(self) -> bool:
        return self.utorid is None

    @classmethod
    def from_payload(cls, payload: Any) -> "EventAwardRequest":
        payload = _require_dict(payload)
        _require_type(payload, cls.kind)
        utorid = payload.get("utorid")
        return cls(
            amount=coerce_positive_points(payload.get("amount")),
            utorid=coerce_handle(utorid) if utorid is not None else None,
            remark=coerce_remark(payload.get("remark")),
        )


REQUEST_TYPES = {
    KIND_PURCHASE: PurchaseRequest,
    KIND_ADJUSTMENT: AdjustmentRequest,
    KIND_REDEMPTION: RedemptionRequest,
    KIND_TRANSFER: TransferRequest,
    KIND_EVENT: EventAwardRequest,
}


def parse_transaction_request(payload: Any, allowed: tuple[str, ...] | None = None):
    """Dispatch a payload to the request type named by its "type" field."""
    payload = _require_dict(payload)
    kind = payload.get("type")
    if kind not in REQUEST_TYPES or (allowed is not None and kind not in allowed):
        choices = allowed or tuple(REQUEST_TYPES)
        raise ValidationError(f"type must be one of: {', '.join(choices)}")
    return REQUEST_TYPES[kind].from_payload(payload)
