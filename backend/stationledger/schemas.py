# Overview: Typed, validated inputs for the multi-step write operations.

"""
Each write operation takes a frozen dataclass instead of a raw JSON dict.
`from_payload` runs column-metadata validation (types, lengths, allowlist)
before any write begins; arithmetic cross-checks (totals, settlement) live
in the services so direct Python callers get them too.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from .errors import ValidationError
from .models import (
    Payment,
    PurchaseOrder,
    PurchaseOrderItem,
    SalesTransaction,
    SalesTransactionItem,
    StockMovement,
)
from .validation import ModelValidationPolicy, enforce_amount_cents, validate_payload


SALE_HEADER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "invoice_number", "station_id", "customer_id", "transaction_date", "due_date",
        "payment_method", "currency_code", "subtotal_cents", "tax_cents", "total_cents",
        "paid_cents", "outstanding_cents", "notes",
    }),
    required_on_create=frozenset({"payment_method", "subtotal_cents", "total_cents"}),
)

SALE_ITEM_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"product_id", "tank_id", "quantity", "unit_price_cents", "total_price_cents"}),
    required_on_create=frozenset({"product_id", "quantity", "unit_price_cents"}),
)

MOVEMENT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"tank_id", "movement_type", "quantity", "reference_type", "reference_id", "notes"}),
    required_on_create=frozenset({"tank_id", "movement_type", "quantity"}),
)

PAYMENT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "station_id", "customer_id", "supplier_id", "amount_cents", "currency_code",
        "payment_method", "reference_number", "notes", "payment_date",
    }),
    required_on_create=frozenset({"amount_cents", "payment_method"}),
)

PURCHASE_ORDER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "order_number", "station_id", "supplier_id", "order_date", "due_date",
        "expected_delivery_date", "currency_code", "subtotal_cents", "tax_cents",
        "total_cents", "paid_cents", "outstanding_cents", "notes",
    }),
    required_on_create=frozenset({"supplier_id", "subtotal_cents", "total_cents"}),
)

PURCHASE_ITEM_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"product_id", "tank_id", "quantity", "unit_price_cents", "total_price_cents"}),
    required_on_create=frozenset({"product_id", "tank_id", "quantity", "unit_price_cents"}),
)

RECEIPT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"id", "received_quantity"}),
    required_on_create=frozenset({"id", "received_quantity"}),
)


def _items_payload(raw, label: str) -> list:
    if not isinstance(raw, list) or not raw:
        raise ValidationError(f"{label} must be a non-empty list")
    return raw


def _item_error(index: int, exc: ValidationError) -> ValidationError:
    details = dict(exc.details)
    details["item_index"] = index
    return ValidationError(f"Item {index}: {exc.message}", details=details)


@dataclass(frozen=True)
class SaleHeaderInput:
    payment_method: str
    subtotal_cents: int
    total_cents: int
    tax_cents: int = 0
    paid_cents: int | None = None
    outstanding_cents: int | None = None
    station_id: int | None = None
    customer_id: int | None = None
    invoice_number: str | None = None
    transaction_date: datetime | None = None
    due_date: datetime | None = None
    currency_code: str | None = None
    notes: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "SaleHeaderInput":
        patch = validate_payload(
            model=SalesTransaction, payload=payload, policy=SALE_HEADER_POLICY, partial=False,
        )
        enforce_amount_cents(patch, "subtotal_cents", "tax_cents", "total_cents", "paid_cents", "outstanding_cents")
        if patch.get("tax_cents") is None:
            patch["tax_cents"] = 0
        return cls(**patch)


@dataclass(frozen=True)
class SaleItemInput:
    product_id: int
    quantity: Decimal
    unit_price_cents: int
    total_price_cents: int | None = None
    tank_id: int | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "SaleItemInput":
        patch = validate_payload(
            model=SalesTransactionItem, payload=payload, policy=SALE_ITEM_POLICY, partial=False,
        )
        enforce_amount_cents(patch, "unit_price_cents", "total_price_cents")
        return cls(**patch)


def parse_sale_request(body) -> tuple[SaleHeaderInput, list[SaleItemInput]]:
    """Parse `{"transaction": {...}, "items": [...]}` from POST /api/sales."""
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON payload")
    header = SaleHeaderInput.from_payload(body.get("transaction"))
    items = []
    for index, raw in enumerate(_items_payload(body.get("items"), "items")):
        try:
            items.append(SaleItemInput.from_payload(raw))
        except ValidationError as exc:
            raise _item_error(index, exc) from exc
    return header, items


@dataclass(frozen=True)
class MovementInput:
    tank_id: int
    movement_type: str
    quantity: Decimal
    reference_type: str = "adjustment"
    reference_id: int | None = None
    notes: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "MovementInput":
        patch = validate_payload(
            model=StockMovement, payload=payload, policy=MOVEMENT_POLICY, partial=False,
        )
        if patch.get("reference_type") is None:
            patch.pop("reference_type", None)
        return cls(**patch)


@dataclass(frozen=True)
class PaymentInput:
    amount_cents: int
    payment_method: str
    customer_id: int | None = None
    supplier_id: int | None = None
    station_id: int | None = None
    currency_code: str | None = None
    reference_number: str | None = None
    notes: str | None = None
    payment_date: datetime | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "PaymentInput":
        patch = validate_payload(model=Payment, payload=payload, policy=PAYMENT_POLICY, partial=False)
        return cls(**patch)


@dataclass(frozen=True)
class PurchaseOrderInput:
    supplier_id: int
    subtotal_cents: int
    total_cents: int
    tax_cents: int = 0
    paid_cents: int | None = None
    outstanding_cents: int | None = None
    station_id: int | None = None
    order_number: str | None = None
    order_date: datetime | None = None
    due_date: datetime | None = None
    expected_delivery_date: datetime | None = None
    currency_code: str | None = None
    notes: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "PurchaseOrderInput":
        patch = validate_payload(
            model=PurchaseOrder, payload=payload, policy=PURCHASE_ORDER_POLICY, partial=False,
        )
        enforce_amount_cents(patch, "subtotal_cents", "tax_cents", "total_cents", "paid_cents", "outstanding_cents")
        if patch.get("tax_cents") is None:
            patch["tax_cents"] = 0
        return cls(**patch)


@dataclass(frozen=True)
class PurchaseOrderItemInput:
    product_id: int
    tank_id: int
    quantity: Decimal
    unit_price_cents: int
    total_price_cents: int | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "PurchaseOrderItemInput":
        patch = validate_payload(
            model=PurchaseOrderItem, payload=payload, policy=PURCHASE_ITEM_POLICY, partial=False,
        )
        enforce_amount_cents(patch, "unit_price_cents", "total_price_cents")
        return cls(**patch)


def parse_purchase_order_request(body) -> tuple[PurchaseOrderInput, list[PurchaseOrderItemInput], bool]:
    """Parse `{"order": {...}, "items": [...], "receive": bool}` from POST /api/purchase-orders."""
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON payload")
    header = PurchaseOrderInput.from_payload(body.get("order"))
    items = []
    for index, raw in enumerate(_items_payload(body.get("items"), "items")):
        try:
            items.append(PurchaseOrderItemInput.from_payload(raw))
        except ValidationError as exc:
            raise _item_error(index, exc) from exc
    receive = body.get("receive", False)
    if not isinstance(receive, bool):
        raise ValidationError("receive must be a boolean")
    return header, items, receive


@dataclass(frozen=True)
class ReceiptInput:
    item_id: int
    quantity: Decimal


def parse_receipts(body) -> list[ReceiptInput] | None:
    """
    Parse `{"items": [{"id": ..., "received_quantity": ...}]}`.

    A missing or empty body means "receive everything still outstanding".
    """
    if not body:
        return None
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON payload")
    raw_items = body.get("items")
    if raw_items is None:
        return None
    receipts = []
    for index, raw in enumerate(_items_payload(raw_items, "items")):
        try:
            patch = validate_payload(
                model=PurchaseOrderItem, payload=raw, policy=RECEIPT_POLICY, partial=False,
            )
        except ValidationError as exc:
            raise _item_error(index, exc) from exc
        receipts.append(ReceiptInput(item_id=patch["id"], quantity=patch["received_quantity"]))
    return receipts
