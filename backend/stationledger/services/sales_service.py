# Overview: Service-layer operations for sales; atomic sale creation and deletion.

"""
Sales Service: atomic point-of-sale transactions

WHY: A sale touches three ledgers at once (the sale document, tank stock and
the customer receivable). They are written in one unit of work so a failure
anywhere (an overdrawn tank on item 2, a credit limit, a duplicate invoice)
leaves no header, no items and no movements behind.

ORDER OF WORK (create_sale):
1. Arithmetic validation of header and items (no DB access, fail fast)
2. Lock referenced tanks in ascending id order
3. Lock the customer (credit sales)
4. Insert header + items, apply one `out` movement per tanked item
5. Raise the customer's outstanding balance by the sale's outstanding
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import PaymentAllocation, Product, SalesTransaction, SalesTransactionItem
from ..models.inventory import MOVEMENT_IN, MOVEMENT_OUT, REFERENCE_SALE
from ..models.sales import PAYMENT_METHOD_CREDIT, SALE_PAYMENT_METHODS
from ..time_utils import utcnow
from ..units import ZERO, line_total_cents, to_quantity
from .access_service import (
    get_scoped,
    require_permission,
    require_station,
    require_station_access,
    resolve_station_id,
    scoped_query,
)
from .balance_service import (
    _decrease_outstanding_locked,
    _increase_outstanding_locked,
    lock_customer,
)
from .concurrency import atomic, lock_for_update, run_with_retry
from .document_service import DOCUMENT_INVOICE, next_document_number
from .ledger_service import append_ledger_event
from .stock_service import _apply_movement_locked, _coerce_quantity, lock_tanks


# Line totals may differ from quantity x unit price by rounding only
LINE_TOTAL_TOLERANCE_CENTS = 1


def _settlement(header, on_credit: bool) -> tuple[int, int]:
    """
    Resolve paid/outstanding.

    When neither is sent, documents on credit (credit sales, purchase orders)
    are fully outstanding and everything else is fully paid. When one is
    sent, the other is the remainder.
    """
    paid, outstanding = header.paid_cents, header.outstanding_cents
    if paid is None and outstanding is None:
        if on_credit:
            return 0, header.total_cents
        return header.total_cents, 0
    if paid is None:
        paid = header.total_cents - outstanding
    if outstanding is None:
        outstanding = header.total_cents - paid
    return paid, outstanding


def validate_document_totals(header, items, *, on_credit: bool = True) -> tuple[int, int, list[dict]]:
    """
    Arithmetic checks shared by sales and purchase orders.

    Returns (paid_cents, outstanding_cents, prepared line dicts).
    """
    for field in ("subtotal_cents", "tax_cents", "total_cents"):
        value = getattr(header, field)
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ValidationError(f"{field} must be a non-negative integer", details={"field": field})

    if header.total_cents != header.subtotal_cents + header.tax_cents:
        raise ValidationError(
            "total_cents must equal subtotal_cents + tax_cents",
            details={
                "subtotal_cents": header.subtotal_cents,
                "tax_cents": header.tax_cents,
                "total_cents": header.total_cents,
            },
        )

    paid, outstanding = _settlement(header, on_credit)
    if paid < 0 or outstanding < 0:
        raise ValidationError("paid_cents and outstanding_cents must be >= 0")
    if paid + outstanding != header.total_cents:
        raise ValidationError(
            "paid_cents + outstanding_cents must equal total_cents",
            details={"paid_cents": paid, "outstanding_cents": outstanding, "total_cents": header.total_cents},
        )
    if outstanding and not on_credit:
        raise ValidationError(
            "Only credit sales may carry an outstanding amount",
            details={"outstanding_cents": outstanding},
        )

    if not items:
        raise ValidationError("At least one item is required")

    prepared = []
    for index, item in enumerate(items):
        quantity = _coerce_quantity(item.quantity)
        if quantity <= ZERO:
            raise ValidationError(f"Item {index}: quantity must be positive", details={"item_index": index})
        unit_price = item.unit_price_cents
        if not isinstance(unit_price, int) or isinstance(unit_price, bool) or unit_price < 0:
            raise ValidationError(f"Item {index}: unit_price_cents must be a non-negative integer", details={"item_index": index})

        expected = line_total_cents(quantity, unit_price)
        total = expected if item.total_price_cents is None else item.total_price_cents
        if abs(total - expected) > LINE_TOTAL_TOLERANCE_CENTS:
            raise ValidationError(
                f"Item {index}: total_price_cents must equal quantity x unit_price_cents",
                details={"item_index": index, "total_price_cents": total, "expected_cents": expected},
            )
        prepared.append({
            "product_id": item.product_id,
            "tank_id": item.tank_id,
            "quantity": quantity,
            "unit_price_cents": unit_price,
            "total_price_cents": total,
        })

    items_total = sum(line["total_price_cents"] for line in prepared)
    if items_total != header.subtotal_cents:
        raise ValidationError(
            "Item totals must add up to subtotal_cents",
            details={"items_total_cents": items_total, "subtotal_cents": header.subtotal_cents},
        )
    return paid, outstanding, prepared


def _validate_sale(header, items) -> tuple[int, int, list[dict]]:
    if header.payment_method not in SALE_PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of {', '.join(SALE_PAYMENT_METHODS)}",
            details={"payment_method": header.payment_method},
        )
    is_credit = header.payment_method == PAYMENT_METHOD_CREDIT
    if is_credit and header.customer_id is None:
        raise ValidationError("Credit sales require a customer_id")
    return validate_document_totals(header, items, on_credit=is_credit)


def _require_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound(f"Product {product_id} not found")
    if not product.is_active:
        raise ValidationError(f"Product {product_id} is inactive", details={"product_id": product_id})
    return product


def _check_tank_matches(tank, *, station_id: int, product_id: int, index: int) -> None:
    if tank.station_id != station_id:
        raise ValidationError(
            f"Item {index}: tank {tank.id} belongs to another station",
            details={"item_index": index, "tank_id": tank.id},
        )
    if tank.product_id != product_id:
        raise ValidationError(
            f"Item {index}: tank {tank.id} does not hold product {product_id}",
            details={"item_index": index, "tank_id": tank.id, "product_id": product_id},
        )


def _claim_invoice_number(station_id: int, requested: str | None) -> str:
    if requested:
        exists = (
            db.session.query(SalesTransaction.id)
            .filter(SalesTransaction.invoice_number == requested)
            .first()
        )
        if exists:
            raise ValidationError(
                f"Invoice number {requested} already exists",
                details={"invoice_number": requested},
            )
        return requested
    return next_document_number(station_id=station_id, document_type=DOCUMENT_INVOICE)


def create_sale(header, items, caller) -> tuple[SalesTransaction, list[SalesTransactionItem]]:
    """
    Create a sale with its items, stock-out movements and receivable update
    as one unit of work.

    Args:
        header: SaleHeaderInput
        items: list of SaleItemInput
        caller: CallerContext

    Raises:
        ValidationError: inconsistent totals, bad items, credit limit, duplicate invoice
        InsufficientStock: an item would overdraw its tank (names the tank)
        AccessDenied / NotFound: station, customer, product or tank out of reach
    """
    paid, outstanding, prepared = _validate_sale(header, items)

    def _op():
        with atomic():
            station_id = resolve_station_id(caller, header.station_id)
            station = require_station(station_id, caller)

            tanks = lock_tanks(line["tank_id"] for line in prepared if line["tank_id"] is not None)

            customer = None
            if header.customer_id is not None:
                customer = lock_customer(header.customer_id)
                require_station_access(caller, customer.station_id)
                if not customer.is_active:
                    raise ValidationError(f"Customer {customer.id} is inactive")

            sale = SalesTransaction(
                invoice_number=_claim_invoice_number(station_id, header.invoice_number),
                station_id=station_id,
                customer_id=header.customer_id,
                user_id=caller.user_id,
                transaction_date=header.transaction_date or utcnow(),
                due_date=header.due_date,
                payment_method=header.payment_method,
                currency_code=header.currency_code or station.default_currency,
                subtotal_cents=header.subtotal_cents,
                tax_cents=header.tax_cents,
                total_cents=header.total_cents,
                paid_cents=paid,
                outstanding_cents=outstanding,
                notes=header.notes,
            )
            db.session.add(sale)
            db.session.flush()

            created_items = []
            for index, line in enumerate(prepared):
                _require_product(line["product_id"])
                item = SalesTransactionItem(transaction_id=sale.id, **line)
                db.session.add(item)
                db.session.flush()

                if line["tank_id"] is not None:
                    tank = tanks[line["tank_id"]]
                    _check_tank_matches(tank, station_id=station_id, product_id=line["product_id"], index=index)
                    movement = _apply_movement_locked(
                        tank,
                        movement_type=MOVEMENT_OUT,
                        quantity=line["quantity"],
                        reference_type=REFERENCE_SALE,
                        reference_id=sale.id,
                        caller=caller,
                        notes=f"Sale {sale.invoice_number}",
                    )
                    item.stock_movement_id = movement.id
                created_items.append(item)

            if customer is not None and outstanding > 0:
                _increase_outstanding_locked(customer, outstanding, enforce_credit_limit=True)

            append_ledger_event(
                station_id=station_id,
                event_type="sale.created",
                entity_type="sale",
                entity_id=sale.id,
                caller=caller,
                occurred_at=sale.transaction_date,
                payload={
                    "invoice_number": sale.invoice_number,
                    "payment_method": sale.payment_method,
                    "total_cents": sale.total_cents,
                    "outstanding_cents": sale.outstanding_cents,
                    "customer_id": sale.customer_id,
                },
            )
        return sale, created_items

    sale, created_items = run_with_retry(_op)
    current_app.logger.info(
        "Sale %s created: invoice=%s station_id=%s total_cents=%s method=%s",
        sale.id, sale.invoice_number, sale.station_id, sale.total_cents, sale.payment_method,
    )
    return sale, created_items


def delete_sale(sale_id: int, caller, reason: str | None = None) -> dict:
    """
    Delete a sale and reverse its effects, atomically.

    Each tanked item is returned to its tank as an `in` movement referencing
    the sale; a credit sale's outstanding is taken back off the customer.
    Movements and the audit event survive the deletion. Sales that already
    have payments allocated to them cannot be deleted.

    Returns the snapshot of the deleted sale.
    """
    require_permission(caller, "DELETE_SALE")

    def _op() -> dict:
        with atomic():
            sale = get_scoped(SalesTransaction, sale_id, caller, label="Sale")
            tanks = lock_tanks(item.tank_id for item in sale.items if item.tank_id is not None)

            customer = None
            if sale.customer_id is not None and sale.outstanding_cents > 0:
                customer = lock_customer(sale.customer_id)

            sale = lock_for_update(
                db.session.query(SalesTransaction).filter(SalesTransaction.id == sale_id)
            ).one_or_none()
            if sale is None:
                raise NotFound(f"Sale {sale_id} not found")

            allocated = (
                db.session.query(func.count(PaymentAllocation.id))
                .filter(PaymentAllocation.sale_id == sale.id)
                .scalar()
            )
            if allocated:
                raise ValidationError(
                    "Sale has payments allocated to it and cannot be deleted",
                    details={"sale_id": sale.id, "allocations": allocated},
                )

            snapshot = sale.to_dict(include_items=True)

            for item in sale.items:
                if item.tank_id is None:
                    continue
                _apply_movement_locked(
                    tanks[item.tank_id],
                    movement_type=MOVEMENT_IN,
                    quantity=to_quantity(item.quantity),
                    reference_type=REFERENCE_SALE,
                    reference_id=sale.id,
                    caller=caller,
                    notes=f"Reversal of sale {sale.invoice_number}",
                    allow_inactive=True,
                )

            if customer is not None:
                _decrease_outstanding_locked(customer, sale.outstanding_cents)

            append_ledger_event(
                station_id=sale.station_id,
                event_type="sale.deleted",
                entity_type="sale",
                entity_id=sale.id,
                caller=caller,
                note=reason,
                payload=snapshot,
            )
            db.session.delete(sale)
        return snapshot

    snapshot = run_with_retry(_op)
    current_app.logger.info(
        "Sale %s deleted by user_id=%s role=%s: %s",
        sale_id, caller.user_id, caller.role, reason or "no reason given",
    )
    return snapshot


def get_sale(sale_id: int, caller) -> SalesTransaction:
    return get_scoped(SalesTransaction, sale_id, caller, label="Sale")


def list_sales(
    caller,
    *,
    station_id: int | None = None,
    customer_id: int | None = None,
    limit: int = 50,
) -> list[SalesTransaction]:
    """Newest first."""
    query = scoped_query(SalesTransaction, caller, station_id)
    if customer_id is not None:
        query = query.filter(SalesTransaction.customer_id == customer_id)
    limit = max(1, min(limit, 500))
    return (
        query.order_by(SalesTransaction.transaction_date.desc(), SalesTransaction.id.desc())
        .limit(limit)
        .all()
    )
