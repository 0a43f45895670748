# Overview: Service-layer operations for purchase orders; supplier payables and tank receipts.

"""
Purchase Order Service

WHY: Procurement mirror of the sales orchestrator. Ordering fuel raises the
supplier payable; receiving it feeds the tanks through the stock movement
engine.

LIFECYCLE:
1. pending: created, supplier outstanding raised by the order's outstanding
2. partial: some quantity received into tanks
3. delivered: every line fully received (actual_delivery_date stamped)

DESIGN:
- Every line names the tank it will be received into; the tank must be at
  the order's station and hold the line's product.
- Receipts are `in` movements with reference_type=purchase.
- Over-receipt is a ValidationError; tank overflow is CapacityExceeded.
  Either rolls the whole receipt back.
"""

from __future__ import annotations

from flask import current_app

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import PurchaseOrder, PurchaseOrderItem
from ..models.inventory import MOVEMENT_IN, REFERENCE_PURCHASE
from ..models.purchasing import PO_STATUS_DELIVERED, PO_STATUS_PARTIAL
from ..time_utils import utcnow
from ..units import ZERO, to_quantity
from .access_service import (
    get_scoped,
    require_station,
    require_station_access,
    resolve_station_id,
    scoped_query,
)
from .balance_service import _increase_outstanding_locked, lock_supplier
from .concurrency import atomic, lock_for_update, run_with_retry
from .document_service import DOCUMENT_PURCHASE_ORDER, next_document_number
from .ledger_service import append_ledger_event
from .sales_service import _check_tank_matches, _require_product, validate_document_totals
from .stock_service import _apply_movement_locked, _coerce_quantity, lock_tanks


def _claim_order_number(station_id: int, requested: str | None) -> str:
    if requested:
        exists = (
            db.session.query(PurchaseOrder.id)
            .filter(PurchaseOrder.order_number == requested)
            .first()
        )
        if exists:
            raise ValidationError(
                f"Order number {requested} already exists",
                details={"order_number": requested},
            )
        return requested
    return next_document_number(station_id=station_id, document_type=DOCUMENT_PURCHASE_ORDER)


def _plan_receipts(order: PurchaseOrder, receipts) -> list[tuple[PurchaseOrderItem, object]]:
    """
    Pair each order line with the quantity to receive now.

    receipts=None receives everything still outstanding.
    """
    if receipts is None:
        return [(item, item.remaining_quantity) for item in order.items if item.remaining_quantity > ZERO]

    items_by_id = {item.id: item for item in order.items}
    plan = []
    seen = set()
    for receipt in receipts:
        item = items_by_id.get(receipt.item_id)
        if item is None:
            raise ValidationError(
                f"Item {receipt.item_id} is not part of order {order.id}",
                details={"item_id": receipt.item_id},
            )
        if receipt.item_id in seen:
            raise ValidationError(f"Item {receipt.item_id} listed twice", details={"item_id": receipt.item_id})
        seen.add(receipt.item_id)

        quantity = _coerce_quantity(receipt.quantity)
        if quantity <= ZERO:
            raise ValidationError("received quantity must be positive", details={"item_id": item.id})
        if quantity > item.remaining_quantity:
            raise ValidationError(
                f"Item {item.id} would be over-received",
                details={
                    "item_id": item.id,
                    "requested_quantity": str(quantity),
                    "remaining_quantity": str(item.remaining_quantity),
                },
            )
        plan.append((item, quantity))
    return plan


def _receive_locked(order: PurchaseOrder, plan, tanks: dict, caller) -> None:
    for item, quantity in plan:
        _apply_movement_locked(
            tanks[item.tank_id],
            movement_type=MOVEMENT_IN,
            quantity=quantity,
            reference_type=REFERENCE_PURCHASE,
            reference_id=order.id,
            caller=caller,
            notes=f"Receipt for {order.order_number}",
        )
        item.received_quantity = to_quantity(item.received_quantity or 0) + quantity

    if all(item.remaining_quantity <= ZERO for item in order.items):
        order.status = PO_STATUS_DELIVERED
        order.actual_delivery_date = utcnow()
    else:
        order.status = PO_STATUS_PARTIAL
    db.session.flush()

    append_ledger_event(
        station_id=order.station_id,
        event_type="purchase_order.received",
        entity_type="purchase_order",
        entity_id=order.id,
        caller=caller,
        payload={
            "status": order.status,
            "received": [{"item_id": item.id, "quantity": str(qty)} for item, qty in plan],
        },
    )


def create_purchase_order(header, items, caller, *, receive: bool = False) -> PurchaseOrder:
    """
    Create a purchase order with its items and raise the supplier payable,
    atomically. With receive=True every line is also received immediately.

    Raises:
        ValidationError: inconsistent totals, tank/product mismatch, duplicate number
        CapacityExceeded: immediate receipt would overfill a tank
        AccessDenied / NotFound: station, supplier, product or tank out of reach
    """
    paid, outstanding, prepared = validate_document_totals(header, items)
    for index, line in enumerate(prepared):
        if line["tank_id"] is None:
            raise ValidationError(f"Item {index}: tank_id is required", details={"item_index": index})

    def _op() -> PurchaseOrder:
        with atomic():
            station_id = resolve_station_id(caller, header.station_id)
            station = require_station(station_id, caller)

            tanks = lock_tanks(line["tank_id"] for line in prepared)
            for index, line in enumerate(prepared):
                _require_product(line["product_id"])
                _check_tank_matches(
                    tanks[line["tank_id"]], station_id=station_id, product_id=line["product_id"], index=index,
                )

            supplier = lock_supplier(header.supplier_id)
            require_station_access(caller, supplier.station_id)
            if not supplier.is_active:
                raise ValidationError(f"Supplier {supplier.id} is inactive")

            order = PurchaseOrder(
                order_number=_claim_order_number(station_id, header.order_number),
                station_id=station_id,
                supplier_id=supplier.id,
                user_id=caller.user_id,
                order_date=header.order_date or utcnow(),
                due_date=header.due_date,
                expected_delivery_date=header.expected_delivery_date,
                currency_code=header.currency_code or station.default_currency,
                subtotal_cents=header.subtotal_cents,
                tax_cents=header.tax_cents,
                total_cents=header.total_cents,
                paid_cents=paid,
                outstanding_cents=outstanding,
                notes=header.notes,
            )
            db.session.add(order)
            db.session.flush()

            for line in prepared:
                order.items.append(PurchaseOrderItem(received_quantity=ZERO, **line))
            db.session.flush()

            if outstanding > 0:
                _increase_outstanding_locked(supplier, outstanding)

            append_ledger_event(
                station_id=station_id,
                event_type="purchase_order.created",
                entity_type="purchase_order",
                entity_id=order.id,
                caller=caller,
                payload={
                    "order_number": order.order_number,
                    "supplier_id": supplier.id,
                    "total_cents": order.total_cents,
                    "outstanding_cents": order.outstanding_cents,
                },
            )

            if receive:
                _receive_locked(order, _plan_receipts(order, None), tanks, caller)
        return order

    order = run_with_retry(_op)
    current_app.logger.info(
        "Purchase order %s created: number=%s supplier_id=%s total_cents=%s status=%s",
        order.id, order.order_number, order.supplier_id, order.total_cents, order.status,
    )
    return order


def _lock_order(order_id: int) -> PurchaseOrder:
    """
    Lock the order and its lines, then re-check the status.

    The lines are reloaded under the lock so received quantities written by a
    concurrent receipt are seen before the remaining quantity is planned.
    """
    order = lock_for_update(
        db.session.query(PurchaseOrder).filter(PurchaseOrder.id == order_id)
    ).one_or_none()
    if order is None:
        raise NotFound(f"Purchase order {order_id} not found")
    if order.status == PO_STATUS_DELIVERED:
        raise ValidationError(f"Purchase order {order.id} is already delivered")
    lock_for_update(
        db.session.query(PurchaseOrderItem)
        .filter(PurchaseOrderItem.order_id == order_id)
        .order_by(PurchaseOrderItem.id)
    ).all()
    return order


def receive_purchase_order(order_id: int, receipts, caller) -> PurchaseOrder:
    """
    Receive fuel against an order into its tanks.

    Args:
        receipts: list of ReceiptInput, or None to receive everything remaining
    """
    def _op() -> PurchaseOrder:
        with atomic():
            order = get_scoped(PurchaseOrder, order_id, caller, label="Purchase order")
            if order.status == PO_STATUS_DELIVERED:
                raise ValidationError(f"Purchase order {order.id} is already delivered")

            tanks = lock_tanks(item.tank_id for item in order.items)
            order = _lock_order(order_id)

            plan = _plan_receipts(order, receipts)
            if not plan:
                raise ValidationError(f"Nothing left to receive on purchase order {order.id}")
            _receive_locked(order, plan, tanks, caller)
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Purchase order %s received: status=%s", order.id, order.status)
    return order


def get_purchase_order(order_id: int, caller) -> PurchaseOrder:
    return get_scoped(PurchaseOrder, order_id, caller, label="Purchase order")


def list_purchase_orders(
    caller,
    *,
    station_id: int | None = None,
    supplier_id: int | None = None,
    status: str | None = None,
    limit: int = 100,
) -> list[PurchaseOrder]:
    """Newest first."""
    query = scoped_query(PurchaseOrder, caller, station_id)
    if supplier_id is not None:
        query = query.filter(PurchaseOrder.supplier_id == supplier_id)
    if status:
        query = query.filter(PurchaseOrder.status == status)
    limit = max(1, min(limit, 500))
    return query.order_by(PurchaseOrder.order_date.desc(), PurchaseOrder.id.desc()).limit(limit).all()
