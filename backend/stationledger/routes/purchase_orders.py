# Overview: Flask API routes for purchase orders; parses input and returns JSON responses.

"""
Purchase Order API Routes

DESIGN:
- POST creates order + items and raises the supplier payable; with
  "receive": true the fuel is received into the tanks in the same call
- POST /<id>/receive books (partial) deliveries as `in` movements
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError, error_response
from ..schemas import parse_purchase_order_request, parse_receipts
from ..services import purchase_service
from ..decorators import require_caller, require_permission


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


@purchase_orders_bp.post("")
@require_caller
@require_permission("MANAGE_PURCHASES")
def create_purchase_order_route():
    """
    Request body:
    {
        "order": {"supplier_id": 1, "subtotal_cents": 500000, "tax_cents": 0, "total_cents": 500000},
        "items": [{"product_id": 1, "tank_id": 1, "quantity": "2000", "unit_price_cents": 250}],
        "receive": false
    }
    """
    try:
        header, items, receive = parse_purchase_order_request(request.get_json(silent=True))
        order = purchase_service.create_purchase_order(header, items, g.caller, receive=receive)
        return jsonify({"order": order.to_dict(include_items=True)}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.post("/<int:order_id>/receive")
@require_caller
@require_permission("MANAGE_PURCHASES")
def receive_purchase_order_route(order_id: int):
    """
    Receive fuel against an order.

    Body {"items": [{"id": <item id>, "received_quantity": "500"}]} receives
    the listed quantities; an empty body receives everything remaining.
    """
    try:
        receipts = parse_receipts(request.get_json(silent=True))
        order = purchase_service.receive_purchase_order(order_id, receipts, g.caller)
        return jsonify({"order": order.to_dict(include_items=True)})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to receive purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.get("")
@require_caller
@require_permission("MANAGE_PURCHASES")
def list_purchase_orders_route():
    try:
        orders = purchase_service.list_purchase_orders(
            g.caller,
            station_id=request.args.get("station_id", type=int),
            supplier_id=request.args.get("supplier_id", type=int),
            status=request.args.get("status"),
            limit=request.args.get("limit", 100, type=int),
        )
        return jsonify({"items": [o.to_dict() for o in orders], "count": len(orders)})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list purchase orders")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.get("/<int:order_id>")
@require_caller
@require_permission("MANAGE_PURCHASES")
def get_purchase_order_route(order_id: int):
    try:
        order = purchase_service.get_purchase_order(order_id, g.caller)
        return jsonify({"order": order.to_dict(include_items=True)})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get purchase order")
        return jsonify({"error": "Internal server error"}), 500
