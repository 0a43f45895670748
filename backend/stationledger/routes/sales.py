# Overview: Flask API routes for sales; parses input and returns JSON responses.

"""
Sales API Routes

DESIGN:
- POST creates the whole sale (header + items) in one call; stock and the
  customer receivable move in the same unit of work
- DELETE reverses a sale (privileged, audited)

SECURITY:
- CREATE_SALE to record, VIEW_SALES to read, DELETE_SALE to delete
- Station scoping is enforced by the services against g.caller
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError, error_response
from ..schemas import parse_sale_request
from ..services import sales_service
from ..decorators import require_caller, require_permission


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_caller
@require_permission("CREATE_SALE")
def create_sale_route():
    """
    Create a sale.

    Request body:
    {
        "transaction": {
            "station_id": 1,                (optional for station-bound callers)
            "customer_id": 7,               (required for credit)
            "payment_method": "credit",
            "subtotal_cents": 100000,
            "tax_cents": 0,
            "total_cents": 100000,
            "paid_cents": 0,                (optional)
            "outstanding_cents": 100000,    (optional)
            "invoice_number": "INV-1"       (optional, generated when omitted)
        },
        "items": [
            {"product_id": 1, "tank_id": 1, "quantity": "10.000",
             "unit_price_cents": 10000, "total_price_cents": 100000}
        ]
    }

    Returns:
        201: {"transaction": {...}, "items": [...]}
        400: ValidationError
        403: AccessDenied
        404: NotFound
        409: InsufficientStock (names the tank) / ConcurrencyConflict
    """
    try:
        header, items = parse_sale_request(request.get_json(silent=True))
        sale, sale_items = sales_service.create_sale(header, items, g.caller)
        return jsonify({
            "transaction": sale.to_dict(),
            "items": [item.to_dict() for item in sale_items],
        }), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_caller
@require_permission("VIEW_SALES")
def list_sales_route():
    try:
        sales = sales_service.list_sales(
            g.caller,
            station_id=request.args.get("station_id", type=int),
            customer_id=request.args.get("customer_id", type=int),
            limit=request.args.get("limit", 50, type=int),
        )
        return jsonify({"items": [s.to_dict() for s in sales], "count": len(sales)})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_caller
@require_permission("VIEW_SALES")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id, g.caller)
        return jsonify({"transaction": sale.to_dict(include_items=True)})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/<int:sale_id>")
@require_caller
@require_permission("DELETE_SALE")
def delete_sale_route(sale_id: int):
    """
    Delete a sale and reverse its stock and receivable effects.

    Requires: DELETE_SALE permission (admin, manager)

    Optional body: {"reason": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        snapshot = sales_service.delete_sale(sale_id, g.caller, reason=data.get("reason"))
        return jsonify({"deleted": True, "transaction": snapshot})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete sale")
        return jsonify({"error": "Internal server error"}), 500
