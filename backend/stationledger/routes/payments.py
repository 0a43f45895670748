# Overview: Flask API routes for payments; parses input and returns JSON responses.

"""
Payment API Routes

WHY: Record money received from customers and paid to suppliers.

DESIGN:
- Exactly one of customer_id / supplier_id per payment
- The payment settles open documents oldest first
- Payments larger than the outstanding balance are rejected (409)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError, error_response
from ..schemas import PaymentInput
from ..services import balance_service
from ..decorators import require_caller, require_permission


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("")
@require_caller
@require_permission("APPLY_PAYMENT")
def apply_payment_route():
    """
    Request body:
    {
        "customer_id": 7,                 (or "supplier_id")
        "amount_cents": 150000,
        "payment_method": "cash",
        "reference_number": "RCPT-1",     (optional)
        "station_id": 1                   (optional for station-bound callers)
    }

    Returns:
        201: {"payment": {...with allocations}}
        400: ValidationError
        409: OverpaymentError / ConcurrencyConflict
    """
    try:
        payment_input = PaymentInput.from_payload(request.get_json(silent=True))
        payment = balance_service.apply_payment(payment_input, g.caller)
        return jsonify({"payment": payment.to_dict(include_allocations=True)}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to apply payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("")
@require_caller
@require_permission("VIEW_ACCOUNTS")
def list_payments_route():
    try:
        payments = balance_service.list_payments(
            g.caller,
            station_id=request.args.get("station_id", type=int),
            customer_id=request.args.get("customer_id", type=int),
            supplier_id=request.args.get("supplier_id", type=int),
            limit=request.args.get("limit", 100, type=int),
        )
        return jsonify({"items": [p.to_dict() for p in payments], "count": len(payments)})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/<int:payment_id>")
@require_caller
@require_permission("VIEW_ACCOUNTS")
def get_payment_route(payment_id: int):
    try:
        payment = balance_service.get_payment(payment_id, g.caller)
        return jsonify({"payment": payment.to_dict(include_allocations=True)})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get payment")
        return jsonify({"error": "Internal server error"}), 500
