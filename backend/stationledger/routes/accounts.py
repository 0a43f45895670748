# Overview: Flask API routes for customers and suppliers; parses input and returns JSON responses.

"""
Account API Routes

DESIGN:
- outstanding_cents is never writable through these routes; balances move
  only through sales, purchase orders and payments
- opening_balance_cents on create is booked through the balance service
- GET /<id>/statement returns payments, open documents and the balance
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError, ValidationError, error_response
from ..models import Customer, Supplier
from ..services import account_service, balance_service
from ..services.account_service import CUSTOMER_POLICY, SUPPLIER_POLICY
from ..validation import validate_payload
from ..decorators import require_caller, require_permission


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")
suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


def _split_opening_balance(data) -> tuple[dict, int]:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    data = dict(data)
    opening = data.pop("opening_balance_cents", 0)
    if opening is None:
        opening = 0
    if isinstance(opening, bool) or not isinstance(opening, int):
        raise ValidationError("opening_balance_cents must be an integer")
    return data, opening


# =============================================================================
# CUSTOMERS
# =============================================================================

@customers_bp.get("")
@require_caller
@require_permission("VIEW_ACCOUNTS")
def list_customers_route():
    """
    Query parameters:
    - station_id (admins)
    - active_only=true
    - with_balance=true: only customers owing money
    - search: name substring
    """
    try:
        customers = account_service.list_customers(
            g.caller,
            station_id=request.args.get("station_id", type=int),
            active_only=request.args.get("active_only", "false").lower() == "true",
            with_balance=request.args.get("with_balance", "false").lower() == "true",
            search=request.args.get("search"),
        )
        return jsonify({"items": [c.to_dict() for c in customers], "count": len(customers)})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list customers")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("")
@require_caller
@require_permission("MANAGE_ACCOUNTS")
def create_customer_route():
    try:
        data, opening = _split_opening_balance(request.get_json(silent=True))
        patch = validate_payload(model=Customer, payload=data, policy=CUSTOMER_POLICY, partial=False)
        customer = account_service.create_customer(patch, g.caller, opening_balance_cents=opening)
        return jsonify({"customer": customer.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>")
@require_caller
@require_permission("VIEW_ACCOUNTS")
def get_customer_route(customer_id: int):
    try:
        customer = account_service.get_customer(customer_id, g.caller)
        return jsonify({"customer": customer.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.put("/<int:customer_id>")
@require_caller
@require_permission("MANAGE_ACCOUNTS")
def update_customer_route(customer_id: int):
    try:
        patch = validate_payload(
            model=Customer, payload=request.get_json(silent=True), policy=CUSTOMER_POLICY, partial=True,
        )
        customer = account_service.update_customer(customer_id, patch, g.caller)
        return jsonify({"customer": customer.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>/statement")
@require_caller
@require_permission("VIEW_ACCOUNTS")
def customer_statement_route(customer_id: int):
    try:
        statement = balance_service.get_statement(balance_service.ENTITY_CUSTOMER, customer_id, g.caller)
        return jsonify(statement)
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build customer statement")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SUPPLIERS
# =============================================================================

@suppliers_bp.get("")
@require_caller
@require_permission("VIEW_ACCOUNTS")
def list_suppliers_route():
    try:
        suppliers = account_service.list_suppliers(
            g.caller,
            station_id=request.args.get("station_id", type=int),
            active_only=request.args.get("active_only", "false").lower() == "true",
            search=request.args.get("search"),
        )
        return jsonify({"items": [s.to_dict() for s in suppliers], "count": len(suppliers)})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list suppliers")
        return jsonify({"error": "Internal server error"}), 500


@suppliers_bp.post("")
@require_caller
@require_permission("MANAGE_ACCOUNTS")
def create_supplier_route():
    try:
        data, opening = _split_opening_balance(request.get_json(silent=True))
        patch = validate_payload(model=Supplier, payload=data, policy=SUPPLIER_POLICY, partial=False)
        supplier = account_service.create_supplier(patch, g.caller, opening_balance_cents=opening)
        return jsonify({"supplier": supplier.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create supplier")
        return jsonify({"error": "Internal server error"}), 500


@suppliers_bp.get("/<int:supplier_id>")
@require_caller
@require_permission("VIEW_ACCOUNTS")
def get_supplier_route(supplier_id: int):
    try:
        supplier = account_service.get_supplier(supplier_id, g.caller)
        return jsonify({"supplier": supplier.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get supplier")
        return jsonify({"error": "Internal server error"}), 500


@suppliers_bp.put("/<int:supplier_id>")
@require_caller
@require_permission("MANAGE_ACCOUNTS")
def update_supplier_route(supplier_id: int):
    try:
        patch = validate_payload(
            model=Supplier, payload=request.get_json(silent=True), policy=SUPPLIER_POLICY, partial=True,
        )
        supplier = account_service.update_supplier(supplier_id, patch, g.caller)
        return jsonify({"supplier": supplier.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update supplier")
        return jsonify({"error": "Internal server error"}), 500


@suppliers_bp.get("/<int:supplier_id>/statement")
@require_caller
@require_permission("VIEW_ACCOUNTS")
def supplier_statement_route(supplier_id: int):
    try:
        statement = balance_service.get_statement(balance_service.ENTITY_SUPPLIER, supplier_id, g.caller)
        return jsonify(statement)
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build supplier statement")
        return jsonify({"error": "Internal server error"}), 500
