# Overview: Flask API routes for station expenses; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError, error_response
from ..models import Expense
from ..services import expense_service
from ..services.expense_service import EXPENSE_POLICY
from ..validation import parse_datetime_arg, validate_payload
from ..decorators import require_caller, require_permission


expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")


@expenses_bp.post("")
@require_caller
@require_permission("MANAGE_EXPENSES")
def create_expense_route():
    try:
        patch = validate_payload(
            model=Expense, payload=request.get_json(silent=True), policy=EXPENSE_POLICY, partial=False,
        )
        expense = expense_service.create_expense(patch, g.caller)
        return jsonify({"expense": expense.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create expense")
        return jsonify({"error": "Internal server error"}), 500


@expenses_bp.get("")
@require_caller
@require_permission("MANAGE_EXPENSES")
def list_expenses_route():
    """Query: station_id, start, end (ISO-8601), category, limit."""
    try:
        expenses = expense_service.list_expenses(
            g.caller,
            station_id=request.args.get("station_id", type=int),
            start=parse_datetime_arg("start", request.args.get("start")),
            end=parse_datetime_arg("end", request.args.get("end")),
            category=request.args.get("category"),
            limit=request.args.get("limit", 200, type=int),
        )
        return jsonify({
            "items": [e.to_dict() for e in expenses],
            "count": len(expenses),
            "total_cents": sum(e.amount_cents for e in expenses),
        })
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list expenses")
        return jsonify({"error": "Internal server error"}), 500
