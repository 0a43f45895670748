# Overview: Flask API routes for tanks and stock movements; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError, error_response
from ..models import Tank
from ..schemas import MovementInput
from ..services import catalog_service, stock_service
from ..services.catalog_service import TANK_POLICY
from ..validation import enforce_rules_tank, validate_payload
from ..decorators import require_caller, require_permission


tanks_bp = Blueprint("tanks", __name__, url_prefix="/api/tanks")
movements_bp = Blueprint("stock_movements", __name__, url_prefix="/api/stock-movements")


# =============================================================================
# TANKS
# =============================================================================

@tanks_bp.get("")
@require_caller
@require_permission("VIEW_STOCK")
def list_tanks_route():
    try:
        tanks = catalog_service.list_tanks(
            g.caller,
            station_id=request.args.get("station_id", type=int),
            include_inactive=request.args.get("include_inactive", "false").lower() == "true",
        )
        return jsonify({"items": [t.to_dict() for t in tanks], "count": len(tanks)})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list tanks")
        return jsonify({"error": "Internal server error"}), 500


@tanks_bp.post("")
@require_caller
@require_permission("MANAGE_CATALOG")
def create_tank_route():
    """
    Create a tank. A current_stock in the body is booked as an opening
    `in` movement.
    """
    try:
        patch = validate_payload(
            model=Tank, payload=request.get_json(silent=True), policy=TANK_POLICY, partial=False,
        )
        enforce_rules_tank(patch)
        tank = catalog_service.create_tank(patch, g.caller)
        return jsonify({"tank": tank.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create tank")
        return jsonify({"error": "Internal server error"}), 500


@tanks_bp.get("/<int:tank_id>")
@require_caller
@require_permission("VIEW_STOCK")
def get_tank_route(tank_id: int):
    try:
        tank = catalog_service.get_tank(tank_id, g.caller)
        return jsonify({"tank": tank.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get tank")
        return jsonify({"error": "Internal server error"}), 500


@tanks_bp.post("/<int:tank_id>/deactivate")
@require_caller
@require_permission("ADJUST_STOCK")
def deactivate_tank_route(tank_id: int):
    try:
        data = request.get_json(silent=True) or {}
        tank = catalog_service.deactivate_tank(tank_id, g.caller, reason=data.get("reason"))
        return jsonify({"tank": tank.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to deactivate tank")
        return jsonify({"error": "Internal server error"}), 500


@tanks_bp.get("/<int:tank_id>/movements")
@require_caller
@require_permission("VIEW_STOCK")
def list_movements_route(tank_id: int):
    """
    Movement history, newest first.

    Query: ?limit=50&before_id=123 (before_id is the next_before_id of the
    previous page)
    """
    try:
        movements, next_before_id = stock_service.list_movements(
            tank_id,
            g.caller,
            limit=request.args.get("limit", type=int),
            before_id=request.args.get("before_id", type=int),
        )
        return jsonify({
            "items": [m.to_dict() for m in movements],
            "count": len(movements),
            "next_before_id": next_before_id,
        })
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# MOVEMENTS
# =============================================================================

@movements_bp.post("")
@require_caller
@require_permission("ADJUST_STOCK")
def create_movement_route():
    """
    Apply a stock movement.

    Request body:
    {
        "tank_id": 1,
        "movement_type": "adjustment",    (in | out | adjustment)
        "quantity": "-25.500",            (signed delta for adjustment)
        "reference_type": "adjustment",   (default adjustment)
        "reference_id": null,
        "notes": "Dip reading correction"
    }

    A sale or purchase reference must name an existing document at the
    tank's station.
    """
    try:
        movement_input = MovementInput.from_payload(request.get_json(silent=True))
        movement = stock_service.apply_movement(
            movement_input.tank_id,
            movement_input.movement_type,
            movement_input.quantity,
            movement_input.reference_type,
            movement_input.reference_id,
            g.caller,
            notes=movement_input.notes,
        )
        return jsonify({"movement": movement.to_dict(), "tank": movement.tank.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to apply stock movement")
        return jsonify({"error": "Internal server error"}), 500
