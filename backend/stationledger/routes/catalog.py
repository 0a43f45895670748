# Overview: Flask API routes for stations and products; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError, error_response
from ..models import Product, Station
from ..services import catalog_service
from ..services.catalog_service import PRODUCT_POLICY, STATION_POLICY
from ..validation import enforce_rules_product, validate_payload
from ..decorators import require_caller, require_permission


stations_bp = Blueprint("stations", __name__, url_prefix="/api/stations")
products_bp = Blueprint("products", __name__, url_prefix="/api/products")


# =============================================================================
# STATIONS
# =============================================================================

@stations_bp.get("")
@require_caller
@require_permission("VIEW_STOCK")
def list_stations_route():
    """Admins see every station; station-bound callers see only their own."""
    try:
        stations = catalog_service.list_stations(g.caller)
        return jsonify({"items": [s.to_dict() for s in stations], "count": len(stations)})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list stations")
        return jsonify({"error": "Internal server error"}), 500


@stations_bp.post("")
@require_caller
@require_permission("MANAGE_CATALOG")
def create_station_route():
    try:
        patch = validate_payload(
            model=Station, payload=request.get_json(silent=True), policy=STATION_POLICY, partial=False,
        )
        station = catalog_service.create_station(patch, g.caller)
        return jsonify({"station": station.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create station")
        return jsonify({"error": "Internal server error"}), 500


@stations_bp.get("/<int:station_id>")
@require_caller
@require_permission("VIEW_STOCK")
def get_station_route(station_id: int):
    try:
        station = catalog_service.get_station(station_id, g.caller)
        return jsonify({"station": station.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get station")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PRODUCTS
# =============================================================================

@products_bp.get("")
@require_caller
@require_permission("VIEW_STOCK")
def list_products_route():
    """
    List products.

    Query parameters:
    - active_only: true to hide inactive products
    - category: fuel | lubricant | other
    """
    try:
        products = catalog_service.list_products(
            active_only=request.args.get("active_only", "false").lower() == "true",
            category=request.args.get("category"),
        )
        return jsonify({"items": [p.to_dict() for p in products], "count": len(products)})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("")
@require_caller
@require_permission("MANAGE_CATALOG")
def create_product_route():
    try:
        patch = validate_payload(
            model=Product, payload=request.get_json(silent=True), policy=PRODUCT_POLICY, partial=False,
        )
        enforce_rules_product(patch)
        product = catalog_service.create_product(patch, g.caller)
        return jsonify({"product": product.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
@require_caller
@require_permission("VIEW_STOCK")
def get_product_route(product_id: int):
    try:
        product = catalog_service.get_product(product_id)
        return jsonify({"product": product.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/<int:product_id>")
@require_caller
@require_permission("MANAGE_CATALOG")
def update_product_route(product_id: int):
    """
    Change a product's price or tax rate.

    Request body (any subset):
    {
        "current_price_cents": 27250,
        "tax_rate": "17.00",
        "is_active": true
    }
    """
    try:
        patch = validate_payload(
            model=Product, payload=request.get_json(silent=True), policy=PRODUCT_POLICY, partial=True,
        )
        enforce_rules_product(patch)
        product = catalog_service.update_product(product_id, patch, g.caller)
        return jsonify({"product": product.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500
