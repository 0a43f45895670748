# Overview: Flask API routes for reports; read-only JSON projections.

"""
Reports API Routes

All reports are scoped to one station: the caller's own, or the
station_id query parameter for admins.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError, error_response
from ..services import reporting_service
from ..validation import parse_datetime_arg
from ..decorators import require_caller, require_permission


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _range_args():
    return {
        "station_id": request.args.get("station_id", type=int),
        "start": parse_datetime_arg("start", request.args.get("start")),
        "end": parse_datetime_arg("end", request.args.get("end")),
    }


@reports_bp.get("/dashboard")
@require_caller
@require_permission("VIEW_REPORTS")
def dashboard_route():
    try:
        stats = reporting_service.dashboard_stats(g.caller, request.args.get("station_id", type=int))
        return jsonify(stats)
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build dashboard stats")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.get("/sales")
@require_caller
@require_permission("VIEW_REPORTS")
def sales_report_route():
    try:
        return jsonify(reporting_service.sales_report(g.caller, **_range_args()))
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build sales report")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.get("/financial")
@require_caller
@require_permission("VIEW_REPORTS")
def financial_report_route():
    try:
        return jsonify(reporting_service.financial_report(g.caller, **_range_args()))
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build financial report")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.get("/aging")
@require_caller
@require_permission("VIEW_REPORTS")
def aging_report_route():
    try:
        report = reporting_service.aging_report(
            g.caller,
            station_id=request.args.get("station_id", type=int),
            as_of=parse_datetime_arg("as_of", request.args.get("as_of")),
        )
        return jsonify(report)
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build aging report")
        return jsonify({"error": "Internal server error"}), 500
