# Overview: Flask API routes for cash shifts and manual drawer movements.

"""
Cash drawer API routes.

DESIGN:
- One open shift per site; opening a second one is a 409
- Summary is a replay of the shift's movements, so it is safe to poll
- Closing records counted amount and variance; it never reopens
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_principal
from ..errors import SawmillError
from ..services import cash_shift_service
from ..time_utils import to_utc_z


cash_bp = Blueprint("cash", __name__, url_prefix="/api/cash")


@cash_bp.post("/shifts")
@require_principal
def open_shift_route():
    """
    Open the site's cash drawer.

    Request body:
    {
        "opening_float_cents": 50000
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        shift = cash_shift_service.open_shift(
            site_id=g.site_id,
            opening_float_cents=data.get("opening_float_cents"),
            principal_id=g.principal_id,
        )
        return jsonify({
            "shift_id": shift.id,
            "opening_float_cents": shift.opening_float_cents,
            "opened_at": to_utc_z(shift.opened_at),
        }), 201

    except SawmillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to open cash shift")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.get("/shifts/current")
@require_principal
def current_shift_route():
    try:
        shift = cash_shift_service.get_open_shift(g.site_id)
        if shift is None:
            return jsonify({"status": "CLOSED"}), 200

        return jsonify({
            "status": "OPEN",
            "shift": shift.to_dict(),
            "summary": cash_shift_service.summarize(g.site_id, shift.id),
        }), 200

    except SawmillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load current cash shift")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.get("/shifts")
@require_principal
def list_shifts_route():
    try:
        limit = request.args.get("limit", default=50, type=int)
        shifts = cash_shift_service.list_shifts(g.site_id, limit=max(1, min(limit, 500)))
        return jsonify({"shifts": [s.to_dict() for s in shifts]}), 200
    except Exception:
        current_app.logger.exception("Failed to list cash shifts")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.get("/shifts/<int:shift_id>/summary")
@require_principal
def shift_summary_route(shift_id: int):
    try:
        return jsonify(cash_shift_service.summarize(g.site_id, shift_id)), 200

    except SawmillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to summarize cash shift")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.post("/shifts/<int:shift_id>/close")
@require_principal
def close_shift_route(shift_id: int):
    """
    Close a shift ("corte de caja").

    Request body:
    {
        "counted_amount_cents": 69000,
        "notes": "Short by 10.00"  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        result = cash_shift_service.close_shift(
            site_id=g.site_id,
            shift_id=shift_id,
            counted_amount_cents=data.get("counted_amount_cents"),
            principal_id=g.principal_id,
            notes=data.get("notes"),
        )
        result["closed_at"] = to_utc_z(result["closed_at"])
        return jsonify(result), 200

    except SawmillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to close cash shift")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.post("/movements")
@require_principal
def manual_movement_route():
    """
    Record a withdrawal or a correction on the open shift.

    Request body:
    {
        "kind": "MANUAL_WITHDRAWAL" | "CORRECTION_INCOME" | "CORRECTION_OUTFLOW",
        "amount_cents": 20000,
        "description": "Deposit to bank"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        movement = cash_shift_service.record_manual_movement(
            site_id=g.site_id,
            kind=data.get("kind"),
            amount_cents=data.get("amount_cents"),
            description=data.get("description"),
            principal_id=g.principal_id,
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except SawmillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record cash movement")
        return jsonify({"error": "Internal server error"}), 500
