# Overview: Flask API routes for stock lots; moves, availability, board view and intake.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_principal
from ..errors import SawmillError
from ..services import stock_ledger_service
from ..validation import require_positive_int


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.post("/lots/<int:lot_id>/move")
@require_principal
def move_lot_route(lot_id: int):
    """
    Move pieces of a lot to another location.

    Request body:
    {
        "destination": "DRYING",
        "quantity": 30
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        result = stock_ledger_service.move_lot(
            site_id=g.site_id,
            lot_id=lot_id,
            destination=data.get("destination"),
            quantity=data.get("quantity"),
            principal_id=g.principal_id,
        )
        return jsonify(result.to_dict()), 200

    except SawmillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to move lot")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/availability")
@require_principal
def availability_route():
    """Lots of a product with pieces left, oldest first: ?product_id=7"""
    try:
        product_id = require_positive_int(request.args.get("product_id"), "product_id")
        lots = stock_ledger_service.list_available_lots(g.site_id, product_id)
        return jsonify([lot.to_availability_dict() for lot in lots]), 200

    except SawmillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load availability")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/lots")
@require_principal
def list_lots_route():
    try:
        lots = stock_ledger_service.list_lots(g.site_id, location=request.args.get("location") or None)
        return jsonify({"lots": [lot.to_dict() for lot in lots]}), 200

    except SawmillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list lots")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/lots/<int:lot_id>/movements")
@require_principal
def lot_movements_route(lot_id: int):
    try:
        movements = stock_ledger_service.list_lot_movements(g.site_id, lot_id)
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200

    except SawmillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load lot movements")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/production")
@require_principal
def register_production_route():
    """
    Register finished goods coming off the saws.

    Request body:
    {
        "ingress_at": "2025-11-17",
        "origin_order_id": 12,  (optional)
        "items": [
            {"product_id": 1, "pieces": 50, "location": "PRODUCTION"},
            {"product_id": 2, "pieces": 100}
        ]
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        lots = stock_ledger_service.register_production(
            site_id=g.site_id,
            principal_id=g.principal_id,
            ingress_at=data.get("ingress_at"),
            items=data.get("items"),
            origin_order_id=data.get("origin_order_id"),
        )
        return jsonify({"lots": [lot.to_dict() for lot in lots]}), 201

    except SawmillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to register production")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/receipts")
@require_principal
def receive_goods_route():
    """
    Receive bought-in goods into a location (WAREHOUSE by default).

    Request body:
    {
        "product_id": 3,
        "quantity": 40,
        "location": "SHELF"  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        lot = stock_ledger_service.receive_commercial_goods(
            site_id=g.site_id,
            principal_id=g.principal_id,
            product_id=data.get("product_id"),
            quantity=data.get("quantity"),
            location=data.get("location") or "WAREHOUSE",
        )
        return jsonify({"lot": lot.to_dict()}), 201

    except SawmillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to receive goods")
        return jsonify({"error": "Internal server error"}), 500
