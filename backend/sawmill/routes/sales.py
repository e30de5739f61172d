# Overview: Flask API routes for sale notes; create, read and cancel.

"""
Sale API routes.

DESIGN:
- POST creates the note, decrements lots and posts cash in one unit of work
- 202 means the sale is saved but its cash income is still pending
  (deferred posting mode only)
- DELETE cancels: pieces go back to their lots and the drawer is compensated
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_principal
from ..errors import SawmillError
from ..services import cancellation_service, sales_service


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@sales_bp.post("/")
@require_principal
def create_sale_route():
    """
    Create a sale note.

    Request body:
    {
        "client_id": 4,
        "payment_method": "CASH" | "TRANSFER" | "CARD" | "CREDIT",
        "lines": [
            {"product_id": 1, "quantity": 10, "unit_price_cents": 2000},
            {"product_id": 2, "quantity": 5, "unit_price_cents": 3500,
             "allocation": [{"lot_id": 9, "quantity": 5}]}
        ]
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        sale = sales_service.create_sale(
            site_id=g.site_id,
            principal_id=g.principal_id,
            client_id=data.get("client_id"),
            payment_method=data.get("payment_method"),
            lines=data.get("lines"),
        )
        return jsonify({
            "sale_id": sale.id,
            "folio": sale.folio,
            "total_cents": sale.total_cents,
        }), 201

    except SawmillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@sales_bp.get("/")
@require_principal
def list_sales_route():
    try:
        limit = request.args.get("limit", default=100, type=int)
        sales = sales_service.list_sales(g.site_id, limit=max(1, min(limit, 500)))
        return jsonify({"sales": [s.to_dict() for s in sales]}), 200
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_principal
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(g.site_id, sale_id)
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 200

    except SawmillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/<int:sale_id>")
@require_principal
def cancel_sale_route(sale_id: int):
    """
    Cancel a sale.

    Optional body: {"reason": "...", "policy": "DELETE" | "FLAG"}
    """
    try:
        data = request.get_json(silent=True) or {}
        result = cancellation_service.cancel_sale(
            site_id=g.site_id,
            sale_id=sale_id,
            principal_id=g.principal_id,
            reason=data.get("reason"),
            policy=data.get("policy"),
        )
        return jsonify(result), 200

    except SawmillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500
