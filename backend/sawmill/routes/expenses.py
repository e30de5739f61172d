# Overview: Flask API routes for expense receipts.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_principal
from ..errors import SawmillError
from ..services import cancellation_service, expense_service


expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")


@expenses_bp.post("")
@expenses_bp.post("/")
@require_principal
def create_expense_route():
    """
    Record an expense.

    Request body:
    {
        "beneficiary": "Transportes Ruiz",
        "amount_cents": 150000,
        "concept": "FREIGHT",
        "detail": "Delivery to client 4",  (optional)
        "payment_method": "CASH",  (optional, default CASH)
        "issued_at": "2025-11-17"  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        expense = expense_service.create_expense(
            site_id=g.site_id,
            principal_id=g.principal_id,
            beneficiary=data.get("beneficiary"),
            amount_cents=data.get("amount_cents"),
            concept=data.get("concept"),
            detail=data.get("detail"),
            payment_method=data.get("payment_method") or "CASH",
            issued_at=data.get("issued_at"),
        )
        return jsonify({"expense": expense.to_dict()}), 201

    except SawmillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create expense")
        return jsonify({"error": "Internal server error"}), 500


@expenses_bp.get("")
@expenses_bp.get("/")
@require_principal
def list_expenses_route():
    try:
        limit = request.args.get("limit", default=100, type=int)
        expenses = expense_service.list_expenses(g.site_id, limit=max(1, min(limit, 500)))
        return jsonify({"expenses": [e.to_dict() for e in expenses]}), 200
    except Exception:
        current_app.logger.exception("Failed to list expenses")
        return jsonify({"error": "Internal server error"}), 500


@expenses_bp.post("/<int:expense_id>/pay")
@require_principal
def pay_expense_route(expense_id: int):
    try:
        expense = expense_service.mark_expense_paid(g.site_id, expense_id, g.principal_id)
        return jsonify({"expense": expense.to_dict()}), 200

    except SawmillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to pay expense")
        return jsonify({"error": "Internal server error"}), 500


@expenses_bp.delete("/<int:expense_id>")
@require_principal
def cancel_expense_route(expense_id: int):
    try:
        data = request.get_json(silent=True) or {}
        result = cancellation_service.cancel_expense(
            site_id=g.site_id,
            expense_id=expense_id,
            principal_id=g.principal_id,
            policy=data.get("policy"),
        )
        return jsonify(result), 200

    except SawmillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel expense")
        return jsonify({"error": "Internal server error"}), 500
