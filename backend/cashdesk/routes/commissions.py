# Overview: Flask API routes for staff commission accruals and payouts.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import commission_service
from ..services.commission_service import CommissionError
from ..validation import ConflictError, optional_text, ValidationError
from ..decorators import require_actor, require_role, SUPERVISOR_ROLES


commissions_bp = Blueprint("commissions", __name__, url_prefix="/api/staff")


@commissions_bp.get("/<int:staff_id>/commissions")
@require_actor
@require_role(*SUPERVISOR_ROLES)
def list_commissions_route(staff_id: int):
    """Accruals for one staff member with pending / paid totals."""
    try:
        return jsonify(commission_service.commissions_for_staff(staff_id)), 200
    except CommissionError as e:
        return jsonify({"error": str(e)}), 404


@commissions_bp.post("/<int:staff_id>/commissions/pay")
@require_actor
@require_role("admin")
def pay_commissions_route(staff_id: int):
    """
    Pay out everything currently owed to a staff member.

    Request body: {"notes": "..."}  (optional)
    """
    try:
        data = request.get_json(silent=True) or {}
        payout = commission_service.pay_commissions(
            staff_id,
            paid_by_user_id=g.actor.id,
            notes=optional_text(data.get("notes"), "notes", max_length=2000),
        )
        return jsonify({"payout": payout.to_dict()}), 201

    except CommissionError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except ValidationError as e:
        return jsonify({"error": str(e), "field": e.field}), 400
    except Exception:
        current_app.logger.exception("Failed to pay commissions")
        return jsonify({"error": "Internal server error"}), 500
