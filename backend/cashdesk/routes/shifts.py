# Overview: Flask API routes for the cash-drawer shift ledger; parses input and returns JSON responses.

"""
Shift API Routes

DESIGN:
- One drawer, at most one open shift
- Cash-in / cash-out only while a shift is open
- Close returns the reconciliation; the shift is immutable afterwards
- BLIND closing mode hides the expected figure, and every cash figure it
  could be summed from, until the count is in

SECURITY:
- Supervisors and admins run the drawer; cashiers may read the status
"""

from flask import Blueprint, Response, request, jsonify, g, current_app

from ..services import shift_service
from ..services.shift_service import ShiftNotFoundError
from ..models.shifts import CASH_IN, CASH_OUT
from ..validation import ConflictError, ValidationError
from ..decorators import require_actor, require_role, SUPERVISOR_ROLES


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")

BLIND_HIDDEN_TOTALS = ("cash_sales_cents", "cash_in_cents", "cash_out_cents", "expected_cash_cents")
BLIND_HIDDEN_SECTIONS = ("by_payment_method", "cash_composition", "movements")


def _validation_response(e: ValidationError):
    body = {"error": str(e)}
    if e.field:
        body["field"] = e.field
    return jsonify(body), 400


def _conflict_response(e: ConflictError):
    return jsonify({"error": str(e), "details": e.details}), 409


def _status_payload(status) -> dict:
    if not status.is_open:
        return {"open": False, "shift": None}

    totals = status.totals.to_dict()
    if not status.shift.reveals_expected:
        for key in BLIND_HIDDEN_TOTALS:
            totals.pop(key, None)

    return {
        "open": True,
        "shift": status.shift.to_dict(),
        "totals": totals,
    }


@shifts_bp.get("/current")
@require_actor
@require_role(*SUPERVISOR_ROLES, "cashier")
def current_shift_route():
    """Open shift with running totals, or {"open": false}."""
    return jsonify(_status_payload(shift_service.current_status())), 200


@shifts_bp.get("/current/breakdown")
@require_actor
@require_role(*SUPERVISOR_ROLES)
def current_breakdown_route():
    try:
        shift = shift_service.get_open_shift()
        report = shift_service.breakdown()
        if shift is not None and not shift.reveals_expected:
            report["summary"].pop("expected_cash_cents", None)
            for section in BLIND_HIDDEN_SECTIONS:
                report.pop(section, None)
        return jsonify(report), 200
    except ConflictError as e:
        return _conflict_response(e)


@shifts_bp.post("/open")
@require_actor
@require_role(*SUPERVISOR_ROLES)
def open_shift_route():
    """
    Open the drawer.

    Request body:
    {
        "opening_float_cents": 50000,
        "closing_mode": "TRANSPARENT"   (optional, or "BLIND")
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("opening_float_cents") is None:
            return jsonify({"error": "opening_float_cents required", "field": "opening_float_cents"}), 400

        shift = shift_service.open_shift(
            data.get("opening_float_cents"),
            opened_by_user_id=g.actor.id,
            closing_mode=data.get("closing_mode"),
        )
        return jsonify({"shift": shift.to_dict()}), 201

    except ConflictError as e:
        return _conflict_response(e)
    except ValidationError as e:
        return _validation_response(e)
    except Exception:
        current_app.logger.exception("Failed to open shift")
        return jsonify({"error": "Internal server error"}), 500


def _record_movement(direction: str):
    try:
        data = request.get_json(silent=True) or {}
        movement = shift_service.record_cash_movement(
            direction,
            data.get("amount_cents"),
            data.get("description"),
            actor_user_id=g.actor.id,
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except ConflictError as e:
        return _conflict_response(e)
    except ValidationError as e:
        return _validation_response(e)
    except Exception:
        current_app.logger.exception("Failed to record cash movement")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/cash-in")
@require_actor
@require_role(*SUPERVISOR_ROLES)
def cash_in_route():
    """Request body: {"amount_cents": 25000, "description": "Change fund top-up"}"""
    return _record_movement(CASH_IN)


@shifts_bp.post("/cash-out")
@require_actor
@require_role(*SUPERVISOR_ROLES)
def cash_out_route():
    """Request body: {"amount_cents": 5000, "description": "Cleaning supplies"}"""
    return _record_movement(CASH_OUT)


@shifts_bp.post("/close")
@require_actor
@require_role(*SUPERVISOR_ROLES)
def close_shift_route():
    """
    Count the drawer and close the open shift.

    Request body:
    {
        "counted_cash_cents": 70000,
        "notes": "..."   (optional)
    }

    Discrepancy = counted - expected (positive means surplus).
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("counted_cash_cents") is None:
            return jsonify({"error": "counted_cash_cents required", "field": "counted_cash_cents"}), 400

        result = shift_service.close_shift(
            data.get("counted_cash_cents"),
            data.get("notes"),
            closed_by_user_id=g.actor.id,
        )
        return jsonify({
            "shift": result.shift.to_dict(),
            "expected_cash_cents": result.totals.expected_cash_cents,
            "counted_cash_cents": result.counted_cash_cents,
            "discrepancy_cents": result.discrepancy_cents,
            "breakdown": result.breakdown,
        }), 200

    except ConflictError as e:
        return _conflict_response(e)
    except ValidationError as e:
        return _validation_response(e)
    except Exception:
        current_app.logger.exception("Failed to close shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/history")
@require_actor
@require_role(*SUPERVISOR_ROLES)
def shift_history_route():
    limit = request.args.get("limit", type=int)
    shifts = shift_service.shift_history(limit)
    return jsonify({"shifts": [s.to_dict() for s in shifts]}), 200


@shifts_bp.get("/<int:shift_id>/report")
@require_actor
@require_role(*SUPERVISOR_ROLES)
def shift_report_route(shift_id: int):
    try:
        return jsonify(shift_service.shift_report(shift_id)), 200
    except ShiftNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return _conflict_response(e)


@shifts_bp.get("/export")
@require_actor
@require_role(*SUPERVISOR_ROLES)
def export_shifts_route():
    """Closed shifts as a CSV attachment."""
    limit = request.args.get("limit", type=int)
    body = shift_service.export_shift_history_csv(limit)
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=shift_history.csv"},
    )
