# Overview: Flask API routes for sale checkout and settlement; parses input and returns JSON responses.

"""
Sales API Routes

DESIGN:
- Checkout creates a PENDING sale and returns its claim code
- Settlement: confirm (staff or claim code) / cancel
- Reads are completed-only unless a status is asked for

SECURITY:
- Staff roles can check out, confirm, cancel and read
- Only customer actors can redeem a claim code
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import sales_service
from ..services.sales_service import SaleNotFoundError
from ..services.claim_token_service import ClaimTokenExpiredError, ClaimTokenInvalidError
from ..validation import ConflictError, ValidationError, coerce_int
from ..decorators import require_actor, require_role, STAFF_ROLES
from cashdesk.time_utils import utcnow, parse_iso_datetime


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _validation_response(e: ValidationError):
    body = {"error": str(e)}
    if e.field:
        body["field"] = e.field
    details = getattr(e, "details", None)
    if details:
        body["details"] = details
    return jsonify(body), 400


def _conflict_response(e: ConflictError):
    return jsonify({"error": str(e), "details": e.details}), 409


@sales_bp.post("")
@sales_bp.post("/")
@require_actor
@require_role(*STAFF_ROLES)
def create_sale_route():
    """
    Record a checkout as a pending sale.

    Request body:
    {
        "payment_method": "CASH",          // CASH | CARD | TRANSFER
        "staff_id": 3,                     (optional, default for service lines)
        "note": "...",                     (optional)
        "lines": [
            {"service_id": 1, "quantity": 1, "staff_id": 3},
            {"product_id": 7, "quantity": 2, "unit_price_cents": 450}
        ]
    }

    Returns 201 with the sale, the claim token and its lifetime in seconds.
    """
    try:
        data = request.get_json(silent=True) or {}
        lines = sales_service.parse_lines(data.get("lines"))
        staff_id = data.get("staff_id")

        result = sales_service.create_pending_sale(
            lines,
            payment_method=data.get("payment_method"),
            staff_id=coerce_int(staff_id, "staff_id") if staff_id is not None else None,
            note=data.get("note"),
            actor_user_id=g.actor.id,
        )

        return jsonify({
            "sale": result.sale.to_dict(include_lines=True),
            "claim_token": result.claim_token,
            "expires_in": result.expires_in,
        }), 201

    except ConflictError as e:
        return _conflict_response(e)
    except ValidationError as e:
        return _validation_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@sales_bp.get("/")
@require_actor
@require_role(*STAFF_ROLES)
def list_sales_route():
    """
    List sales, newest first.

    Query params: status (default COMPLETED, "ALL" for every status),
    from / to (ISO-8601), staff_id, limit (max 500).
    """
    status = (request.args.get("status") or "COMPLETED").upper()
    staff_id = request.args.get("staff_id", type=int)
    limit = max(1, min(request.args.get("limit", default=200, type=int) or 200, 500))

    try:
        date_from = parse_iso_datetime(request.args.get("from"))
        date_to = parse_iso_datetime(request.args.get("to"))
    except ValueError:
        return jsonify({"error": "from/to must be ISO-8601 datetimes"}), 400

    sales = sales_service.list_sales(
        status=None if status == "ALL" else status,
        date_from=date_from,
        date_to=date_to,
        staff_id=staff_id,
        limit=limit,
    )
    return jsonify({"sales": [s.to_dict() for s in sales]}), 200


@sales_bp.get("/summary/today")
@require_actor
@require_role(*STAFF_ROLES)
def today_summary_route():
    return jsonify(sales_service.daily_summary(utcnow().date())), 200


@sales_bp.get("/<int:sale_id>")
@require_actor
@require_role(*STAFF_ROLES)
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
    except SaleNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"sale": sale.to_dict(include_lines=True)}), 200


@sales_bp.post("/<int:sale_id>/confirm")
@require_actor
@require_role(*STAFF_ROLES)
def confirm_sale_route(sale_id: int):
    """
    Manual confirmation (customer could not scan the code).

    Confirming an already completed sale succeeds with already_completed=true.
    """
    try:
        result = sales_service.confirm(sale_id, actor_user_id=g.actor.id)
        return jsonify({
            "sale": result.sale.to_dict(),
            "already_completed": not result.changed,
        }), 200

    except SaleNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return _conflict_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/cancel")
@require_actor
@require_role(*STAFF_ROLES)
def cancel_sale_route(sale_id: int):
    """Cancel a pending sale; stock is restored and commissions dropped."""
    try:
        result = sales_service.cancel(sale_id, actor_user_id=g.actor.id)
        return jsonify({
            "sale": result.sale.to_dict(),
            "already_cancelled": not result.changed,
        }), 200

    except SaleNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return _conflict_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/claim")
@require_actor
@require_role("customer")
def claim_sale_route():
    """
    Customer redeems the claim code shown at checkout.

    Request body: {"token": "<claim code>"}

    Returns:
    - 200 with the sale and the loyalty stamp result
    - 410 with expired=true when the code is past its lifetime
    - 400 for any other bad code
    """
    data = request.get_json(silent=True) or {}
    try:
        result = sales_service.confirm_by_token(
            data.get("token"),
            customer_id=g.actor.id,
            actor_user_id=g.actor.id,
        )
        return jsonify({
            "sale": result.sale.to_dict(),
            "already_completed": not result.changed,
            "loyalty": result.loyalty,
        }), 200

    except ClaimTokenExpiredError as e:
        return jsonify({"error": str(e), "expired": True}), 410
    except ClaimTokenInvalidError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return _conflict_response(e)
    except ValidationError as e:
        return _validation_response(e)
    except Exception:
        current_app.logger.exception("Failed to redeem claim code")
        return jsonify({"error": "Internal server error"}), 500
