"""
Sale Settlement Service - pending -> completed | cancelled

WHY: Checkout takes stock and books commissions immediately, but the sale
only counts toward the cash drawer once it is confirmed (customer scans the
claim code, or staff confirms manually). Cancelling a pending sale undoes
the stock and commission effects.

STATE MACHINE:
- PENDING is initial
- PENDING -> COMPLETED (confirm)
- PENDING -> CANCELLED (cancel, with compensations)
- COMPLETED and CANCELLED are terminal

Every transition is a single conditional UPDATE (... WHERE status =
'PENDING'), so of two racing callers exactly one performs the transition and
the other observes the result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Sale, SaleLine, Product, Service, StaffMember, Customer, LoyaltyClaim
from ..models.sales import SALE_PENDING, SALE_COMPLETED, SALE_CANCELLED, PAYMENT_METHODS
from ..validation import (
    ConflictError,
    ValidationError,
    coerce_int,
    optional_text,
    require_non_negative_cents,
)
from cashdesk.time_utils import utcnow, day_bounds
from . import stock_service, commission_service, claim_token_service
from .concurrency import run_with_retry


class SaleError(ValidationError):
    """Raised for invalid checkout input."""

    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        super().__init__(message, field=field)
        self.details = details or {}


class SaleNotFoundError(LookupError):
    """Raised when a sale id does not exist."""


class SaleStateError(ConflictError):
    """Raised when a transition is attempted from a terminal state."""


@dataclass
class LineRequest:
    product_id: int | None
    service_id: int | None
    quantity: int
    unit_price_cents: int | None = None
    staff_id: int | None = None


@dataclass
class CheckoutResult:
    sale: Sale
    claim_token: str
    expires_in: int


@dataclass
class SettlementResult:
    """Outcome of confirm/cancel. changed=False means the call was a no-op."""
    sale: Sale
    changed: bool
    loyalty: dict | None = field(default=None)


# =============================================================================
# INPUT PARSING
# =============================================================================

def parse_lines(raw_lines) -> list[LineRequest]:
    """Validate the request payload shape before touching the database."""
    if not isinstance(raw_lines, list) or not raw_lines:
        raise SaleError("A sale must have at least one line", field="lines")

    parsed = []
    for i, raw in enumerate(raw_lines):
        if not isinstance(raw, dict):
            raise SaleError(f"lines[{i}] must be an object", field="lines")

        product_id = raw.get("product_id")
        service_id = raw.get("service_id")
        if (product_id is None) == (service_id is None):
            raise SaleError(
                f"lines[{i}] must reference exactly one of product_id or service_id",
                field=f"lines[{i}]",
            )

        quantity = coerce_int(raw.get("quantity", 1), f"lines[{i}].quantity")
        if quantity <= 0:
            raise SaleError("quantity must be positive", field=f"lines[{i}].quantity")

        unit_price = raw.get("unit_price_cents")
        if unit_price is not None:
            unit_price = require_non_negative_cents(unit_price, f"lines[{i}].unit_price_cents")

        staff_id = raw.get("staff_id")
        parsed.append(LineRequest(
            product_id=coerce_int(product_id, f"lines[{i}].product_id") if product_id is not None else None,
            service_id=coerce_int(service_id, f"lines[{i}].service_id") if service_id is not None else None,
            quantity=quantity,
            unit_price_cents=unit_price,
            staff_id=coerce_int(staff_id, f"lines[{i}].staff_id") if staff_id is not None else None,
        ))
    return parsed


def _normalize_payment_method(payment_method: str | None) -> str:
    method = (payment_method or "CASH").strip().upper()
    if method not in PAYMENT_METHODS:
        raise SaleError(
            f"payment_method must be one of {', '.join(PAYMENT_METHODS)}",
            field="payment_method",
        )
    return method


def _load_staff(staff_id: int | None) -> StaffMember | None:
    if staff_id is None:
        return None
    staff = db.session.get(StaffMember, staff_id)
    if staff is None or not staff.is_active:
        raise SaleError(f"Staff member {staff_id} not found", field="staff_id")
    return staff


# =============================================================================
# CHECKOUT
# =============================================================================

def create_pending_sale(
    lines: list[LineRequest],
    payment_method: str | None = "CASH",
    staff_id: int | None = None,
    note: str | None = None,
    *,
    actor_user_id: int | None = None,
    token_ttl: timedelta | None = None,
) -> CheckoutResult:
    """
    Record a checkout as a PENDING sale and mint its claim token.

    All-or-nothing: stock decrements, commission accruals and the sale rows
    commit together or not at all. Any product short on stock fails the whole
    checkout before anything is written.
    """
    if not lines:
        raise SaleError("A sale must have at least one line", field="lines")
    method = _normalize_payment_method(payment_method)
    note = optional_text(note, "note", max_length=2000)

    def _op():
        sale_staff = _load_staff(staff_id)

        # Resolve catalog rows and prices first
        resolved = []
        requested: dict[int, int] = {}
        for i, req in enumerate(lines):
            line_staff = _load_staff(req.staff_id) if req.staff_id is not None else sale_staff
            if req.product_id is not None:
                product = db.session.get(Product, req.product_id)
                if product is None or not product.is_active:
                    raise SaleError(f"Product {req.product_id} not found", field=f"lines[{i}].product_id")
                unit_price = req.unit_price_cents if req.unit_price_cents is not None else product.price_cents
                resolved.append((req, product, None, line_staff, unit_price))
                requested[product.id] = requested.get(product.id, 0) + req.quantity
            else:
                service = db.session.get(Service, req.service_id)
                if service is None or not service.is_active:
                    raise SaleError(f"Service {req.service_id} not found", field=f"lines[{i}].service_id")
                unit_price = req.unit_price_cents if req.unit_price_cents is not None else service.price_cents
                resolved.append((req, None, service, line_staff, unit_price))

        # Fail before any mutation if stock is short anywhere
        stock_service.check_available(requested)

        sale = Sale(
            status=SALE_PENDING,
            payment_method=method,
            total_cents=0,
            staff_id=sale_staff.id if sale_staff else None,
            created_by_user_id=actor_user_id,
            note=note,
            created_at=utcnow(),
        )
        db.session.add(sale)
        db.session.flush()

        total = 0
        for position, (req, product, service, line_staff, unit_price) in enumerate(resolved, start=1):
            line_total = unit_price * req.quantity
            line = SaleLine(
                sale_id=sale.id,
                position=position,
                product_id=product.id if product else None,
                service_id=service.id if service else None,
                staff_id=line_staff.id if line_staff else None,
                quantity=req.quantity,
                unit_price_cents=unit_price,
                unit_cost_cents=product.cost_cents if product else None,
                line_total_cents=line_total,
            )
            db.session.add(line)
            db.session.flush()
            total += line_total

            if product is not None:
                stock_service.decrement(
                    product.id,
                    req.quantity,
                    reason=f"Sale #{sale.id}",
                    actor_user_id=actor_user_id,
                    sale_id=sale.id,
                    commit=False,
                )
            elif line_staff is not None:
                commission_service.accrue(
                    line_staff.id,
                    line.id,
                    commission_service.commission_for(line_total, line_staff.commission_rate_bps),
                )

        sale.total_cents = total
        db.session.commit()
        return sale

    sale = run_with_retry(_op)

    ttl = token_ttl if token_ttl is not None else claim_token_service.default_ttl()
    token = claim_token_service.issue(sale.id, ttl)

    current_app.logger.info("Sale #%s created pending (total_cents=%s)", sale.id, sale.total_cents)
    return CheckoutResult(sale=sale, claim_token=token, expires_in=int(ttl.total_seconds()))


# =============================================================================
# TRANSITIONS
# =============================================================================

def _transition_from_pending(sale_id: int, values: dict) -> bool:
    """Conditional UPDATE; True if this call moved the sale out of PENDING."""
    result = db.session.execute(
        update(Sale)
        .where(Sale.id == sale_id, Sale.status == SALE_PENDING)
        .values(version_id=Sale.version_id + 1, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _reload(sale_id: int) -> Sale | None:
    return db.session.get(Sale, sale_id, populate_existing=True)


def _confirm_locked(sale_id: int, actor_user_id: int | None) -> tuple[Sale, bool]:
    won = _transition_from_pending(sale_id, {
        "status": SALE_COMPLETED,
        "completed_at": utcnow(),
        "completed_by_user_id": actor_user_id,
    })
    sale = _reload(sale_id)
    if sale is None:
        raise SaleNotFoundError(f"Sale {sale_id} not found")
    if won:
        return sale, True
    if sale.status == SALE_COMPLETED:
        return sale, False
    raise SaleStateError(f"Cannot confirm a {sale.status.lower()} sale")


def confirm(sale_id: int, actor_user_id: int | None = None) -> SettlementResult:
    """
    Confirm a pending sale (manual override, no claim code).

    Already COMPLETED -> success, nothing changes. CANCELLED -> SaleStateError.
    """
    def _op():
        sale, changed = _confirm_locked(sale_id, actor_user_id)
        db.session.commit()
        return SettlementResult(sale=sale, changed=changed)

    result = run_with_retry(_op)
    if result.changed:
        current_app.logger.info("Sale #%s confirmed manually", sale_id)
    return result


def _award_loyalty_stamp(sale_id: int, customer_id: int) -> dict | None:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        current_app.logger.info("No loyalty card for customer %s; sale #%s confirmed without a stamp", customer_id, sale_id)
        return None

    awarded = True
    try:
        with db.session.begin_nested():
            db.session.add(LoyaltyClaim(sale_id=sale_id, customer_id=customer_id, claimed_at=utcnow()))
    except IntegrityError:
        awarded = False

    if awarded:
        db.session.execute(
            update(Customer)
            .where(Customer.id == customer_id)
            .values(loyalty_points=Customer.loyalty_points + 1, last_visit_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        customer = db.session.get(Customer, customer_id, populate_existing=True)

    per_reward = current_app.config.get("LOYALTY_STAMPS_PER_REWARD", 10)
    return {
        "stamp_awarded": awarded,
        "points": customer.loyalty_points,
        "points_to_reward": per_reward - (customer.loyalty_points % per_reward),
    }


def confirm_by_token(
    token: str,
    customer_id: int | None = None,
    actor_user_id: int | None = None,
) -> SettlementResult:
    """
    Customer redemption of a claim code.

    The token is checked first without touching the database; expired and
    invalid codes raise claim_token_service errors. A redeeming customer gets
    one loyalty stamp per sale, ever. A customer with no loyalty card still
    confirms the sale; loyalty is then None.
    """
    sale_id = claim_token_service.verify(token)

    def _op():
        try:
            sale, changed = _confirm_locked(sale_id, actor_user_id)
        except SaleNotFoundError:
            # A signed token for a missing sale is treated like any bad code
            raise claim_token_service.ClaimTokenInvalidError()

        loyalty = None
        if customer_id is not None:
            loyalty = _award_loyalty_stamp(sale_id, customer_id)

        db.session.commit()
        return SettlementResult(sale=sale, changed=changed, loyalty=loyalty)

    result = run_with_retry(_op)
    if result.changed:
        current_app.logger.info("Sale #%s confirmed by claim code", sale_id)
    return result


def cancel(sale_id: int, actor_user_id: int | None = None) -> SettlementResult:
    """
    Cancel a pending sale and compensate.

    For every product line stock is put back (with an IN movement); every
    commission accrual on the sale's lines is deleted. Already CANCELLED ->
    success, nothing changes. COMPLETED -> SaleStateError.
    """
    def _op():
        won = _transition_from_pending(sale_id, {
            "status": SALE_CANCELLED,
            "cancelled_at": utcnow(),
            "cancelled_by_user_id": actor_user_id,
        })
        sale = _reload(sale_id)
        if sale is None:
            raise SaleNotFoundError(f"Sale {sale_id} not found")
        if not won:
            if sale.status == SALE_CANCELLED:
                db.session.rollback()
                return SettlementResult(sale=sale, changed=False)
            raise SaleStateError("Cannot cancel a completed sale")

        lines = db.session.query(SaleLine).filter_by(sale_id=sale_id).order_by(SaleLine.position).all()
        for line in lines:
            if line.product_id is not None:
                stock_service.increment(
                    line.product_id,
                    line.quantity,
                    reason=f"Sale #{sale_id} cancelled",
                    actor_user_id=actor_user_id,
                    sale_id=sale_id,
                    commit=False,
                )
        commission_service.delete_by_sale_line_ids([line.id for line in lines])

        db.session.commit()
        return SettlementResult(sale=sale, changed=True)

    result = run_with_retry(_op)
    if result.changed:
        current_app.logger.info("Sale #%s cancelled; stock and commissions reverted", sale_id)
    return result


# =============================================================================
# READS
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise SaleNotFoundError(f"Sale {sale_id} not found")
    return sale


def list_sales(
    status: str | None = SALE_COMPLETED,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    staff_id: int | None = None,
    limit: int = 200,
) -> list[Sale]:
    """Sales newest first; completed only unless another status is asked for."""
    query = db.session.query(Sale)
    if status:
        query = query.filter(Sale.status == status.upper())
    if date_from is not None:
        query = query.filter(Sale.created_at >= date_from)
    if date_to is not None:
        query = query.filter(Sale.created_at < date_to)
    if staff_id is not None:
        query = query.filter(Sale.staff_id == staff_id)
    return query.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()


def daily_summary(day: date) -> dict:
    """Completed-sale count and totals per payment method for one UTC day."""
    start, end = day_bounds(day)
    rows = db.session.query(
        Sale.payment_method,
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_cents), 0),
    ).filter(
        Sale.status == SALE_COMPLETED,
        Sale.created_at >= start,
        Sale.created_at < end,
    ).group_by(Sale.payment_method).all()

    by_method = {method: 0 for method in PAYMENT_METHODS}
    count = 0
    for method, n, total in rows:
        by_method[method] = int(total or 0)
        count += int(n or 0)

    return {
        "date": day.isoformat(),
        "sales_count": count,
        "total_cents": sum(by_method.values()),
        "by_payment_method": by_method,
    }
