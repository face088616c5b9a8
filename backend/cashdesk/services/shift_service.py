"""
Shift Ledger - cash-drawer open / status / close

WHY: The drawer must be reconciled at the end of every shift: opening float
plus cash taken minus cash removed should match what is physically counted.

DESIGN PRINCIPLES:
- At most one open shift (partial unique index on status = 'OPEN')
- Running figures are computed on demand, never cached
- Status, breakdown and close share one aggregation (_SaleScope)
- Close is all-or-nothing: sales assigned, movements back-filled, totals
  stored and closed_at set in a single transaction
- Closed shifts are immutable

WINDOWS:
- Sales: COMPLETED, not yet assigned to a shift, completed_at <= cutoff.
  A sale confirmed after one shift's cutoff lands in the next shift.
- Cash movements: not yet assigned, occurred_at <= cutoff. Same rule as
  sales, so a movement written while a close commits lands in the next shift.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Shift, Sale, SaleLine, Product, Service, CashMovement
from ..models.sales import SALE_COMPLETED, PAYMENT_METHODS
from ..models.shifts import (
    SHIFT_OPEN,
    SHIFT_CLOSED,
    CLOSING_MODES,
    CLOSING_MODE_TRANSPARENT,
    CASH_IN,
    CASH_OUT,
)
from ..validation import ConflictError, ValidationError, optional_text, require_non_negative_cents
from cashdesk.time_utils import utcnow, to_utc_z
from . import cash_movement_service
from .concurrency import lock_for_update, run_with_retry


CASH_METHOD = "CASH"


class ShiftAlreadyOpenError(ConflictError):
    """Raised when opening a shift while another is open."""


class ShiftNotOpenError(ConflictError):
    """Raised when an operation needs an open shift and there is none."""


class ShiftNotFoundError(LookupError):
    """Raised when a shift id does not exist."""


@dataclass
class ShiftTotals:
    opening_float_cents: int
    cash_sales_cents: int
    cash_in_cents: int
    cash_out_cents: int

    @property
    def expected_cash_cents(self) -> int:
        return self.opening_float_cents + self.cash_sales_cents + self.cash_in_cents - self.cash_out_cents

    def to_dict(self) -> dict:
        return {
            "opening_float_cents": self.opening_float_cents,
            "cash_sales_cents": self.cash_sales_cents,
            "cash_in_cents": self.cash_in_cents,
            "cash_out_cents": self.cash_out_cents,
            "expected_cash_cents": self.expected_cash_cents,
        }


@dataclass
class ShiftStatus:
    shift: Shift | None
    totals: ShiftTotals | None = None

    @property
    def is_open(self) -> bool:
        return self.shift is not None


@dataclass
class ReconciliationResult:
    shift: Shift
    totals: ShiftTotals
    counted_cash_cents: int
    discrepancy_cents: int
    breakdown: dict


# =============================================================================
# AGGREGATION SCOPE
# =============================================================================

class _SaleScope:
    """
    Which sales and movements belong to a shift.

    Open shift: unassigned rows up to a cutoff. Closed shift: rows stamped
    with its id. Every figure (status, breakdown, close) goes through here.
    """

    def __init__(self, shift: Shift, cutoff: datetime | None = None):
        self.shift = shift
        self.cutoff = cutoff
        self.assigned = shift.status == SHIFT_CLOSED

    def sale_criteria(self) -> list:
        if self.assigned:
            return [Sale.shift_id == self.shift.id, Sale.status == SALE_COMPLETED]
        # No lower bound at opened_at: a sale confirmed between shifts belongs to the next one.
        return [
            Sale.status == SALE_COMPLETED,
            Sale.shift_id.is_(None),
            Sale.completed_at <= self.cutoff,
        ]

    def movements(self, direction: str | None = None) -> list[CashMovement]:
        if self.assigned:
            rows = cash_movement_service.list_for_shift(self.shift.id)
            if direction is not None:
                rows = [m for m in rows if m.direction == direction]
            return rows
        return cash_movement_service.list_unassigned(self.cutoff, direction)

    def movement_total(self, direction: str) -> int:
        if self.assigned:
            total = db.session.query(func.coalesce(func.sum(CashMovement.amount_cents), 0)).filter(
                CashMovement.shift_id == self.shift.id,
                CashMovement.direction == direction,
            ).scalar()
            return int(total or 0)
        return cash_movement_service.total_unassigned(direction, self.cutoff)


def _totals(scope: _SaleScope) -> ShiftTotals:
    cash_sales = db.session.query(func.coalesce(func.sum(Sale.total_cents), 0)).filter(
        Sale.payment_method == CASH_METHOD,
        *scope.sale_criteria(),
    ).scalar()

    return ShiftTotals(
        opening_float_cents=scope.shift.opening_float_cents,
        cash_sales_cents=int(cash_sales or 0),
        cash_in_cents=scope.movement_total(CASH_IN),
        cash_out_cents=scope.movement_total(CASH_OUT),
    )


def _by_payment_method(scope: _SaleScope) -> list[dict]:
    rows = db.session.query(
        Sale.payment_method,
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_cents), 0),
    ).filter(*scope.sale_criteria()).group_by(Sale.payment_method).all()

    found = {method: (int(n or 0), int(total or 0)) for method, n, total in rows}
    return [
        {
            "payment_method": method,
            "transactions": found.get(method, (0, 0))[0],
            "total_cents": found.get(method, (0, 0))[1],
        }
        for method in PAYMENT_METHODS
    ]


def _by_department(scope: _SaleScope) -> dict:
    """
    Services vs products. Service margin is the full line total; product
    margin is (unit price - unit cost at sale time) x quantity.
    """
    service_rows = db.session.query(
        Service.id,
        Service.name,
        func.count(SaleLine.id),
        func.coalesce(func.sum(SaleLine.line_total_cents), 0),
    ).join(Sale, SaleLine.sale_id == Sale.id).join(
        Service, SaleLine.service_id == Service.id
    ).filter(*scope.sale_criteria()).group_by(Service.id, Service.name).order_by(Service.name).all()

    margin_expr = (SaleLine.unit_price_cents - func.coalesce(SaleLine.unit_cost_cents, 0)) * SaleLine.quantity
    product_rows = db.session.query(
        Product.category,
        Product.id,
        Product.name,
        func.coalesce(func.sum(SaleLine.quantity), 0),
        func.coalesce(func.sum(SaleLine.line_total_cents), 0),
        func.coalesce(func.sum(margin_expr), 0),
    ).join(Sale, SaleLine.sale_id == Sale.id).join(
        Product, SaleLine.product_id == Product.id
    ).filter(*scope.sale_criteria()).group_by(
        Product.category, Product.id, Product.name
    ).order_by(Product.category, Product.name).all()

    services = [
        {
            "department": "Services",
            "service_id": service_id,
            "name": name,
            "quantity": int(count or 0),
            "total_cents": int(total or 0),
            "margin_cents": int(total or 0),
        }
        for service_id, name, count, total in service_rows
    ]
    products = [
        {
            "department": category or "Uncategorized",
            "product_id": product_id,
            "name": name,
            "quantity": int(qty or 0),
            "total_cents": int(total or 0),
            "margin_cents": int(margin or 0),
        }
        for category, product_id, name, qty, total, margin in product_rows
    ]
    return {"services": services, "products": products}


def _breakdown(scope: _SaleScope, totals: ShiftTotals) -> dict:
    by_method = _by_payment_method(scope)
    by_department = _by_department(scope)

    total_sales = sum(row["total_cents"] for row in by_method)
    total_margin = (
        sum(row["margin_cents"] for row in by_department["services"])
        + sum(row["margin_cents"] for row in by_department["products"])
    )

    return {
        "summary": {
            "total_sales_cents": total_sales,
            "total_margin_cents": total_margin,
            "expected_cash_cents": totals.expected_cash_cents,
        },
        "by_payment_method": by_method,
        "by_department": by_department,
        "cash_composition": totals.to_dict(),
        "movements": {
            "in": [m.to_dict() for m in scope.movements(CASH_IN)],
            "out": [m.to_dict() for m in scope.movements(CASH_OUT)],
        },
    }


# =============================================================================
# SHIFT LIFECYCLE
# =============================================================================

def get_open_shift() -> Shift | None:
    return db.session.query(Shift).filter_by(status=SHIFT_OPEN).first()


def _require_open_shift(*, lock: bool = False) -> Shift:
    query = db.session.query(Shift).filter_by(status=SHIFT_OPEN)
    if lock:
        query = lock_for_update(query)
    shift = query.first()
    if shift is None:
        raise ShiftNotOpenError("No shift is open")
    return shift


def _normalize_closing_mode(closing_mode: str | None) -> str:
    mode = (closing_mode or CLOSING_MODE_TRANSPARENT).strip().upper()
    if mode not in CLOSING_MODES:
        raise ValidationError("closing_mode must be TRANSPARENT or BLIND", field="closing_mode")
    return mode


def open_shift(opening_float_cents, opened_by_user_id: int, closing_mode: str | None = None) -> Shift:
    """
    Open the drawer with a starting float.

    Raises ShiftAlreadyOpenError if a shift is open. The unique index is the
    final word when two supervisors race.
    """
    opening_float = require_non_negative_cents(opening_float_cents, "opening_float_cents")
    mode = _normalize_closing_mode(closing_mode)

    existing = get_open_shift()
    if existing is not None:
        raise ShiftAlreadyOpenError(f"A shift is already open (shift {existing.id})")

    shift = Shift(
        status=SHIFT_OPEN,
        closing_mode=mode,
        opening_float_cents=opening_float,
        opened_at=utcnow(),
        opened_by_user_id=opened_by_user_id,
    )
    db.session.add(shift)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ShiftAlreadyOpenError("A shift is already open")

    current_app.logger.info(
        "Shift %s opened by user %s (float_cents=%s, mode=%s)", shift.id, opened_by_user_id, opening_float, mode
    )
    return shift


def current_status() -> ShiftStatus:
    """Closed, or open with the running totals as of now."""
    shift = get_open_shift()
    if shift is None:
        return ShiftStatus(shift=None)
    return ShiftStatus(shift=shift, totals=_totals(_SaleScope(shift, utcnow())))


def breakdown() -> dict:
    """Reporting view of the open shift, as of now."""
    shift = _require_open_shift()
    scope = _SaleScope(shift, utcnow())
    return _breakdown(scope, _totals(scope))


def record_cash_movement(direction: str, amount_cents, description, actor_user_id: int) -> CashMovement:
    """Manual cash-in / cash-out; only while a shift is open."""

    def _op():
        _require_open_shift(lock=True)
        movement = cash_movement_service.record(direction, amount_cents, description, actor_user_id, commit=False)
        db.session.commit()
        return movement

    movement = run_with_retry(_op)
    current_app.logger.info(
        "Cash %s of %s cents recorded by user %s", movement.direction, movement.amount_cents, actor_user_id
    )
    return movement


def close_shift(counted_cash_cents, notes: str | None, closed_by_user_id: int) -> ReconciliationResult:
    """
    Count the drawer and close the shift.

    One cutoff is taken at the start and used for every step. Sales and
    movements are stamped with the shift id first and the stored totals are
    then read back from exactly those rows. Any failure rolls everything back
    and leaves the shift open.
    """
    counted = require_non_negative_cents(counted_cash_cents, "counted_cash_cents")
    notes = optional_text(notes, "notes", max_length=2000)

    def _op():
        shift = _require_open_shift(lock=True)

        cutoff = utcnow()
        open_scope = _SaleScope(shift, cutoff)

        db.session.execute(
            update(Sale)
            .where(*open_scope.sale_criteria())
            .values(shift_id=shift.id)
            .execution_options(synchronize_session=False)
        )
        cash_movement_service.backfill_shift(shift.id, until=cutoff)

        shift.status = SHIFT_CLOSED
        shift.closed_at = cutoff
        shift.closed_by_user_id = closed_by_user_id
        db.session.flush()

        closed_scope = _SaleScope(shift)
        totals = _totals(closed_scope)
        report = _breakdown(closed_scope, totals)
        discrepancy = counted - totals.expected_cash_cents

        shift.cash_sales_cents = totals.cash_sales_cents
        shift.cash_in_cents = totals.cash_in_cents
        shift.cash_out_cents = totals.cash_out_cents
        shift.expected_cash_cents = totals.expected_cash_cents
        shift.counted_cash_cents = counted
        shift.discrepancy_cents = discrepancy
        shift.total_sales_cents = report["summary"]["total_sales_cents"]
        shift.total_margin_cents = report["summary"]["total_margin_cents"]
        shift.notes = notes

        db.session.commit()
        return ReconciliationResult(
            shift=shift,
            totals=totals,
            counted_cash_cents=counted,
            discrepancy_cents=discrepancy,
            breakdown=report,
        )

    result = run_with_retry(_op)
    current_app.logger.info(
        "Shift %s closed by user %s (expected_cents=%s, counted_cents=%s, discrepancy_cents=%s)",
        result.shift.id,
        closed_by_user_id,
        result.totals.expected_cash_cents,
        result.counted_cash_cents,
        result.discrepancy_cents,
    )
    return result


# =============================================================================
# HISTORY
# =============================================================================

def get_shift(shift_id: int) -> Shift:
    shift = db.session.get(Shift, shift_id)
    if shift is None:
        raise ShiftNotFoundError(f"Shift {shift_id} not found")
    return shift


def shift_report(shift_id: int) -> dict:
    """Breakdown of a closed shift, read from the rows assigned to it."""
    shift = get_shift(shift_id)
    if shift.status != SHIFT_CLOSED:
        raise ShiftNotOpenError("Shift is still open; use the current breakdown")
    scope = _SaleScope(shift)
    return _breakdown(scope, _totals(scope))


def shift_history(limit: int | None = None) -> list[Shift]:
    if limit is None:
        limit = current_app.config.get("SHIFT_HISTORY_LIMIT", 30)
    limit = max(1, limit)
    return (
        db.session.query(Shift)
        .filter_by(status=SHIFT_CLOSED)
        .order_by(Shift.opened_at.desc(), Shift.id.desc())
        .limit(limit)
        .all()
    )


EXPORT_COLUMNS = (
    "id",
    "opened_at",
    "closed_at",
    "opened_by_user_id",
    "closed_by_user_id",
    "closing_mode",
    "opening_float_cents",
    "cash_sales_cents",
    "cash_in_cents",
    "cash_out_cents",
    "expected_cash_cents",
    "counted_cash_cents",
    "discrepancy_cents",
    "total_sales_cents",
    "total_margin_cents",
    "notes",
)


def export_shift_history_csv(limit: int | None = None) -> str:
    """Flat CSV dump of closed shifts, newest first."""
    if limit is None:
        limit = current_app.config.get("SHIFT_EXPORT_LIMIT", 100)

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)
    for shift in shift_history(limit):
        row = shift.to_dict()
        row["opened_at"] = to_utc_z(shift.opened_at)
        row["closed_at"] = to_utc_z(shift.closed_at)
        writer.writerow([row.get(col) if row.get(col) is not None else "" for col in EXPORT_COLUMNS])
    return buffer.getvalue()
