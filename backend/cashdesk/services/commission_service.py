# Overview: Service-layer operations for staff commission accruals and payouts.

"""
Commission Accrual Ledger

WHY: Staff earn a share of every service line they perform. The share is
provisional until paid out, and disappears if the sale is cancelled.

DESIGN PRINCIPLES:
- One accrual per service line with a staff member assigned
- Amount fixed at checkout (rate changes never rewrite history)
- Payout sums and marks the same locked snapshot of unpaid rows
"""

from flask import current_app
from sqlalchemy import case, func

from ..extensions import db
from ..models import CommissionAccrual, CommissionPayout, StaffMember
from ..validation import ConflictError, ValidationError, round_half_up_div
from cashdesk.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry


class CommissionError(ValidationError):
    """Raised for commission input errors."""


class NoPendingCommissionsError(ConflictError):
    """Raised when a payout is requested but nothing is owed."""


def commission_for(subtotal_cents: int, rate_bps: int) -> int:
    """subtotal x rate, nearest cent (half-up)."""
    return round_half_up_div(subtotal_cents * rate_bps, 10_000)


def accrue(staff_id: int, sale_line_id: int, amount_cents: int) -> CommissionAccrual:
    """
    Record a provisional commission. Never commits; checkout owns the
    transaction.
    """
    if amount_cents < 0:
        raise CommissionError("Commission amount cannot be negative")

    accrual = CommissionAccrual(
        staff_id=staff_id,
        sale_line_id=sale_line_id,
        amount_cents=amount_cents,
        is_paid=False,
        created_at=utcnow(),
    )
    db.session.add(accrual)
    db.session.flush()
    return accrual


def delete_by_sale_line_ids(sale_line_ids: list[int]) -> int:
    """Remove accruals for the given lines (sale cancellation). Never commits."""
    if not sale_line_ids:
        return 0
    return (
        db.session.query(CommissionAccrual)
        .filter(CommissionAccrual.sale_line_id.in_(sale_line_ids))
        .delete(synchronize_session=False)
    )


def unpaid_total(staff_id: int) -> int:
    total = db.session.query(
        func.coalesce(func.sum(CommissionAccrual.amount_cents), 0)
    ).filter(
        CommissionAccrual.staff_id == staff_id,
        CommissionAccrual.is_paid.is_(False),
    ).scalar()
    return int(total or 0)


def _require_staff(staff_id: int) -> StaffMember:
    staff = db.session.get(StaffMember, staff_id)
    if staff is None:
        raise CommissionError("Staff member not found", field="staff_id")
    return staff


def commissions_for_staff(staff_id: int) -> dict:
    """Accrual list plus pending/paid totals for one staff member."""
    _require_staff(staff_id)

    accruals = (
        db.session.query(CommissionAccrual)
        .filter_by(staff_id=staff_id)
        .order_by(CommissionAccrual.created_at.desc(), CommissionAccrual.id.desc())
        .all()
    )
    totals = db.session.query(
        func.coalesce(func.sum(case((CommissionAccrual.is_paid.is_(False), CommissionAccrual.amount_cents), else_=0)), 0),
        func.coalesce(func.sum(case((CommissionAccrual.is_paid.is_(True), CommissionAccrual.amount_cents), else_=0)), 0),
    ).filter(CommissionAccrual.staff_id == staff_id).one()

    return {
        "staff_id": staff_id,
        "accruals": [a.to_dict() for a in accruals],
        "totals": {
            "pending_cents": int(totals[0] or 0),
            "paid_cents": int(totals[1] or 0),
        },
    }


def mark_all_paid(staff_id: int, payout_id: int | None = None) -> int:
    """
    Mark every unpaid accrual of a staff member as paid; returns the sum.

    The unpaid rows are locked and summed, then exactly those ids are
    flipped, so an accrual created concurrently is either in both the sum
    and the update, or in neither. Never commits.
    """
    rows = lock_for_update(
        db.session.query(CommissionAccrual).filter(
            CommissionAccrual.staff_id == staff_id,
            CommissionAccrual.is_paid.is_(False),
        )
    ).all()

    paid_total = sum(row.amount_cents for row in rows)
    ids = [row.id for row in rows]
    if ids:
        db.session.query(CommissionAccrual).filter(
            CommissionAccrual.id.in_(ids),
            CommissionAccrual.is_paid.is_(False),
        ).update(
            {"is_paid": True, "payout_id": payout_id},
            synchronize_session=False,
        )
        for row in rows:
            db.session.expire(row)
    return paid_total


def pay_commissions(staff_id: int, paid_by_user_id: int, notes: str | None = None) -> CommissionPayout:
    """
    Pay out everything currently owed to a staff member.

    Raises NoPendingCommissionsError when nothing is owed.
    """
    def _op():
        _require_staff(staff_id)

        payout = CommissionPayout(
            staff_id=staff_id,
            amount_cents=0,
            paid_by_user_id=paid_by_user_id,
            notes=notes,
            paid_at=utcnow(),
        )
        db.session.add(payout)
        db.session.flush()

        amount = mark_all_paid(staff_id, payout_id=payout.id)
        if amount <= 0:
            raise NoPendingCommissionsError("No pending commissions")

        payout.amount_cents = amount
        db.session.commit()

        current_app.logger.info(
            "Commissions paid: staff=%s amount_cents=%s by user=%s", staff_id, amount, paid_by_user_id
        )
        return payout

    return run_with_retry(_op)
