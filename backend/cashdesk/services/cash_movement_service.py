# Overview: Service-layer operations for manual cash-in / cash-out on the drawer.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import CashMovement
from ..models.shifts import CASH_IN, CASH_OUT
from ..validation import ValidationError, require_positive_cents, require_text
from cashdesk.time_utils import utcnow
"""
Cash Movement Log Invariants

- Append-only: rows are never updated except for the one-time shift_id
  back-fill at shift close, and never deleted.
- amount_cents > 0; direction carries the sign.
- Open-shift queries cover every unassigned row with occurred_at <= until.
  There is no lower bound, so a row written while a close commits is
  picked up by the next shift.
"""


DIRECTIONS = (CASH_IN, CASH_OUT)


def _require_direction(direction: str) -> str:
    value = (direction or "").strip().upper()
    if value not in DIRECTIONS:
        raise ValidationError("direction must be IN or OUT", field="direction")
    return value


def record(
    direction: str,
    amount_cents,
    description,
    actor_user_id: int,
    *,
    occurred_at: datetime | None = None,
    commit: bool = True,
) -> CashMovement:
    """Append a manual drawer movement. Rejects non-positive amounts and blank descriptions."""
    movement = CashMovement(
        direction=_require_direction(direction),
        amount_cents=require_positive_cents(amount_cents, "amount_cents"),
        description=require_text(description, "description"),
        actor_user_id=actor_user_id,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(movement)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return movement


def _unassigned(query, until: datetime | None):
    query = query.filter(CashMovement.shift_id.is_(None))
    if until is not None:
        query = query.filter(CashMovement.occurred_at <= until)
    return query


def total_unassigned(
    direction: str,
    until: datetime | None = None,
) -> int:
    q = db.session.query(func.coalesce(func.sum(CashMovement.amount_cents), 0)).filter(
        CashMovement.direction == _require_direction(direction)
    )
    return int(_unassigned(q, until).scalar() or 0)


def list_unassigned(
    until: datetime | None = None,
    direction: str | None = None,
) -> list[CashMovement]:
    q = db.session.query(CashMovement)
    if direction is not None:
        q = q.filter(CashMovement.direction == _require_direction(direction))
    q = _unassigned(q, until)
    return q.order_by(CashMovement.occurred_at.asc(), CashMovement.id.asc()).all()


def backfill_shift(shift_id: int, until: datetime | None = None) -> int:
    """
    Attach every still-unassigned movement up to `until` to a shift.

    Only rows with shift_id IS NULL are touched, so a movement is never
    moved from one shift to another. Never commits.
    """
    q = _unassigned(db.session.query(CashMovement), until)
    return q.update({"shift_id": shift_id}, synchronize_session=False)


def list_for_shift(shift_id: int) -> list[CashMovement]:
    return (
        db.session.query(CashMovement)
        .filter_by(shift_id=shift_id)
        .order_by(CashMovement.occurred_at.asc(), CashMovement.id.asc())
        .all()
    )
