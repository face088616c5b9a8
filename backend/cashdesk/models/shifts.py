from __future__ import annotations

from ..extensions import db
from cashdesk.time_utils import to_utc_z


SHIFT_OPEN = "OPEN"
SHIFT_CLOSED = "CLOSED"

CLOSING_MODE_TRANSPARENT = "TRANSPARENT"  # closer sees the expected figure before counting
CLOSING_MODE_BLIND = "BLIND"              # closer counts first, expected revealed on close
CLOSING_MODES = (CLOSING_MODE_TRANSPARENT, CLOSING_MODE_BLIND)

CASH_IN = "IN"
CASH_OUT = "OUT"


class Shift(db.Model):
    """
    Cash-drawer working period.

    LIFECYCLE:
    - OPEN: drawer in use; totals are computed on demand
    - CLOSED: totals snapshotted, sales and cash movements assigned

    At most one OPEN row exists (partial unique index). Closed shifts are
    immutable.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.Index(
            "uq_shifts_single_open",
            "status",
            unique=True,
            sqlite_where=db.text("status = 'OPEN'"),
            postgresql_where=db.text("status = 'OPEN'"),
        ),
        db.CheckConstraint("status IN ('OPEN', 'CLOSED')", name="ck_shifts_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(16), nullable=False, default=SHIFT_OPEN, index=True)
    closing_mode = db.Column(db.String(16), nullable=False, default=CLOSING_MODE_TRANSPARENT)

    opening_float_cents = db.Column(db.Integer, nullable=False, default=0)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    opened_by_user_id = db.Column(db.Integer, nullable=False)

    # Snapshot taken at close (all amounts in cents)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_by_user_id = db.Column(db.Integer, nullable=True)
    cash_sales_cents = db.Column(db.Integer, nullable=True)
    cash_in_cents = db.Column(db.Integer, nullable=True)
    cash_out_cents = db.Column(db.Integer, nullable=True)
    expected_cash_cents = db.Column(db.Integer, nullable=True)  # float + cash sales + in - out
    counted_cash_cents = db.Column(db.Integer, nullable=True)
    discrepancy_cents = db.Column(db.Integer, nullable=True)  # counted - expected
    total_sales_cents = db.Column(db.Integer, nullable=True)  # all payment methods
    total_margin_cents = db.Column(db.Integer, nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def reveals_expected(self) -> bool:
        return self.closing_mode != CLOSING_MODE_BLIND

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "closing_mode": self.closing_mode,
            "opening_float_cents": self.opening_float_cents,
            "opened_at": to_utc_z(self.opened_at),
            "opened_by_user_id": self.opened_by_user_id,
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "closed_by_user_id": self.closed_by_user_id,
            "cash_sales_cents": self.cash_sales_cents,
            "cash_in_cents": self.cash_in_cents,
            "cash_out_cents": self.cash_out_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "counted_cash_cents": self.counted_cash_cents,
            "discrepancy_cents": self.discrepancy_cents,
            "total_sales_cents": self.total_sales_cents,
            "total_margin_cents": self.total_margin_cents,
            "notes": self.notes,
            "version_id": self.version_id,
        }


class CashMovement(db.Model):
    """
    Manual cash-in / cash-out on the drawer (change fund top-up, supplies, ...).

    Immutable once created. shift_id is back-filled when the shift closes and
    is never reassigned afterwards.
    """
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_cash_movements_amount_positive"),
        db.CheckConstraint("direction IN ('IN', 'OUT')", name="ck_cash_movements_direction"),
        db.Index("ix_cash_movements_direction_occurred", "direction", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    direction = db.Column(db.String(8), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=False)
    actor_user_id = db.Column(db.Integer, nullable=False, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)

    shift = db.relationship("Shift", backref=db.backref("cash_movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "direction": self.direction,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "shift_id": self.shift_id,
        }
