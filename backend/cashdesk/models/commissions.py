from __future__ import annotations

from ..extensions import db
from cashdesk.time_utils import to_utc_z


class CommissionAccrual(db.Model):
    """
    Provisional commission owed to a staff member for one service line.

    amount_cents is fixed at checkout (line subtotal x rate at that time).
    Deleted when the owning sale is cancelled; flipped to paid by a payout.
    """
    __tablename__ = "commission_accruals"
    __table_args__ = (
        db.UniqueConstraint("sale_line_id", name="uq_commission_accruals_sale_line"),
        db.Index("ix_commission_accruals_staff_paid", "staff_id", "is_paid"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff_members.id"), nullable=False)
    sale_line_id = db.Column(db.Integer, db.ForeignKey("sale_lines.id"), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    is_paid = db.Column(db.Boolean, nullable=False, default=False)
    payout_id = db.Column(db.Integer, db.ForeignKey("commission_payouts.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "staff_id": self.staff_id,
            "sale_line_id": self.sale_line_id,
            "amount_cents": self.amount_cents,
            "is_paid": self.is_paid,
            "payout_id": self.payout_id,
            "created_at": to_utc_z(self.created_at),
        }


class CommissionPayout(db.Model):
    """Who paid which staff member how much, and when."""
    __tablename__ = "commission_payouts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff_members.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    paid_by_user_id = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "staff_id": self.staff_id,
            "amount_cents": self.amount_cents,
            "paid_by_user_id": self.paid_by_user_id,
            "notes": self.notes,
            "paid_at": to_utc_z(self.paid_at),
        }
