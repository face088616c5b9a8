from __future__ import annotations

from ..extensions import db
from cashdesk.time_utils import to_utc_z


SALE_PENDING = "PENDING"
SALE_COMPLETED = "COMPLETED"
SALE_CANCELLED = "CANCELLED"

PAYMENT_METHODS = ("CASH", "CARD", "TRANSFER")


class Sale(db.Model):
    """
    One checkout transaction.

    LIFECYCLE:
    - PENDING: created at checkout; stock and commission accruals already applied
    - COMPLETED: confirmed by claim token or manual override (terminal)
    - CANCELLED: stock restored, accruals removed (terminal)

    Sales are never deleted. shift_id stays NULL until the shift that
    counted this sale is closed.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint("status IN ('PENDING', 'COMPLETED', 'CANCELLED')", name="ck_sales_status"),
        db.CheckConstraint("payment_method IN ('CASH', 'CARD', 'TRANSFER')", name="ck_sales_payment_method"),
        # Shift aggregation: completed, unassigned, by completion time
        db.Index("ix_sales_status_shift_completed", "status", "shift_id", "completed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    status = db.Column(db.String(16), nullable=False, default=SALE_PENDING, index=True)
    payment_method = db.Column(db.String(16), nullable=False)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    staff_id = db.Column(db.Integer, db.ForeignKey("staff_members.id"), nullable=True, index=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.Text, nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by_user_id = db.Column(db.Integer, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)

    # Set when the owning shift closes
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    staff = db.relationship("StaffMember")
    lines = db.relationship("SaleLine", back_populates="sale", lazy=True, order_by="SaleLine.position")

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "status": self.status,
            "payment_method": self.payment_method,
            "total_cents": self.total_cents,
            "staff_id": self.staff_id,
            "created_by_user_id": self.created_by_user_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "completed_by_user_id": self.completed_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "shift_id": self.shift_id,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """
    Line item: exactly one of product_id / service_id.

    unit_cost_cents is the product cost captured at checkout; margin
    reporting uses it so later cost edits do not rewrite closed figures.
    """
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint(
            "(product_id IS NULL) <> (service_id IS NULL)",
            name="ck_sale_lines_product_xor_service",
        ),
        db.CheckConstraint("quantity > 0", name="ck_sale_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=True, index=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff_members.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=True)
    line_total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="lines")
    product = db.relationship("Product")
    service = db.relationship("Service")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "position": self.position,
            "product_id": self.product_id,
            "service_id": self.service_id,
            "staff_id": self.staff_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "line_total_cents": self.line_total_cents,
        }


class LoyaltyClaim(db.Model):
    """
    Record of the loyalty stamp awarded for a sale's claim token.

    One row per sale at most (unique sale_id); the insert is the at-most-once
    guard for the loyalty side effect of redemption.
    """
    __tablename__ = "loyalty_claims"
    __table_args__ = (
        db.UniqueConstraint("sale_id", name="uq_loyalty_claims_sale"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    claimed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "customer_id": self.customer_id,
            "claimed_at": to_utc_z(self.claimed_at),
        }
