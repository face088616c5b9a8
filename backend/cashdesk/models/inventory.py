from __future__ import annotations

from ..extensions import db
from cashdesk.time_utils import to_utc_z


class StockMovement(db.Model):
    """
    Append-only audit row for every change to Product.quantity_on_hand.

    DIRECTIONS:
    - OUT: decrement (sale checkout)
    - IN: increment (compensation on cancel)

    Rows are never updated or deleted.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    direction = db.Column(db.String(8), nullable=False)  # IN, OUT
    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    actor_user_id = db.Column(db.Integer, nullable=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "direction": self.direction,
            "quantity": self.quantity,
            "reason": self.reason,
            "actor_user_id": self.actor_user_id,
            "sale_id": self.sale_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
