from __future__ import annotations

from ..extensions import db
from cashdesk.time_utils import to_utc_z


class Product(db.Model):
    """
    Retail product with an on-hand counter.

    Catalog CRUD lives outside this backend; the settlement engine only reads
    price/cost and mutates quantity_on_hand through stock_service.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("quantity_on_hand >= 0", name="ck_products_on_hand_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    category = db.Column(db.String(64), nullable=True, index=True)

    price_cents = db.Column(db.Integer, nullable=False)
    cost_cents = db.Column(db.Integer, nullable=False, default=0)

    quantity_on_hand = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "quantity_on_hand": self.quantity_on_hand,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Service(db.Model):
    """Bookable service (haircut, shave, ...). No stock."""
    __tablename__ = "services"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "price_cents": self.price_cents,
            "duration_minutes": self.duration_minutes,
            "is_active": self.is_active,
        }


class StaffMember(db.Model):
    """
    Staff member who performs services and earns commission.

    commission_rate_bps is read at sale time only; accruals keep the amount
    computed then.
    """
    __tablename__ = "staff_members"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    commission_rate_bps = db.Column(db.Integer, nullable=False, default=0)  # 1000 = 10%
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "commission_rate_bps": self.commission_rate_bps,
            "is_active": self.is_active,
        }


class Customer(db.Model):
    """Customer account that collects loyalty stamps by redeeming claim tokens."""
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    last_visit_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "loyalty_points": self.loyalty_points,
            "last_visit_at": to_utc_z(self.last_visit_at) if self.last_visit_at else None,
        }
