# Overview: Service-layer operations for product stock; the only writer of quantity_on_hand.

from sqlalchemy import update

from ..extensions import db
from ..models import Product, StockMovement
from ..validation import ConflictError, ValidationError
from cashdesk.time_utils import utcnow
"""
Stock Invariants (authoritative)

- quantity_on_hand never goes negative. The guard is a single conditional
  UPDATE (... WHERE quantity_on_hand >= :qty), evaluated by the store under
  its write lock, so two checkouts racing for the last unit cannot both win.
- increment is unconditional and used only for compensations.
- Every mutation writes exactly one StockMovement row in the same DB
  transaction.
"""


STOCK_IN = "IN"
STOCK_OUT = "OUT"


class InsufficientStockError(ConflictError):
    """Raised when a decrement would take on-hand quantity below zero."""


class ProductNotFoundError(ValidationError):
    """Raised when a stock operation references an unknown product."""


def _require_quantity(quantity: int) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer", field="quantity")


def get_quantity_on_hand(product_id: int) -> int:
    on_hand = db.session.query(Product.quantity_on_hand).filter(Product.id == product_id).scalar()
    if on_hand is None:
        raise ProductNotFoundError(f"Product {product_id} not found", field="product_id")
    return int(on_hand)


def check_available(requested: dict[int, int]) -> None:
    """
    Read-only pre-check over {product_id: total quantity}.

    Reports every shortfall at once so checkout can fail before any
    mutation. The conditional decrement remains the real guard.
    """
    shortfalls = []
    for product_id, qty in requested.items():
        on_hand = get_quantity_on_hand(product_id)
        if on_hand < qty:
            shortfalls.append({
                "product_id": product_id,
                "requested_quantity": qty,
                "on_hand": on_hand,
            })
    if shortfalls:
        raise InsufficientStockError(
            "Insufficient stock",
            details={"items": shortfalls},
        )


def _record_movement(
    product_id: int,
    direction: str,
    quantity: int,
    reason: str | None,
    actor_user_id: int | None,
    sale_id: int | None,
) -> StockMovement:
    movement = StockMovement(
        product_id=product_id,
        direction=direction,
        quantity=quantity,
        reason=reason,
        actor_user_id=actor_user_id,
        sale_id=sale_id,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def decrement(
    product_id: int,
    quantity: int,
    *,
    reason: str | None = None,
    actor_user_id: int | None = None,
    sale_id: int | None = None,
    commit: bool = True,
) -> StockMovement:
    """
    Atomic compare-and-decrement of on-hand stock.

    Raises InsufficientStockError when fewer than `quantity` units remain.
    With commit=False the caller owns the transaction (checkout).
    """
    _require_quantity(quantity)

    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id, Product.quantity_on_hand >= quantity)
        .values(quantity_on_hand=Product.quantity_on_hand - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        on_hand = get_quantity_on_hand(product_id)
        if commit:
            db.session.rollback()
        raise InsufficientStockError(
            f"Insufficient stock for product {product_id}. Available: {on_hand}",
            details={"items": [{
                "product_id": product_id,
                "requested_quantity": quantity,
                "on_hand": on_hand,
            }]},
        )

    movement = _record_movement(product_id, STOCK_OUT, quantity, reason, actor_user_id, sale_id)
    _expire_product(product_id)

    if commit:
        db.session.commit()
    return movement


def increment(
    product_id: int,
    quantity: int,
    *,
    reason: str | None = None,
    actor_user_id: int | None = None,
    sale_id: int | None = None,
    commit: bool = True,
) -> StockMovement:
    """Unconditional restock; compensations only."""
    _require_quantity(quantity)

    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(quantity_on_hand=Product.quantity_on_hand + quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ProductNotFoundError(f"Product {product_id} not found", field="product_id")

    movement = _record_movement(product_id, STOCK_IN, quantity, reason, actor_user_id, sale_id)
    _expire_product(product_id)

    if commit:
        db.session.commit()
    return movement


def _expire_product(product_id: int) -> None:
    # Bulk UPDATE bypasses the identity map; drop any stale loaded copy.
    product = db.session.identity_map.get(db.session.identity_key(Product, product_id))
    if product is not None:
        db.session.expire(product, ["quantity_on_hand"])


def list_movements(product_id: int, limit: int = 100) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )
