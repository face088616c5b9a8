"""
Stock service tests.

Verifies:
- Conditional decrement never takes on-hand below zero
- Every mutation writes one stock movement
- Two checkouts racing for the last unit: exactly one wins
"""

import threading

import pytest

from cashdesk.extensions import db
from cashdesk.models import Product, StockMovement
from cashdesk.services import stock_service, sales_service
from cashdesk.services.sales_service import LineRequest
from cashdesk.services.stock_service import InsufficientStockError, ProductNotFoundError
from cashdesk.time_utils import utcnow
from cashdesk.validation import ValidationError


def test_decrement_reduces_on_hand_and_logs_movement(db_session, make_product):
    product = make_product(quantity_on_hand=5)

    movement = stock_service.decrement(product.id, 2, reason="test", actor_user_id=7)

    assert stock_service.get_quantity_on_hand(product.id) == 3
    assert movement.direction == stock_service.STOCK_OUT
    assert movement.quantity == 2
    assert movement.actor_user_id == 7
    assert db_session.query(StockMovement).filter_by(product_id=product.id).count() == 1
    assert [m.id for m in stock_service.list_movements(product.id)] == [movement.id]


def test_decrement_past_zero_fails_without_side_effects(db_session, make_product):
    product = make_product(quantity_on_hand=2)

    with pytest.raises(InsufficientStockError) as exc_info:
        stock_service.decrement(product.id, 3)

    assert exc_info.value.details["items"] == [
        {"product_id": product.id, "requested_quantity": 3, "on_hand": 2}
    ]
    assert stock_service.get_quantity_on_hand(product.id) == 2
    assert db_session.query(StockMovement).count() == 0


def test_decrement_exact_remaining_quantity(db_session, make_product):
    product = make_product(quantity_on_hand=3)
    stock_service.decrement(product.id, 3)
    assert stock_service.get_quantity_on_hand(product.id) == 0


def test_loaded_product_sees_new_quantity(db_session, make_product):
    product = make_product(quantity_on_hand=4)
    assert product.quantity_on_hand == 4

    stock_service.decrement(product.id, 1)

    assert product.quantity_on_hand == 3


def test_increment_is_unconditional(db_session, make_product):
    product = make_product(quantity_on_hand=0)

    movement = stock_service.increment(product.id, 4, reason="restock")

    assert stock_service.get_quantity_on_hand(product.id) == 4
    assert movement.direction == stock_service.STOCK_IN


@pytest.mark.parametrize("quantity", [0, -1, True, 1.5])
def test_rejects_non_positive_or_non_integer_quantity(db_session, make_product, quantity):
    product = make_product()
    with pytest.raises(ValidationError):
        stock_service.decrement(product.id, quantity)


def test_unknown_product(db_session):
    with pytest.raises(ProductNotFoundError):
        stock_service.get_quantity_on_hand(999999)


def test_check_available_reports_every_shortfall(db_session, make_product):
    a = make_product(name="A", quantity_on_hand=1)
    b = make_product(name="B", quantity_on_hand=5)
    c = make_product(name="C", quantity_on_hand=0)

    with pytest.raises(InsufficientStockError) as exc_info:
        stock_service.check_available({a.id: 2, b.id: 5, c.id: 1})

    short_ids = {item["product_id"] for item in exc_info.value.details["items"]}
    assert short_ids == {a.id, c.id}


def test_last_unit_race_has_exactly_one_winner(race_app):
    with race_app.app_context():
        product = Product(name="Last Pomade", price_cents=1500, cost_cents=700, quantity_on_hand=1, created_at=utcnow())
        db.session.add(product)
        db.session.commit()
        product_id = product.id

    workers = 5
    barrier = threading.Barrier(workers)
    outcomes = []
    lock = threading.Lock()

    def checkout():
        with race_app.app_context():
            barrier.wait()
            try:
                sales_service.create_pending_sale([LineRequest(product_id=product_id, service_id=None, quantity=1)])
                result = "ok"
            except InsufficientStockError:
                result = "short"
            except Exception as exc:
                result = f"error: {exc!r}"
            finally:
                db.session.remove()
            with lock:
                outcomes.append(result)

    threads = [threading.Thread(target=checkout) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("short") == workers - 1

    with race_app.app_context():
        assert stock_service.get_quantity_on_hand(product_id) == 0
        assert db.session.query(StockMovement).filter_by(product_id=product_id).count() == 1
