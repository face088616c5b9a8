"""
Commission ledger tests.
"""

import pytest

from cashdesk.models import CommissionAccrual, CommissionPayout
from cashdesk.services import commission_service, sales_service
from cashdesk.services.commission_service import CommissionError, NoPendingCommissionsError
from cashdesk.services.sales_service import LineRequest


@pytest.mark.parametrize(
    "subtotal,rate_bps,expected",
    [
        (2500, 4000, 1000),
        (1999, 1250, 250),   # 249.875 -> 250
        (1000, 1250, 125),
        (333, 5000, 167),    # 166.5 -> 167 (half-up)
        (0, 4000, 0),
        (2500, 0, 0),
    ],
)
def test_commission_for_rounds_half_up(subtotal, rate_bps, expected):
    assert commission_service.commission_for(subtotal, rate_bps) == expected


def _checkout_service(service, staff, quantity=1):
    return sales_service.create_pending_sale(
        [LineRequest(product_id=None, service_id=service.id, quantity=quantity, staff_id=staff.id)]
    )


def test_rate_change_does_not_rewrite_accrual(db_session, make_service, make_staff):
    service = make_service(price_cents=2000)
    staff = make_staff(commission_rate_bps=1000)
    _checkout_service(service, staff)

    staff.commission_rate_bps = 5000
    db_session.commit()

    assert commission_service.unpaid_total(staff.id) == 200


def test_commissions_for_staff_totals(db_session, make_service, make_staff):
    service = make_service(price_cents=2500)
    alex = make_staff(name="Alex", commission_rate_bps=4000)
    sam = make_staff(name="Sam", commission_rate_bps=4000)
    _checkout_service(service, alex)
    _checkout_service(service, alex)
    _checkout_service(service, sam)

    listing = commission_service.commissions_for_staff(alex.id)

    assert listing["staff_id"] == alex.id
    assert len(listing["accruals"]) == 2
    assert listing["totals"] == {"pending_cents": 2000, "paid_cents": 0}


def test_pay_commissions_marks_snapshot_paid(db_session, make_service, make_staff):
    service = make_service(price_cents=2500)
    staff = make_staff(commission_rate_bps=4000)
    _checkout_service(service, staff)
    _checkout_service(service, staff, quantity=2)

    payout = commission_service.pay_commissions(staff.id, paid_by_user_id=1, notes="Friday")

    assert payout.amount_cents == 1000 + 2000
    assert payout.staff_id == staff.id
    accruals = db_session.query(CommissionAccrual).filter_by(staff_id=staff.id).all()
    assert all(a.is_paid for a in accruals)
    assert {a.payout_id for a in accruals} == {payout.id}

    listing = commission_service.commissions_for_staff(staff.id)
    assert listing["totals"] == {"pending_cents": 0, "paid_cents": 3000}


def test_accruals_after_payout_stay_pending(db_session, make_service, make_staff):
    service = make_service(price_cents=2500)
    staff = make_staff(commission_rate_bps=4000)
    _checkout_service(service, staff)
    commission_service.pay_commissions(staff.id, paid_by_user_id=1)

    _checkout_service(service, staff)

    assert commission_service.unpaid_total(staff.id) == 1000


def test_pay_with_nothing_pending(db_session, make_staff):
    staff = make_staff()

    with pytest.raises(NoPendingCommissionsError):
        commission_service.pay_commissions(staff.id, paid_by_user_id=1)

    assert db_session.query(CommissionPayout).count() == 0


def test_pay_unknown_staff(db_session):
    with pytest.raises(CommissionError):
        commission_service.pay_commissions(31337, paid_by_user_id=1)


def test_cancelled_sale_accrual_is_not_paid(db_session, make_service, make_staff):
    service = make_service(price_cents=2500)
    staff = make_staff(commission_rate_bps=4000)
    sale_id = _checkout_service(service, staff).sale.id
    sales_service.cancel(sale_id)

    with pytest.raises(NoPendingCommissionsError):
        commission_service.pay_commissions(staff.id, paid_by_user_id=1)
