from cashdesk.models import Product, Service, StaffMember
from cashdesk.services import shift_service


def test_seed_demo_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "seed-demo"])
    second = runner.invoke(args=["system", "seed-demo"])

    assert first.exit_code == 0, first.output
    assert second.exit_code == 0, second.output
    assert db_session.query(Product).count() == 3
    assert db_session.query(Service).count() == 3
    assert db_session.query(StaffMember).count() == 2


def test_shifts_list_and_export(app, db_session):
    shift_service.open_shift(100, opened_by_user_id=1)
    shift_service.close_shift(90, "Short", closed_by_user_id=1)
    runner = app.test_cli_runner()

    listed = runner.invoke(args=["shifts", "list"])
    exported = runner.invoke(args=["shifts", "export"])

    assert listed.exit_code == 0, listed.output
    assert "$-0.10" in listed.output
    assert exported.output.startswith("id,opened_at,closed_at")


def test_commissions_pay_with_nothing_pending(app, db_session):
    staff = StaffMember(name="Alex", commission_rate_bps=4000)
    db_session.add(staff)
    db_session.commit()

    result = app.test_cli_runner().invoke(args=["commissions", "pay", "--staff-id", str(staff.id), "--by", "1"])

    assert result.exit_code == 1
    assert "No pending commissions" in result.output
