# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/cashdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to cashdesk (PowerShell: $env:FLASK_APP="cashdesk").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (no-op for tables that already exist).
# - python -m flask system seed-demo
#   Insert demo products, services, staff and a customer (idempotent by name).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Shift inspection:
# - python -m flask shifts list --limit 20
#   List closed shifts with their reconciliation figures.
# - python -m flask shifts export --output shift_history.csv
#   Write the shift history CSV (stdout if --output is omitted).
#
# Commissions:
# - python -m flask commissions pending
#   Unpaid commission totals per staff member.
# - python -m flask commissions pay --staff-id 3 --by 1
#   Pay out everything owed to a staff member.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, Service, StaffMember, Customer
from .services import shift_service, commission_service
from .services.commission_service import NoPendingCommissionsError
from .time_utils import utcnow


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("PASS Tables created.")


DEMO_PRODUCTS = [
    # name, category, price_cents, cost_cents, quantity_on_hand
    ("Pomade", "Hair Care", 1500, 700, 20),
    ("Beard Oil", "Beard Care", 1200, 500, 15),
    ("Shampoo", "Hair Care", 900, 400, 25),
]

DEMO_SERVICES = [
    # name, price_cents, duration_minutes
    ("Haircut", 2500, 30),
    ("Beard Trim", 1500, 20),
    ("Haircut + Beard", 3500, 45),
]

DEMO_STAFF = [
    # name, commission_rate_bps
    ("Alex", 4000),
    ("Sam", 3500),
]


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Insert demo catalog rows.

    Idempotent: rows are matched by name and never duplicated.
    """
    created = {"products": 0, "services": 0, "staff": 0, "customers": 0}

    for name, category, price, cost, qty in DEMO_PRODUCTS:
        if not db.session.query(Product).filter_by(name=name).first():
            db.session.add(Product(
                name=name,
                category=category,
                price_cents=price,
                cost_cents=cost,
                quantity_on_hand=qty,
                created_at=utcnow(),
            ))
            created["products"] += 1

    for name, price, minutes in DEMO_SERVICES:
        if not db.session.query(Service).filter_by(name=name).first():
            db.session.add(Service(name=name, price_cents=price, duration_minutes=minutes))
            created["services"] += 1

    for name, rate in DEMO_STAFF:
        if not db.session.query(StaffMember).filter_by(name=name).first():
            db.session.add(StaffMember(name=name, commission_rate_bps=rate))
            created["staff"] += 1

    if not db.session.query(Customer).filter_by(email="walkin@example.com").first():
        db.session.add(Customer(name="Walk-in Customer", email="walkin@example.com"))
        created["customers"] += 1

    db.session.commit()

    for key, count in created.items():
        click.echo(f"  {key}: {count} created")
    click.echo("PASS Demo data ready.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for demo data.")


@click.group('shifts')
def shifts_group():
    """Shift inspection commands."""


@shifts_group.command('list')
@click.option('--limit', type=int, default=20, help='Max shifts to show')
@with_appcontext
def list_shifts_cli(limit):
    """
    List closed shifts, newest first.

    Example:
        flask shifts list
        flask shifts list --limit 5
    """
    status = shift_service.current_status()
    if status.is_open:
        click.echo(
            f"Open shift #{status.shift.id} since {status.shift.opened_at:%Y-%m-%d %H:%M} "
            f"(expected ${status.totals.expected_cash_cents / 100:.2f})"
        )

    shifts = shift_service.shift_history(limit)
    if not shifts:
        click.echo("No closed shifts found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Opened':<17} {'Closed':<17} {'Expected':<12} {'Counted':<12} {'Discrepancy':<12} {'Notes'}")
    click.echo("="*100)

    for shift in shifts:
        discrepancy_str = "-"
        if shift.discrepancy_cents is not None:
            discrepancy_str = f"${shift.discrepancy_cents / 100:+.2f}"

        click.echo(
            f"{shift.id:<5} "
            f"{shift.opened_at:%Y-%m-%d %H:%M} "
            f"{shift.closed_at:%Y-%m-%d %H:%M} "
            f"${(shift.expected_cash_cents or 0) / 100:<11.2f} "
            f"${(shift.counted_cash_cents or 0) / 100:<11.2f} "
            f"{discrepancy_str:<12} "
            f"{(shift.notes or '')[:40]}"
        )

    click.echo("="*100)
    click.echo(f"Total: {len(shifts)} shifts\n")


@shifts_group.command('export')
@click.option('--limit', type=int, default=None, help='Max shifts to export')
@click.option('--output', type=click.Path(dir_okay=False, writable=True), help='Write to file instead of stdout')
@with_appcontext
def export_shifts_cli(limit, output):
    """Export the shift history as CSV."""
    body = shift_service.export_shift_history_csv(limit)
    if output:
        with open(output, "w", newline="", encoding="utf-8") as fh:
            fh.write(body)
        click.echo(f"PASS Wrote {output}")
    else:
        click.echo(body, nl=False)


@click.group('commissions')
def commissions_group():
    """Commission inspection and payout commands."""


@commissions_group.command('pending')
@with_appcontext
def pending_commissions_cli():
    """Unpaid commission totals per active staff member."""
    staff = db.session.query(StaffMember).filter_by(is_active=True).order_by(StaffMember.name).all()
    if not staff:
        click.echo("No staff members found.")
        return

    click.echo(f"{'ID':<5} {'Name':<25} {'Rate':<8} {'Pending'}")
    for member in staff:
        pending = commission_service.unpaid_total(member.id)
        click.echo(
            f"{member.id:<5} {member.name:<25} {member.commission_rate_bps / 100:>5.1f}%  ${pending / 100:.2f}"
        )


@commissions_group.command('pay')
@click.option('--staff-id', type=int, required=True, help='Staff member ID')
@click.option('--by', 'paid_by', type=int, required=True, help='User ID recording the payout')
@click.option('--notes', default=None, help='Payout notes')
@with_appcontext
def pay_commissions_cli(staff_id, paid_by, notes):
    """Pay out everything owed to a staff member."""
    try:
        payout = commission_service.pay_commissions(staff_id, paid_by_user_id=paid_by, notes=notes)
    except NoPendingCommissionsError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    except ValueError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"PASS Payout #{payout.id}: ${payout.amount_cents / 100:.2f} to staff {staff_id}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(shifts_group)
    app.cli.add_command(commissions_group)
