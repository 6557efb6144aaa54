# Overview: Flask CLI command groups for terminals, sessions, Z-reports and maintenance.

# backend/poscore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Terminals:
# - python -m flask terminals create --code TILL-01 --name "Front Counter" --location "Main Floor"
#   Create a POS terminal.
# - python -m flask terminals list [--all]
#   List terminals and their bound session.
#
# Sessions:
# - python -m flask sessions open --terminal-id 1 --cashier "Jane" --float-cents 1000000
#   Open a cashier session with a counted float.
# - python -m flask sessions close --session-id 1 --count-cents 1175000 [--notes "..."]
#   Close a session with the physical drawer count.
# - python -m flask sessions list [--terminal-id 1] [--status open]
#   List sessions with expected cash and variance.
#
# Z-reports:
# - python -m flask reports z --session-id 1 [--by "Manager"]
#   Generate the Z-report for a closed session.
# - python -m flask reports preview --session-id 1
#   Show the figures a Z-report would carry now (nothing saved).

import click
from flask.cli import with_appcontext

from .extensions import db
from .validation import PosError


def _money(cents) -> str:
    if cents is None:
        return "-"
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100:,}.{cents % 100:02d}"


@click.group('system')
def system_group():
    """System maintenance commands."""


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

    click.echo("PASS Database reset complete.")


@click.group('terminals')
def terminals_group():
    """Terminal inspection and bootstrap commands."""


@terminals_group.command('create')
@click.option('--code', 'terminal_code', required=True, help='Terminal code (e.g. TILL-01)')
@click.option('--name', required=True, help='Terminal name')
@click.option('--location', help='Location in store')
@with_appcontext
def create_terminal_cli(terminal_code, name, location):
    """
    Create a new POS terminal.

    Example:
        flask terminals create --code TILL-01 --name "Front Counter 1" --location "Main Floor"
    """
    from .services import terminal_service

    try:
        terminal = terminal_service.create_terminal(terminal_code, name, location=location)
    except PosError as e:
        click.echo(f"FAIL Error: {str(e)}")
        raise SystemExit(1)

    click.echo(f"PASS Created terminal: {terminal.terminal_code} - {terminal.name}")
    click.echo(f"   Location: {terminal.location or 'Not specified'}")
    click.echo(f"   Terminal ID: {terminal.id}")


@terminals_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Show inactive terminals too')
@with_appcontext
def list_terminals_cli(show_all):
    """List terminals."""
    from .models import Terminal

    query = db.session.query(Terminal)
    if not show_all:
        query = query.filter_by(is_active=True)
    terminals = query.order_by(Terminal.terminal_code).all()

    if not terminals:
        click.echo("No terminals found.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<5} {'Code':<12} {'Name':<25} {'Location':<20} {'Active':<8} {'Session'}")
    click.echo("=" * 90)
    for t in terminals:
        session = str(t.current_session_id) if t.current_session_id else "-"
        click.echo(
            f"{t.id:<5} {t.terminal_code:<12} {t.name[:24]:<25} {(t.location or '')[:19]:<20} "
            f"{'yes' if t.is_active else 'no':<8} {session}"
        )
    click.echo("=" * 90 + "\n")


@click.group('sessions')
def sessions_group():
    """Cashier session commands."""


@sessions_group.command('open')
@click.option('--terminal-id', type=int, required=True, help='Terminal ID')
@click.option('--cashier', required=True, help='Cashier name')
@click.option('--float-cents', type=int, required=True, help='Opening float in cents')
@with_appcontext
def open_session_cli(terminal_id, cashier, float_cents):
    """Open a cashier session."""
    from .services import session_service

    try:
        session = session_service.open_session(terminal_id, cashier, float_cents)
    except PosError as e:
        click.echo(f"FAIL Error: {str(e)}")
        raise SystemExit(1)

    click.echo(f"PASS Opened session {session.id} on terminal {terminal_id}")
    click.echo(f"   Float: {_money(session.opening_cash_cents)}")


@sessions_group.command('close')
@click.option('--session-id', type=int, required=True, help='Session ID')
@click.option('--count-cents', type=int, required=True, help='Physical drawer count in cents')
@click.option('--notes', help='Closing notes')
@click.option('--by', 'closed_by', help='Who closed the session')
@with_appcontext
def close_session_cli(session_id, count_cents, notes, closed_by):
    """Close a session with the physical count."""
    from .services import session_service

    try:
        session = session_service.close_session(session_id, count_cents, closing_notes=notes, closed_by=closed_by)
    except PosError as e:
        click.echo(f"FAIL Error: {str(e)}")
        raise SystemExit(1)

    click.echo(f"PASS Closed session {session.id}")
    click.echo(f"   Expected: {_money(session.expected_cash_cents)}")
    click.echo(f"   Counted:  {_money(session.closing_cash_cents)}")
    click.echo(f"   Variance: {_money(session.cash_variance_cents)}")
    click.echo(f"   Sales:    {_money(session.total_sales_cents)}  Refunds: {_money(session.total_refunds_cents)}")


@sessions_group.command('list')
@click.option('--terminal-id', type=int, help='Filter by terminal ID')
@click.option('--status', type=click.Choice(['open', 'suspended', 'closed']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(terminal_id, status, limit):
    """List cashier sessions."""
    from .services import session_service

    sessions = session_service.get_sessions(terminal_id=terminal_id, status=status)[:limit]
    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo("\n" + "=" * 100)
    click.echo(f"{'ID':<5} {'Terminal':<10} {'Cashier':<20} {'Status':<10} {'Expected':>14} {'Variance':>12}  {'Opened'}")
    click.echo("=" * 100)
    for s in sessions:
        opened = s.opened_at.strftime('%Y-%m-%d %H:%M') if s.opened_at else ''
        click.echo(
            f"{s.id:<5} {s.terminal_id:<10} {s.cashier_name[:19]:<20} {s.status:<10} "
            f"{_money(s.expected_cash_cents):>14} {_money(s.cash_variance_cents):>12}  {opened}"
        )
    click.echo("=" * 100 + "\n")


@click.group('reports')
def reports_group():
    """Z-report commands."""


def _echo_report(figures: dict) -> None:
    click.echo(f"   Transactions: {figures['total_transactions']} "
               f"(completed {figures['completed_transactions']}, voided {figures['voided_transactions']}, "
               f"refunded {figures['refunded_transactions']})")
    click.echo(f"   Gross sales:  {_money(figures['gross_sales_cents'])}")
    click.echo(f"   Discounts:    {_money(figures['discounts_cents'])}")
    click.echo(f"   Refunds:      {_money(figures['refunds_cents'])}")
    click.echo(f"   Net sales:    {_money(figures['net_sales_cents'])}")
    click.echo(f"   Tax:          {_money(figures['tax_collected_cents'])}")
    for entry in figures['payment_breakdown']:
        click.echo(f"   - {entry['method']:<16} x{entry['count']:<4} {_money(entry['total_cents'])}")
    click.echo(f"   Expected cash: {_money(figures['expected_cash_cents'])}  "
               f"Actual: {_money(figures['actual_cash_cents'])}  Variance: {_money(figures['variance_cents'])}")


@reports_group.command('z')
@click.option('--session-id', type=int, required=True, help='Closed session ID')
@click.option('--by', 'generated_by', help='Who generated the report')
@with_appcontext
def generate_z_cli(session_id, generated_by):
    """Generate the Z-report for a closed session."""
    from .services import report_service

    try:
        report = report_service.generate_z_report(session_id, generated_by=generated_by)
    except PosError as e:
        click.echo(f"FAIL Error: {str(e)}")
        raise SystemExit(1)

    click.echo(f"PASS Z-report {report.report_number} for session {session_id}")
    _echo_report(report.to_dict())
    if not report.breakdown_matches_session:
        click.echo("WARN Payment breakdown does not match the session close figures")


@reports_group.command('preview')
@click.option('--session-id', type=int, required=True, help='Session ID')
@with_appcontext
def preview_z_cli(session_id):
    """Preview Z-report figures without saving anything."""
    from .services import report_service

    try:
        figures = report_service.preview_z_report(session_id)
    except PosError as e:
        click.echo(f"FAIL Error: {str(e)}")
        raise SystemExit(1)

    click.echo(f"PREVIEW session {session_id} ({figures['session_status']})")
    _echo_report(figures)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(terminals_group)
    app.cli.add_command(sessions_group)
    app.cli.add_command(reports_group)
