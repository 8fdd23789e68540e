# Overview: Flask CLI command groups for bootstrap, stock inspection and maintenance.

# backend/stockflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--name "My Shop"] [--currency GHS]
#   Idempotent bootstrap: creates the default business if none exists.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock inspection/maintenance:
# - python -m flask stock overview --business-id 1
#   Stock health per product (healthy/low/out/slow) and totals.
# - python -m flask stock refresh --business-id 1 [--product-id 7]
#   Recompute reconciliation metrics (all products, or one).
# - python -m flask stock insights --business-id 1
#   Refresh metrics and regenerate supply-chain insights.
# - python -m flask stock convert --business-id 1 --source-id 3 --to "Palm Oil" --quantity 10 --produces 8 [--record-loss/--no-record-loss]
#   Convert stock of one product into another in one step.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Business
from .validation import ConflictError, NotFoundError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--name', 'business_name', default='My Business', help='Business name')
@click.option('--currency', default='GHS', help='Currency code')
@with_appcontext
def init_system(business_name, currency):
    """Create the default business if none exists."""
    click.echo("START Initializing StockFlow...")

    business = db.session.query(Business).order_by(Business.id.asc()).first()
    if business:
        click.echo(f"PASS Using existing business: {business.name} (ID: {business.id})")
        return

    from .services.product_service import create_business

    business = create_business(name=business_name, currency=currency)
    click.echo(f"PASS Created business: {business.name} (ID: {business.id}, {business.currency})")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('stock')
def stock_group():
    """Stock health, metrics and conversion commands."""


@stock_group.command('overview')
@click.option('--business-id', type=int, required=True)
@with_appcontext
def stock_overview(business_id):
    """Show stock health per product."""
    from .services.stock_status_service import get_inventory_overview

    try:
        overview = get_inventory_overview(business_id)
    except NotFoundError as e:
        raise click.ClickException(str(e))

    items = overview["items"]
    if not items:
        click.echo("No products found")
        return

    click.echo(f"{'ID':<6} {'Product':<30} {'Stock':>10} {'Sales':>6} {'Value':>12}  Status")
    click.echo("-" * 80)
    for item in items:
        click.echo(
            f"{item['id']:<6} {item['product_name'][:30]:<30} {item['current_stock']:>10g} "
            f"{item['sales_count_30d']:>6} {item['total_value']:>12.2f}  {item['status'].upper()}"
        )

    m = overview["stock_metrics"]
    click.echo("-" * 80)
    click.echo(
        f"Items: {m['total_items']:g}  Value: {m['total_value']:.2f}  "
        f"Low: {m['low_stock_items']}  Out: {m['out_of_stock_items']}  "
        f"Revenue ({overview['window_days']}d): {m['total_revenue']:.2f}"
    )


@stock_group.command('refresh')
@click.option('--business-id', type=int, required=True)
@click.option('--product-id', type=int, default=None, help='Refresh a single product')
@with_appcontext
def stock_refresh(business_id, product_id):
    """Recompute reconciliation metrics."""
    from .services.reconciliation_service import refresh_metrics

    try:
        results = refresh_metrics(business_id, product_id=product_id)
    except NotFoundError as e:
        raise click.ClickException(str(e))

    for m in results:
        click.echo(
            f"{m.product_name[:30]:<30} sold {m.units_sold:>8g} / received {m.units_received:>8g}  "
            f"margin {m.profit_margin:6.1f}%  {m.status}"
        )
    click.echo(f"PASS Refreshed {len(results)} product(s)")


@stock_group.command('insights')
@click.option('--business-id', type=int, required=True)
@with_appcontext
def stock_insights(business_id):
    """Regenerate supply-chain insights."""
    from .services.insight_service import analyze_supply_chain

    try:
        result = analyze_supply_chain(business_id)
    except NotFoundError as e:
        raise click.ClickException(str(e))

    for insight in result["insights"]:
        click.echo(f"[{insight['priority'].upper():<6}] {insight['insight_type']}: {insight['message']}")

    summary = result["summary"]
    click.echo(
        f"PASS {summary['insights_generated']} insight(s) across {summary['total_products']} product(s); "
        f"invested {summary['total_investment']:.2f}, revenue {summary['total_revenue']:.2f}"
    )


@stock_group.command('convert')
@click.option('--business-id', type=int, required=True)
@click.option('--source-id', type=int, required=True, help='Source product id')
@click.option('--to', 'destination', required=True, help='Destination product name')
@click.option('--quantity', type=float, required=True, help='Source units consumed')
@click.option('--produces', type=float, required=True, help='Destination units produced')
@click.option('--unit', default=None)
@click.option('--unit-cost', type=float, default=None)
@click.option('--selling-price', type=float, default=None)
@click.option('--record-loss/--no-record-loss', default=None, help='Book the converted cost as an expense')
@click.option('--key', 'conversion_key', default=None, help='Idempotency key')
@with_appcontext
def stock_convert(business_id, source_id, destination, quantity, produces, unit, unit_cost,
                  selling_price, record_loss, conversion_key):
    """Convert stock of one product into another."""
    from .services.conversion_service import PartialWriteError, propose_conversion, confirm_conversion

    try:
        proposal = propose_conversion(
            business_id=business_id,
            source_product_id=source_id,
            destination_product_name=destination,
            source_quantity=quantity,
            destination_quantity=produces,
            unit=unit,
            unit_cost=unit_cost,
            selling_price=selling_price,
            conversion_key=conversion_key,
        )
        if record_loss is None and proposal.cost_impact > 0:
            record_loss = click.confirm(
                f"Record {proposal.cost_impact:.2f} converted cost as a 'Stock Conversion' expense?",
                default=False,
            )
        conversion = confirm_conversion(
            business_id=business_id,
            conversion_id=proposal.id,
            record_loss=bool(record_loss),
        )
    except (ValidationError, ConflictError, NotFoundError) as e:
        raise click.ClickException(str(e))
    except PartialWriteError as e:
        raise click.ClickException(f"{e} (retry with --key {proposal.conversion_key})")

    click.echo(
        f"PASS Converted {conversion.source_quantity:g} {conversion.source_product_name} -> "
        f"{conversion.destination_quantity:g} {conversion.destination_product_name} "
        f"(conversion {conversion.id}, cost impact {conversion.cost_impact:.2f})"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
