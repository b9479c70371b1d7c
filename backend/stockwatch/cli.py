# Overview: Flask CLI command groups for bootstrap, alert operations, and queue maintenance.

# backend/stockwatch/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create missing tables (existing tables are left alone).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed [--stock 30]
#   Insert the sample product catalog with an initial stock count.
#
# Inventory:
# - python -m flask inventory adjust PRODUCT_ID -5 --reason "Sale"
#   Apply a signed stock change and run alert evaluation.
#
# Alerts:
# - python -m flask alerts list [--status NEW]
#   List alerts, newest first.
# - python -m flask alerts ack ALERT_ID [--user ops]
#   Acknowledge an alert (idempotent).
# - python -m flask alerts reconcile [--collapse]
#   Full sweep: create missing LOW alerts; optionally collapse duplicates after.
# - python -m flask alerts collapse
#   Keep the oldest NEW alert per product and acknowledge the rest.
#
# Alert queue:
# - python -m flask queue stats
#   Message counts per status.
# - python -m flask queue drain [--max-batches 10]
#   Consume pending alert requests (use when ALERT_DISPATCH_MODE=queue).

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import alert_service, reconciliation_service
from .services.alert_consumer import drain_queue
from .services.inventory_service import NegativeStockError, adjust_stock
from .services.ledger_store import NotFoundError, StoreError
from .services.products_service import create_product
from .services.queue_service import get_queue
from .validation import ConflictError, ValidationError


SAMPLE_PRODUCTS = [
    {
        "product_id": "tshirt-001",
        "name": "Organic Cotton T-Shirt",
        "description": "Soft, eco-friendly cotton t-shirt in various colors.",
        "category": "Apparel",
        "sku": "APP-TSHIRT-001",
        "image_url": "/plain-white-tshirt.png",
        "min_threshold": 20,
    },
    {
        "product_id": "mug-001",
        "name": "Handcrafted Ceramic Mug",
        "description": "Artisan-made ceramic mug, perfect for coffee or tea.",
        "category": "Kitchenware",
        "sku": "KIT-MUG-001",
        "image_url": "/ceramic-mug.png",
        "min_threshold": 15,
    },
    {
        "product_id": "wallet-001",
        "name": "Leather Wallet",
        "description": "Premium leather wallet with multiple card slots.",
        "category": "Accessories",
        "sku": "ACC-WALLET-001",
        "image_url": "/leather-wallet-contents.png",
        "min_threshold": 10,
    },
    {
        "product_id": "bottle-001",
        "name": "Stainless Steel Water Bottle",
        "description": "Eco-friendly, double-walled insulated water bottle.",
        "category": "Kitchenware",
        "sku": "KIT-BOTTLE-001",
        "image_url": "/reusable-water-bottle.png",
        "min_threshold": 25,
    },
    {
        "product_id": "earbuds-001",
        "name": "Wireless Earbuds",
        "description": "Bluetooth earbuds with charging case and noise cancellation.",
        "category": "Electronics",
        "sku": "ELEC-EARBUD-001",
        "image_url": "/wireless-earbuds-charging-case.png",
        "min_threshold": 8,
    },
    {
        "product_id": "candle-001",
        "name": "Scented Candle",
        "description": "Hand-poured soy wax candle with essential oils.",
        "category": "Home",
        "sku": "HOME-CANDLE-001",
        "image_url": "/lit-candle.png",
        "min_threshold": 12,
    },
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    click.echo("BUILD  Creating missing tables...")
    db.create_all()
    click.echo("PASS Database ready.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed' to add sample products.")


@system_group.command('seed')
@click.option('--stock', type=int, default=30, show_default=True, help='Initial stock per product')
@with_appcontext
def seed(stock):
    """Insert the sample product catalog. Existing products are skipped."""
    created = 0
    for sample in SAMPLE_PRODUCTS:
        try:
            create_product(patch={**sample, "initial_stock": stock}, user_id="system:seed")
        except ConflictError:
            click.echo(f"WARN  {sample['product_id']} already exists, skipped")
            continue
        created += 1
        click.echo(f"PASS Created {sample['product_id']} ({sample['name']})")

    click.echo(f"\nSeeded {created} of {len(SAMPLE_PRODUCTS)} sample products.")


@click.group('inventory')
def inventory_group():
    """Stock adjustment commands."""


@inventory_group.command('adjust', context_settings={'ignore_unknown_options': True})
@click.argument('product_id')
@click.argument('change_amount', type=int)
@click.option('--reason', required=True, help='Why the stock changed')
@click.option('--location', 'location_id', default=None, help='Location (defaults to DEFAULT_LOCATION_ID)')
@click.option('--user', 'user_id', default=None, help='Actor recorded in history')
@with_appcontext
def adjust_stock_cli(product_id, change_amount, reason, location_id, user_id):
    """Apply a signed stock change to a product."""
    try:
        result = adjust_stock(
            product_id=product_id,
            change_amount=change_amount,
            reason=reason,
            location_id=location_id,
            user_id=user_id,
        )
    except (NotFoundError, NegativeStockError, ValidationError) as e:
        click.echo(f"FAIL Error: {str(e)}")
        return

    click.echo(
        f"PASS {result['product_id']}@{result['location_id']}: "
        f"{result['previous_stock']} -> {result['current_stock']}"
    )
    dispatch = result.get("alert")
    if dispatch is None:
        click.echo("WARN  Alert evaluation failed; run 'python -m flask alerts reconcile'")
    elif dispatch.get("alert"):
        state = "created" if dispatch["created"] else "already active"
        click.echo(f"      Alert {dispatch['alert']['alert_id']} ({state})")
    elif dispatch.get("message_id"):
        click.echo(f"      Queued alert request {dispatch['message_id']}")


@click.group('alerts')
def alerts_group():
    """Alert inspection and repair commands."""


@alerts_group.command('list')
@click.option('--status', default=None, help='Filter by status (NEW, PROCESSING, SENT, ACKNOWLEDGED)')
@with_appcontext
def list_alerts_cli(status):
    """List alerts, newest first."""
    try:
        alerts = alert_service.list_alerts(status=status)
    except ValidationError as e:
        click.echo(f"FAIL Error: {str(e)}")
        return

    if not alerts:
        click.echo("No alerts found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'Alert ID':<34} {'Product':<16} {'Loc':<8} {'Status':<14} {'Stock':>6} {'Min':>6}  {'Created'}")
    click.echo("="*100)

    for a in alerts:
        created = a.to_dict()["created_at"]
        click.echo(
            f"{a.alert_id:<34} {a.product_id:<16} {a.location_id:<8} {a.status:<14} "
            f"{a.current_stock:>6} {a.threshold:>6}  {created}"
        )

    click.echo("="*100)
    click.echo(f"\n Total: {len(alerts)} alerts\n")


@alerts_group.command('ack')
@click.argument('alert_id')
@click.option('--user', 'user_id', default=None, help='Who acknowledged the alert')
@with_appcontext
def ack_alert_cli(alert_id, user_id):
    """Acknowledge an alert."""
    try:
        already = alert_service.get_alert(alert_id).status == "ACKNOWLEDGED"
        alert = alert_service.acknowledge_alert(alert_id, user_id=user_id)
    except NotFoundError as e:
        click.echo(f"FAIL Error: {str(e)}")
        return

    if already:
        click.echo(f"WARN  Alert {alert.alert_id} was already acknowledged by {alert.acknowledged_by}")
    else:
        click.echo(f"PASS Alert {alert.alert_id} acknowledged by {alert.acknowledged_by}")


@alerts_group.command('reconcile')
@click.option('--collapse', is_flag=True, help='Collapse duplicate active alerts after the sweep')
@with_appcontext
def reconcile_cli(collapse):
    """Create LOW alerts for every product below threshold without one."""
    try:
        result = reconciliation_service.reconcile_all()
    except StoreError as e:
        click.echo(f"FAIL Error: {str(e)}")
        return

    click.echo(f"PASS {result['message']}")
    for item in result["created_alerts"]:
        click.echo(
            f"      {item['product_id']:<16} {item['location_id']:<8} "
            f"stock={item['current_stock']} min={item['threshold']} -> {item['alert_id']}"
        )
    for item in result["failed"]:
        click.echo(f"WARN  {item['product_id']}: {item['error']}")

    if collapse:
        _echo_collapse(reconciliation_service.collapse_duplicate_alerts())


@alerts_group.command('collapse')
@with_appcontext
def collapse_cli():
    """Acknowledge duplicate NEW alerts, keeping the oldest per product."""
    _echo_collapse(reconciliation_service.collapse_duplicate_alerts())


def _echo_collapse(result: dict) -> None:
    if not result["collapsed_count"]:
        click.echo("PASS No duplicate active alerts.")
        return
    click.echo(f"PASS Collapsed {result['collapsed_count']} duplicate alerts")
    for item in result["collapsed"]:
        click.echo(f"      {item['alert_id']} -> {item['kept_alert_id']}")


@click.group('queue')
def queue_group():
    """Alert request queue commands."""


@queue_group.command('stats')
@with_appcontext
def queue_stats_cli():
    """Show message counts per status."""
    stats = get_queue().stats()
    click.echo("\n" + "="*40)
    for status, count in stats.items():
        click.echo(f"{status:<12} {count:>8}")
    click.echo("="*40 + "\n")


@queue_group.command('drain')
@click.option('--max-batches', type=int, default=10, show_default=True)
@click.option('--batch-size', type=int, default=None, help='Messages per batch (defaults to QUEUE_BATCH_SIZE)')
@with_appcontext
def queue_drain_cli(max_batches, batch_size):
    """Process pending alert requests."""
    result = drain_queue(max_batches=max_batches, batch_size=batch_size)
    click.echo(
        f"PASS Processed {result['processed']} messages in {result['batches']} batches "
        f"(created={result['created']}, skipped={result['skipped']}, failed={result['failed']})"
    )
    for item in result["failures"]:
        click.echo(f"WARN  {item['message_id']}: {item['error']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(alerts_group)
    app.cli.add_command(queue_group)
