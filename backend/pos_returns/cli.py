# Overview: Flask CLI command group for database bootstrap, demo data and return policy.

# backend/pos_returns/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask returns <command> [options]
#
# - python -m flask returns init-db
#   Create all tables (idempotent).
# - python -m flask returns seed-demo [--ordered-at 2024-03-01T10:15:00Z]
#   Demo store, cashier/supervisor users and the "Blue Paint 1L" order POS-2024-0007.
# - python -m flask returns set-policy --store-id 1 --key returns.approval_threshold_cents --value 2000000
#   Store-level return policy override (value is parsed as JSON when possible).

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Store, Product, Order, OrderLineItem, Payment, User
from .models.auth import ROLE_CASHIER, ROLE_SUPERVISOR
from .services.auth_service import create_user, PasswordValidationError
from .services.settings_service import set_store_setting, SettingsValidationError
from .time_utils import utcnow


DEMO_PASSWORD = "Password123"
DEMO_SUPERVISOR_PIN = "4821"


@click.group('returns')
def returns_group():
    """Return engine bootstrap and maintenance commands."""


@returns_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("PASS Tables created")


@returns_group.command('seed-demo')
@click.option('--store-code', default='MAIN', help='Demo store code')
@click.option(
    '--ordered-at',
    type=click.DateTime(formats=["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M:%SZ"]),
    default=None,
    help='UTC timestamp for the demo order (default: now)',
)
@with_appcontext
def seed_demo(store_code, ordered_at):
    """
    Load a demo store for trying the return flow.

    Creates:
    - Store "Main Store"
    - Users: cashier / Password123, supervisor / Password123 (PIN 4821, #1042)
    - Product "Blue Paint 1L"
    - Order POS-2024-0007: 5 x Blue Paint 1L at 800.00, paid cash
    """
    db.create_all()

    ordered = ordered_at or utcnow()

    store = db.session.query(Store).filter_by(code=store_code).first()
    if not store:
        store = Store(name="Main Store", code=store_code)
        db.session.add(store)
        db.session.commit()
        click.echo(f"PASS Created store: {store.name} (ID: {store.id})")
    else:
        click.echo(f"PASS Using existing store: {store.name} (ID: {store.id})")

    demo_users = [
        ("cashier", ROLE_CASHIER, "Casey Cashier", None, None),
        ("supervisor", ROLE_SUPERVISOR, "Sam Supervisor", "1042", DEMO_SUPERVISOR_PIN),
    ]
    for username, role, full_name, employee_number, pin in demo_users:
        existing = db.session.query(User).filter_by(store_id=store.id, username=username).first()
        if existing:
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            create_user(
                store.id,
                username,
                DEMO_PASSWORD,
                role=role,
                full_name=full_name,
                employee_number=employee_number,
                pin=pin,
            )
            click.echo(f"PASS Created user: {username} ({role})")
        except PasswordValidationError as e:
            click.echo(f"FAIL Password validation failed for '{username}': {str(e)}")

    product = db.session.query(Product).filter_by(store_id=store.id, sku="PAINT-BLUE-1L").first()
    if not product:
        product = Product(
            store_id=store.id,
            sku="PAINT-BLUE-1L",
            barcode="0712345000017",
            name="Blue Paint 1L",
            price_cents=80000,
        )
        db.session.add(product)
        db.session.commit()
        click.echo(f"PASS Created product: {product.name} (ID: {product.id})")

    order = db.session.query(Order).filter_by(store_id=store.id, order_number="POS-2024-0007").first()
    if order:
        click.echo(f"WARN  Order {order.order_number} already exists, skipping...")
        return

    order = Order(
        store_id=store.id,
        order_number="POS-2024-0007",
        invoice_number="INV-2024-0007",
        customer_name="Jordan Lee",
        ordered_at=ordered,
    )
    db.session.add(order)
    db.session.flush()
    db.session.add(OrderLineItem(
        order_id=order.id,
        product_id=product.id,
        name=product.name,
        sku=product.sku,
        barcode=product.barcode,
        quantity=5,
        unit_price_cents=80000,
        line_total_cents=400000,
    ))
    db.session.add(Payment(order_id=order.id, method="cash", amount_cents=400000))
    db.session.commit()

    click.echo(f"PASS Created order: {order.order_number} (ID: {order.id})")
    click.echo("\nDemo credentials:")
    click.echo(f"   cashier    -> {DEMO_PASSWORD}")
    click.echo(f"   supervisor -> {DEMO_PASSWORD} (approval PIN {DEMO_SUPERVISOR_PIN})")


@returns_group.command('set-policy')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--key', required=True, help='Setting key, e.g. returns.approval_threshold_cents')
@click.option('--value', required=True, help='JSON value (true, 2000000, ["cash","card"], null)')
@with_appcontext
def set_policy(store_id, key, value):
    """Set a store-level return policy override."""
    try:
        parsed = json.loads(value)
    except ValueError:
        parsed = value

    try:
        row = set_store_setting(store_id, key, parsed)
    except SettingsValidationError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS {row.key} = {json.dumps(row.value_json)} (store {store_id})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(returns_group)
