# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/erpcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="erpcore:create_app").
# - Use: python -m flask erp <command> [options]
#
# - python -m flask erp init-db
#   Create all tables (use `flask db upgrade` for migrated databases).
# - python -m flask erp seed-demo [--company "Demo SA de CV"]
#   Idempotent demo tenant: company with fiscal profile, user, customers, products.
# - python -m flask erp movements <product_id> [--limit 50]
#   Print a product's stock movement history.

import click
from flask.cli import with_appcontext

from .extensions import db
from .fiscal import DEFAULT_PRODUCT_KEY, DEFAULT_UNIT_KEY, GENERIC_PUBLIC_RFC
from .models import Company, Customer, Movement, Product, User


@click.group('erp')
def erp_group():
    """Sale and invoice core commands."""
    pass


@erp_group.command('init-db')
@with_appcontext
def init_db_command():
    """Create all tables."""
    db.create_all()
    click.echo("PASS Tables created")


@erp_group.command('seed-demo')
@click.option('--company', 'company_name', default='Demo Comercial SA de CV', help='Company legal name')
@with_appcontext
def seed_demo_command(company_name):
    """Create a demo tenant ready to sell and stamp against the sandbox PAC."""
    company = db.session.query(Company).filter_by(name=company_name).first()
    if company:
        click.echo(f"WARN  Company '{company_name}' already exists (ID: {company.id}), skipping...")
        return

    company = Company(
        name=company_name,
        rfc="EKU9003173C9",
        tax_regime="601",
        street="Av. Reforma",
        exterior_number="100",
        neighborhood="Centro",
        city="Ciudad de México",
        state="CDMX",
        postal_code="06000",
        test_mode=True,
    )
    db.session.add(company)
    db.session.flush()

    user = User(company_id=company.id, name="Demo Cashier", email="cashier@demo.local")
    public = Customer(company_id=company.id, name="Público en general", rfc=GENERIC_PUBLIC_RFC)
    named = Customer(
        company_id=company.id,
        name="Cliente Demo",
        email="cliente@demo.local",
        rfc="URE180429TM6",
        legal_name="UNIVERSIDAD ROBOTICA ESPAÑOLA",
        tax_regime="601",
        cfdi_use="G03",
        fiscal_postal_code="86991",
    )
    products = [
        Product(company_id=company.id, sku="WIDGET-1", name="Widget", stock=50, price_cents=10000,
                sat_product_key=DEFAULT_PRODUCT_KEY, sat_unit_key=DEFAULT_UNIT_KEY, sale_unit="Pieza"),
        Product(company_id=company.id, sku="SODA-600", name="Refresco 600ml", stock=120, price_cents=1800,
                sat_product_key="50202306", sat_unit_key=DEFAULT_UNIT_KEY, sale_unit="Pieza", ieps_rate_bps=800),
        Product(company_id=company.id, sku="SRV-INST", name="Instalación", use_stock=False, price_cents=50000,
                sat_product_key="72151600", sat_unit_key="E48", sale_unit="Servicio"),
    ]
    db.session.add_all([user, public, named, *products])
    db.session.commit()

    click.echo("DONE Demo tenant created")
    click.echo(f"Company:  {company.name} (ID: {company.id})")
    click.echo(f"User:     {user.email} (ID: {user.id})")
    click.echo(f"Customer: {public.name} (ID: {public.id})")
    click.echo(f"Customer: {named.name} (ID: {named.id})")
    for product in products:
        click.echo(f"Product:  {product.name} (ID: {product.id}, stock: {product.stock})")
    click.echo("\nSend X-User-Id / X-Company-Id headers with these IDs to call the API.")


@erp_group.command('movements')
@click.argument('product_id')
@click.option('--limit', default=50, help='Maximum movements to show')
@with_appcontext
def movements_command(product_id, limit):
    """Print a product's movement history, oldest first."""
    product = db.session.get(Product, product_id)
    if not product:
        click.echo(f"FAIL Product {product_id} not found")
        raise SystemExit(1)

    movements = (
        db.session.query(Movement)
        .filter_by(product_id=product_id)
        .order_by(Movement.id.asc())
        .limit(limit)
        .all()
    )
    click.echo(f"{product.name} (stock: {product.stock}, tracked: {product.use_stock})")
    if not movements:
        click.echo("No movements")
        return
    for m in movements:
        click.echo(
            f"{m.id:>6}  {m.created_at:%Y-%m-%d %H:%M:%S}  {m.type:<8} {m.quantity:>6}  "
            f"{m.previous_stock:>6} -> {m.new_stock:<6}  {m.note or ''}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(erp_group)
