import click
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from config import config

db = SQLAlchemy()


def create_app(config_name='default'):
    """Application factory: creates and configures the Flask app."""
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    # ── Logging ───────────────────────────────────────────────────
    from storefront.utils.logging import setup_logging
    setup_logging(app)

    # ── Extensions ────────────────────────────────────────────────
    db.init_app(app)

    # ── Blueprints ────────────────────────────────────────────────
    from storefront.main import main as main_blueprint
    app.register_blueprint(main_blueprint)

    from storefront.auth import auth as auth_blueprint
    app.register_blueprint(auth_blueprint, url_prefix='/auth')

    from storefront.catalog import catalog as catalog_blueprint
    app.register_blueprint(catalog_blueprint, url_prefix='/catalog')

    from storefront.customers import customers as customers_blueprint
    app.register_blueprint(customers_blueprint, url_prefix='/customers')

    from storefront.billing import billing as billing_blueprint
    app.register_blueprint(billing_blueprint, url_prefix='/billing')

    from storefront.orders import orders as orders_blueprint
    app.register_blueprint(orders_blueprint, url_prefix='/orders')

    from storefront.reporting import reporting as reporting_blueprint
    app.register_blueprint(reporting_blueprint, url_prefix='/reporting')

    from storefront.admin import admin as admin_blueprint
    app.register_blueprint(admin_blueprint, url_prefix='/admin')

    # ── Error Handlers ────────────────────────────────────────────
    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({'error': getattr(e, 'description', 'Bad request')}), 400

    @app.errorhandler(401)
    def unauthorized(e):
        return jsonify({'error': 'Please log in to access this resource.'}), 401

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({'error': 'Access denied.'}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'error': 'Not found.'}), 404

    @app.errorhandler(413)
    def too_large(e):
        limit_kb = (app.config.get('MAX_CONTENT_LENGTH') or 0) // 1024
        return jsonify({'error': f'Upload is larger than {limit_kb} KB.'}), 413

    @app.errorhandler(500)
    def internal_error(e):
        return jsonify({'error': 'Server error.'}), 500

    # ── CLI Commands ──────────────────────────────────────────────
    register_commands(app)

    # ── ProxyFix (HTTPS termination at the load balancer) ─────────
    if config_name == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    return app


def register_commands(app):
    """Register custom Flask CLI commands."""

    @app.cli.command('init-db')
    def init_db():
        """Create all database tables and seed the invoice sequence for this year."""
        from datetime import date
        from storefront.billing.models import InvoiceSequence

        db.create_all()
        click.echo('Database tables created.')

        # Pre-seed the sequence row so the first commit of the year
        # only has to lock it.
        year = date.today().year
        if not db.session.get(InvoiceSequence, year):
            db.session.add(InvoiceSequence(year=year, last_seq=0))
            db.session.commit()
            click.echo(f'Invoice sequence seeded for {year} (starts at 0).')
        else:
            click.echo(f'Invoice sequence for {year} already exists.')

    @app.cli.command('show-sequences')
    def show_sequences():
        """Show current invoice sequence counters (diagnostic)."""
        from storefront.billing.models import InvoiceSequence
        prefix = app.config['INVOICE_PREFIX']
        rows = InvoiceSequence.query.order_by(InvoiceSequence.year.desc()).all()
        if not rows:
            click.echo('No sequence rows found. Run flask init-db first.')
            return
        click.echo(f'{"Year":<8} {"Last Seq":<12} {"Next Invoice"}')
        click.echo('─' * 40)
        for row in rows:
            next_inv = f'{prefix}-{row.year}-{row.last_seq + 1:04d}'
            click.echo(f'{row.year:<8} {row.last_seq:<12} {next_inv}')

    @app.cli.command('seed-admin')
    @click.option('--name',     prompt='Full name',  help='Admin full name')
    @click.option('--username', prompt='Username',   help='Admin username')
    @click.option('--password', prompt=True, hide_input=True,
                  confirmation_prompt=True, help='Admin password')
    def seed_admin(name, username, password):
        """Create the initial admin user."""
        from storefront.auth.models import User, RoleEnum

        if User.query.filter_by(username=username).first():
            click.echo(f'User "{username}" already exists.')
            return

        admin = User(name=name, username=username, role=RoleEnum.admin)
        admin.set_password(password)
        db.session.add(admin)
        db.session.commit()
        click.echo(f'Admin user "{username}" created successfully.')

    @app.cli.command('import-products')
    @click.argument('csv_file', type=click.File('r', encoding='utf-8-sig'))
    def import_products_command(csv_file):
        """Bulk-load products and variants from a CSV file (see /catalog/csv/template)."""
        from storefront.catalog.csv_import import CSVImportError, import_products

        try:
            created = import_products(csv_file.read())
        except CSVImportError as exc:
            raise click.ClickException(str(exc)) from exc
        variants = sum(len(p.variants) for p in created)
        click.echo(f'{len(created)} products and {variants} variants imported.')

    @app.cli.command('seed-demo')
    def seed_demo():
        """Populate database with demo catalog, customers and staff."""
        from storefront.auth.models import User, RoleEnum, StaffPermission, PERMISSION_KEYS
        from storefront.catalog.csv_import import TEMPLATE, import_products
        from storefront.catalog.models import Product
        from storefront.customers.models import Customer

        click.echo('Seeding demo data...')
        db.create_all()

        if not User.query.filter_by(username='admin').first():
            u = User(name='Admin User', username='admin', role=RoleEnum.admin)
            u.set_password('demo123')
            db.session.add(u)

        if not User.query.filter_by(username='staff1').first():
            staff = User(name='Counter Staff', username='staff1', role=RoleEnum.staff)
            staff.set_password('123')
            db.session.add(staff)
            db.session.flush()
            for key in PERMISSION_KEYS:
                db.session.add(StaffPermission(
                    staff_id=staff.id, permission_key=key, allowed=(key != 'inventory'),
                ))
        db.session.commit()
        click.echo('Users created (admin/demo123, staff1/123).')

        if Product.query.count() == 0:
            created = import_products(TEMPLATE)
            click.echo(f'{len(created)} products seeded from the CSV template.')

        if Customer.query.count() == 0:
            db.session.add(Customer(cust_id='CUST001', name='Walk-in Customer', state='Karnataka'))
            db.session.commit()
            click.echo('Customers seeded.')

        click.echo('Demo seed complete.')
