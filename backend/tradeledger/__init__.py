# backend/tradeledger/__init__.py
from flask import Flask

from .config import Config
from .errors import LedgerError
from .extensions import db, migrate
from .logging_config import configure_logging


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.categories import categories_bp
    from .routes.products import products_bp
    from .routes.stock import stock_bp
    from .routes.parties import clients_bp, suppliers_bp
    from .routes.invoices import invoices_bp
    from .routes.purchases import purchases_bp
    from .routes.quotations import quotations_bp

    app.register_blueprint(categories_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(clients_bp)
    app.register_blueprint(suppliers_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(purchases_bp)
    app.register_blueprint(quotations_bp)

    @app.errorhandler(LedgerError)
    def handle_ledger_error(exc: LedgerError):
        return exc.to_dict(), exc.status_code

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
