import logging
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import update

from tradeledger.extensions import db
from tradeledger.logging_config import LOGGER_NAME, configure_logging
from tradeledger.models import Product, Quotation
from tradeledger.services import quotation_service
from tradeledger.time_utils import utcnow


class TestLedgerVerifyCommand:
    """flask ledger verify"""

    def test_consistent_ledger_passes(self, app, product, empty_product):
        result = app.test_cli_runner().invoke(args=["ledger", "verify"])

        assert result.exit_code == 0
        assert "PASS CEM-50" in result.output
        assert "2 products checked, 0 inconsistent" in result.output

    def test_drift_fails(self, app, product):
        db.session.execute(
            update(Product).where(Product.id == product.id).values(current_stock=Decimal("99"))
        )
        db.session.commit()

        result = app.test_cli_runner().invoke(args=["ledger", "verify", "--product-id", str(product.id)])

        assert result.exit_code == 1
        assert "FAIL CEM-50" in result.output
        assert "1 products checked, 1 inconsistent" in result.output


class TestQuotationExpireCommand:

    def test_expire(self, app, customer, product):
        quotation = quotation_service.create_quotation(
            customer.id,
            [{"product_id": product.id, "quantity": "1", "unit_price": "10"}],
            valid_until=(utcnow() - timedelta(days=2)).isoformat(),
        )

        result = app.test_cli_runner().invoke(args=["quotations", "expire"])

        assert result.exit_code == 0
        assert f"EXPIRED {quotation.quotation_number}" in result.output
        db.session.expire_all()
        assert db.session.get(Quotation, quotation.id).status == "expired"

    def test_cutoff_in_the_past_expires_nothing(self, app, customer, product):
        quotation_service.create_quotation(
            customer.id,
            [{"product_id": product.id, "quantity": "1", "unit_price": "10"}],
            valid_until=(utcnow() - timedelta(days=2)).isoformat(),
        )

        result = app.test_cli_runner().invoke(args=["quotations", "expire", "--as-of", "2000-01-01"])

        assert result.exit_code == 0
        assert "0 quotations expired" in result.output

    def test_invalid_cutoff(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["quotations", "expire", "--as-of", "yesterday"])
        assert result.exit_code == 2


class TestSystemCommands:

    def test_reset_requires_confirmation(self, app, product):
        result = app.test_cli_runner().invoke(args=["system", "reset-db"])

        assert result.exit_code == 1
        assert "Refusing" in result.output
        assert db.session.query(Product).count() == 1


class TestLogging:

    def test_handler_installed_once(self, app):
        configure_logging(app)
        configure_logging(app)

        logger = logging.getLogger(LOGGER_NAME)
        installed = [h for h in logger.handlers if getattr(h, "_tradeledger_handler", False)]
        assert len(installed) == 1
