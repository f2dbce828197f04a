from datetime import datetime

import pytest

from tradeledger.extensions import db
from tradeledger.models import DocumentSequence
from tradeledger.services.document_service import next_document_number


class TestDocumentNumbers:
    """Per-type, per-year counters."""

    def test_yearly_sequence(self, db_session):
        when = datetime(2026, 3, 1)
        assert next_document_number("invoice", when=when) == "INV-2026-00001"
        assert next_document_number("invoice", when=when) == "INV-2026-00002"
        db.session.commit()

    def test_new_year_restarts(self, db_session):
        assert next_document_number("purchase", when=datetime(2025, 12, 31)) == "PO-2025-00001"
        assert next_document_number("purchase", when=datetime(2026, 1, 1)) == "PO-2026-00001"
        db.session.commit()

        periods = {s.period for s in db.session.query(DocumentSequence).filter_by(document_type="purchase")}
        assert periods == {"2025", "2026"}

    def test_types_are_independent(self, db_session):
        when = datetime(2026, 6, 1)
        assert next_document_number("quotation", when=when) == "QUO-2026-00001"
        assert next_document_number("invoice", when=when) == "INV-2026-00001"
        db.session.commit()

    def test_counterparty_codes_have_no_period(self, db_session):
        assert next_document_number("client") == "CLI00001"
        assert next_document_number("client") == "CLI00002"
        assert next_document_number("supplier") == "SUP00001"
        db.session.commit()

    def test_rolled_back_allocation_is_reused(self, db_session):
        """Numbers are allocated inside the caller's transaction."""
        when = datetime(2026, 1, 5)
        next_document_number("invoice", when=when)
        db.session.rollback()
        assert next_document_number("invoice", when=when) == "INV-2026-00001"
        db.session.commit()

    def test_unknown_type(self, db_session):
        with pytest.raises(KeyError):
            next_document_number("receipt")
