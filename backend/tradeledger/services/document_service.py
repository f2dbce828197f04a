# Overview: Service-layer operations for document numbering; atomic sequences shared by all document types.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow


# document_type -> (prefix, per-year)
SEQUENCES = {
    "invoice": ("INV", True),
    "purchase": ("PO", True),
    "quotation": ("QUO", True),
    "client": ("CLI", False),
    "supplier": ("SUP", False),
}


def _current_value(document_type: str, period: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, period=period)
        .scalar()
    )


def _allocate(document_type: str, period: str) -> int:
    """
    Reserve the next number for (document_type, period) inside the caller's
    transaction.

    The increment is a single UPDATE ... SET next_number = next_number + 1, so
    two concurrent creators serialize on the sequence row. The first number of
    a new period is inserted under a savepoint; losing that insert race falls
    back to the increment without discarding the caller's pending work.
    """
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        return _current_value(document_type, period) - 1

    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(document_type=document_type, period=period, next_number=2))
        return 1
    except IntegrityError:
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        return _current_value(document_type, period) - 1


def next_document_number(document_type: str, *, when=None, pad: int = 5) -> str:
    """
    Allocate the next human-readable number for a document type.

    Yearly sequences render as PREFIX-YYYY-00001 (INV, PO, QUO);
    counterparty codes render as PREFIX00001 (CLI, SUP).
    Must be called inside the transaction that creates the document.
    """
    if document_type not in SEQUENCES:
        raise KeyError(f"Unknown document type: {document_type}")
    prefix, yearly = SEQUENCES[document_type]

    if yearly:
        period = str((when or utcnow()).year)
        number = _allocate(document_type, period)
        return f"{prefix}-{period}-{number:0{pad}d}"

    number = _allocate(document_type, "")
    return f"{prefix}{number:0{pad}d}"
