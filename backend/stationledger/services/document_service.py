# Overview: Service-layer operations for document numbering; per-station invoice and order sequences.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


DOCUMENT_INVOICE = "invoice"
DOCUMENT_PURCHASE_ORDER = "purchase_order"

DOCUMENT_PREFIXES = {
    DOCUMENT_INVOICE: "INV",
    DOCUMENT_PURCHASE_ORDER: "PO",
}


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _bump(station_id: int, document_type: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.station_id == station_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(station_id=station_id, document_type=document_type)
        .scalar()
    )
    return current - 1


def next_document_number(*, station_id: int, document_type: str, pad: int = 6) -> str:
    """
    Allocate the next document number for a station/type.

    Runs inside the caller's unit of work: the counter row is updated in the
    same transaction as the document that uses the number, so a rolled-back
    sale gives its number back.
    """
    if not station_id:
        raise DocumentSequenceError("station_id is required")
    prefix = DOCUMENT_PREFIXES.get(document_type)
    if prefix is None:
        raise DocumentSequenceError(f"Unknown document type: {document_type}")

    next_num = _bump(station_id, document_type)
    if next_num is None:
        # First document for this station/type. The savepoint keeps a lost
        # insert race from rolling back the caller's whole transaction.
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(
                    station_id=station_id, document_type=document_type, next_number=2,
                ))
            next_num = 1
        except IntegrityError:
            next_num = _bump(station_id, document_type)
            if next_num is None:
                raise

    return f"{prefix}-{station_id:03d}-{next_num:0{pad}d}"
