# Overview: Service-layer operations for document numbering.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _allocate(document_type: str) -> int:
    """
    Atomically allocate the next number for a document type.

    Runs inside the caller's transaction (no commit): the number is only
    consumed if the caller's transaction commits. A lost race on creating
    the sequence row is absorbed by a savepoint.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            return 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return current - 1


def next_order_number(pad: int = 6) -> str:
    """ORD-<YYYYMMDD>-<NNNNNN>; the counter is global, the date is informational."""
    prefix = current_app.config.get("ORDER_NUMBER_PREFIX", "ORD")
    number = _allocate("ORDER")
    return f"{prefix}-{utcnow():%Y%m%d}-{number:0{pad}d}"
