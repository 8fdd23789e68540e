# Overview: Per-business document numbering (expense numbers).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _current_number(business_id: int, document_type: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(business_id=business_id, document_type=document_type)
        .scalar()
    )


def next_document_number(
    *,
    business_id: int,
    document_type: str,
    prefix: str,
    pad: int = 3,
) -> str:
    """
    Allocate the next document number for a business/type, e.g. EXP-001.

    The counter is bumped with a single UPDATE so two writers never receive
    the same number. Does not commit; the caller's transaction owns it.
    """
    if not business_id:
        raise DocumentSequenceError("business_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.business_id == business_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        db.session.flush()
        next_num = _current_number(business_id, document_type) - 1
    else:
        seq = DocumentSequence(business_id=business_id, document_type=document_type, next_number=2)
        db.session.add(seq)
        try:
            db.session.flush()
        except IntegrityError as exc:
            db.session.rollback()
            raise DocumentSequenceError(
                f"{document_type} sequence for business {business_id} was created concurrently; retry"
            ) from exc
        next_num = 1

    return f"{prefix}-{next_num:0{pad}d}"
