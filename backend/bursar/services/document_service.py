# Overview: Atomic document-number allocation for finance documents.

from __future__ import annotations

from sqlalchemy import update

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence


def next_document_number(*, document_type: str, prefix: str, pad: int = 5) -> str:
    """
    Allocate the next document number for a type, e.g. "BTX-00042".

    Runs inside the caller's unit of work. The increment is a single UPDATE so
    concurrent callers serialize on the sequence row; if two callers race to
    create the first row, the loser's IntegrityError makes run_with_retry
    replay the whole unit of work against the now-existing row.
    """
    if not document_type:
        raise ValidationError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        db.session.add(DocumentSequence(document_type=document_type, next_number=2))
        db.session.flush()
        next_num = 1

    return f"{prefix}-{next_num:0{pad}d}"
