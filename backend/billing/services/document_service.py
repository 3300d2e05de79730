# Overview: Service-layer operations for document numbering.

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..models import DocumentSequence

INVOICE_DOCUMENT = "invoice"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""


def next_document_number(session, *, document_type: str, prefix: str, pad: int = 6) -> str:
    """
    Allocate the next number for `document_type` inside the caller's
    transaction. The increment is a single UPDATE, so two concurrent
    allocations serialize on the sequence row and can never share a
    number; a rollback of the caller gives the number back.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = session.execute(stmt)
    if result.rowcount:
        current = session.execute(
            select(DocumentSequence.next_number)
            .where(DocumentSequence.document_type == document_type)
        ).scalar_one()
        number = current - 1
    else:
        # First allocation: create the row in a savepoint so a racing
        # creator only costs us a retry of the UPDATE.
        try:
            with session.begin_nested():
                session.add(DocumentSequence(document_type=document_type, next_number=2))
            number = 1
        except IntegrityError:
            result = session.execute(stmt)
            if not result.rowcount:
                raise DocumentSequenceError(f"Could not allocate {document_type} number")
            current = session.execute(
                select(DocumentSequence.next_number)
                .where(DocumentSequence.document_type == document_type)
            ).scalar_one()
            number = current - 1

    return f"{prefix}-{number:0{pad}d}"


def next_invoice_number(session, prefix: str = "INV") -> str:
    return next_document_number(session, document_type=INVOICE_DOCUMENT, prefix=prefix)
