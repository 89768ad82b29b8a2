# Overview: Per-branch invoice and credit note number allocation.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import billing_period

INVOICE_PREFIX = "INV"
CREDIT_NOTE_PREFIX = "CN"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_document_number(*, branch_id: int, document_type: str) -> int:
    """
    Atomically allocate the next number for a branch/type.

    The increment is a single UPDATE, so two transactions can never read the
    same value. The first allocation inserts the row; a concurrent insert
    loses on the unique constraint and falls back to the UPDATE.

    Runs inside the caller's transaction: nothing is committed here.
    """
    if not branch_id:
        raise DocumentSequenceError("branch_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.branch_id == branch_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    if not db.session.execute(stmt).rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(branch_id=branch_id, document_type=document_type, next_number=2))
            return 1
        except IntegrityError:
            if not db.session.execute(stmt).rowcount:
                raise DocumentSequenceError(f"Could not allocate {document_type} number")

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(branch_id=branch_id, document_type=document_type)
        .scalar()
    )
    return current - 1


def _monthly_number(prefix: str, document_type: str, branch_id: int, issued_at: datetime) -> str:
    period = billing_period(issued_at)
    number = next_document_number(branch_id=branch_id, document_type=f"{document_type}:{period}")
    return f"{prefix}-{period}-{number:04d}"


def next_invoice_number(*, branch_id: int, issued_at: datetime) -> str:
    """INV-YYYYMM-NNNN, restarting at 0001 each month for each branch."""
    return _monthly_number(INVOICE_PREFIX, "invoice", branch_id, issued_at)


def next_credit_note_number(*, branch_id: int, issued_at: datetime) -> str:
    """CN-YYYYMM-NNNN, numbered independently of invoices."""
    return _monthly_number(CREDIT_NOTE_PREFIX, "credit_note", branch_id, issued_at)
