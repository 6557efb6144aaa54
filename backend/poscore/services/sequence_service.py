# Overview: Atomic document number allocation for orders, returns and Z-reports.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..validation import ValidationError
from poscore.time_utils import date_stamp


ORDER_SEQUENCE = "ORDER"
RETURN_SEQUENCE = "RETURN"
ZREPORT_SEQUENCE_PREFIX = "ZREPORT-"


def allocate_number(document_type: str) -> int:
    """
    Atomically allocate the next number for a sequence.

    Must run inside the caller's transaction: the increment commits or rolls
    back together with the document that consumes it, so a number is never
    skipped by a failed operation and never handed out twice.
    """
    if not document_type:
        raise ValidationError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        # First use of this sequence. The savepoint keeps a lost insert race
        # from aborting the outer transaction.
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            return 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    db.session.flush()
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return current - 1


def next_order_number(prefix: str, now: datetime) -> str:
    """{prefix}{year}-{6-digit sequence}, e.g. POS-2026-000042."""
    number = allocate_number(ORDER_SEQUENCE)
    return f"{prefix}{now.year}-{number:06d}"


def next_return_number(now: datetime) -> str:
    number = allocate_number(RETURN_SEQUENCE)
    return f"RTN-{now.year}-{number:04d}"


def next_z_report_number(now: datetime) -> str:
    """Z-{YYYYMMDD}-{N} where N restarts every business day."""
    stamp = date_stamp(now)
    number = allocate_number(f"{ZREPORT_SEQUENCE_PREFIX}{stamp}")
    return f"Z-{stamp}-{number}"
