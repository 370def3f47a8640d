from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from workforce.models import InvoiceSequence, MonthlySummary
from workforce.settings import get_invoice_prefix, get_settings
from workforce.services.summary_calc import format_invoice_number, parse_invoice_sequence

logger = logging.getLogger("workforce.invoices")


def highest_issued_sequence(db: Session, *, year: int, month: int, prefix: str) -> int:
    rows = db.scalars(
        select(MonthlySummary.invoice_number).where(
            MonthlySummary.year == year,
            MonthlySummary.month == month,
            MonthlySummary.invoice_number.is_not(None),
        )
    ).all()
    sequences = [
        value
        for value in (parse_invoice_sequence(item, prefix, year, month) for item in rows)
        if value is not None
    ]
    return max(sequences, default=0)


def _bump_counter(db: Session, *, year: int, month: int) -> int | None:
    result = db.execute(
        update(InvoiceSequence)
        .where(InvoiceSequence.year == year, InvoiceSequence.month == month)
        .values(last_value=InvoiceSequence.last_value + 1)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return None
    return db.scalar(
        select(InvoiceSequence.last_value).where(
            InvoiceSequence.year == year,
            InvoiceSequence.month == month,
        )
    )


def reserve_invoice_sequence(db: Session, *, year: int, month: int) -> int:
    """Reserve the next sequence number of the (year, month) bucket.

    The counter row is locked by the UPDATE until the surrounding transaction
    ends, so concurrent generators in the same bucket queue behind each other.
    When the row does not exist yet it is inserted and flushed; a concurrent
    insert of the same bucket surfaces as ``IntegrityError`` for the caller to
    retry.
    """
    sequence = _bump_counter(db, year=year, month=month)
    issued = highest_issued_sequence(db, year=year, month=month, prefix=get_invoice_prefix())

    if sequence is None:
        counter = InvoiceSequence(year=year, month=month, last_value=issued + 1)
        db.add(counter)
        db.flush()
        return counter.last_value

    if sequence <= issued:
        # Counter fell behind numbers written outside of it.
        sequence = issued + 1
        db.execute(
            update(InvoiceSequence)
            .where(InvoiceSequence.year == year, InvoiceSequence.month == month)
            .values(last_value=sequence)
            .execution_options(synchronize_session=False)
        )
        logger.warning(
            "invoice_counter_resynced",
            extra={"year": year, "month": month, "sequence": sequence},
        )
    return sequence


def reserve_invoice_number(db: Session, *, year: int, month: int) -> str:
    sequence = reserve_invoice_sequence(db, year=year, month=month)
    return format_invoice_number(
        get_invoice_prefix(),
        year,
        month,
        sequence,
        get_settings().invoice_sequence_width,
    )
