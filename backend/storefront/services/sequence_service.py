# Overview: Daily order number allocation backed by a single counter row per date.

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import OrderSequence
from storefront.time_utils import utctoday


class SequenceError(Exception):
    """Raised when order sequence operations fail."""
    pass


def format_order_number(prefix: str, day: date, number: int, pad: int = 4) -> str:
    return f"{prefix}{day:%Y%m%d}{number:0{pad}d}"


def _current_number(day: date) -> int:
    return (
        db.session.query(OrderSequence.next_number)
        .filter_by(sequence_date=day)
        .scalar()
    )


def next_order_number(*, day: date | None = None, prefix: str | None = None, pad: int = 4) -> str:
    """
    Allocate the next order number for a calendar day.

    The counter row is bumped with a single UPDATE, so two checkouts on the
    same day can never read the same value. Runs inside the caller's
    transaction: a rolled-back checkout gives its number back.
    """
    day = day or utctoday()
    if prefix is None:
        prefix = current_app.config.get("ORDER_NUMBER_PREFIX", "ORD")
    if not prefix:
        raise SequenceError("order number prefix is required")

    stmt = (
        update(OrderSequence)
        .where(OrderSequence.sequence_date == day)
        .values(next_number=OrderSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current_number(day) - 1
    else:
        seq = OrderSequence(sequence_date=day, next_number=2)
        try:
            with db.session.begin_nested():
                db.session.add(seq)
            next_num = 1
        except IntegrityError:
            # Another checkout created today's row first
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current_number(day) - 1

    if next_num > 10 ** pad - 1:
        raise SequenceError(f"Order sequence exhausted for {day.isoformat()}")

    return format_order_number(prefix, day, next_num, pad)
