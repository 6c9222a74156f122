# Overview: Atomic named counters for sale, expense, revenue and SKU numbers.

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Sequence


SALE_PREFIX = "MD"
EXPENSE_PREFIX = "EXP"
REVENUE_PREFIX = "REV"


def next_value(name: str) -> int:
    """
    Atomically allocate the next value of a named counter.

    Must run inside the caller's write transaction; nothing is committed
    here, so a rolled-back operation also gives its number back.
    """
    stmt = (
        update(Sequence)
        .where(Sequence.name == name)
        .values(next_value=Sequence.next_value + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = db.session.query(Sequence.next_value).filter_by(name=name).scalar()
        return current - 1

    try:
        with db.session.begin_nested():
            db.session.add(Sequence(name=name, next_value=2))
        return 1
    except IntegrityError:
        # Another writer created the row first; fall back to the increment
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        current = db.session.query(Sequence.next_value).filter_by(name=name).scalar()
        return current - 1


def peek_value(name: str) -> int:
    """Value the next call to next_value(name) would return."""
    current = db.session.query(Sequence.next_value).filter_by(name=name).scalar()
    return current or 1


def _sale_key(day: date) -> str:
    return f"sale:{day:%Y%m%d}"


def format_sale_number(day: date, value: int) -> str:
    return f"{SALE_PREFIX}-{day:%Y%m%d}-{value:04d}"


def next_sale_number(day: date) -> str:
    return format_sale_number(day, next_value(_sale_key(day)))


def peek_sale_number(day: date) -> str:
    return format_sale_number(day, peek_value(_sale_key(day)))


def next_expense_number() -> str:
    return f"{EXPENSE_PREFIX}-{next_value('expense'):05d}"


def next_revenue_number() -> str:
    return f"{REVENUE_PREFIX}-{next_value('revenue'):05d}"


def next_sku() -> str:
    return str(next_value("sku"))
