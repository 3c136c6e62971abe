# Overview: Service-layer operations for sequence; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Sequence, Tile
from tilestock.time_utils import utcnow


TILE_SKU_SEQUENCE = "tile_sku"
SALE_NUMBER_SEQUENCE = "sale_number"


class SequenceError(Exception):
    """Raised when sequence operations fail."""
    pass


def next_value(name: str, period: str = "") -> int:
    """
    Atomically allocate the next number of a (name, period) sequence.

    Runs inside the caller's unit of work: the increment commits or rolls back
    together with the row that consumes the number. The first allocation of a
    period inserts the counter row inside a SAVEPOINT so a concurrent insert of
    the same row only loses the savepoint, never the caller's pending work.
    """
    if not name:
        raise SequenceError("sequence name is required")

    stmt = (
        update(Sequence)
        .where(Sequence.name == name, Sequence.period == period)
        .values(next_number=Sequence.next_number + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )

    def _current() -> int:
        current = (
            db.session.query(Sequence.next_number)
            .filter_by(name=name, period=period)
            .scalar()
        )
        return current - 1

    result = db.session.execute(stmt)
    if result.rowcount:
        return _current()

    try:
        with db.session.begin_nested():
            db.session.add(Sequence(name=name, period=period, next_number=2))
        return 1
    except IntegrityError:
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        return _current()


def next_tile_sku() -> str:
    """
    Generate TILE-###### that is not already taken.

    Skips numbers that collide with SKUs entered by hand, so the sequence can
    be introduced over existing data.
    """
    while True:
        candidate = f"TILE-{next_value(TILE_SKU_SEQUENCE):06d}"
        exists = db.session.query(Tile.id).filter(Tile.sku == candidate).first()
        if exists is None:
            return candidate


def next_sale_number(now=None) -> str:
    """SALE-YYYYMM-######, numbered per calendar month."""
    now = now or utcnow()
    period = now.strftime("%Y%m")
    number = next_value(SALE_NUMBER_SEQUENCE, period)
    return f"SALE-{period}-{number:06d}"
