"""
Admin stock editing.

Admins can only lower a book's stock by hand (recording an over-the-counter
sale). Raising it is reserved for confirmed publisher orders.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Optional

from .db import transaction
from .errors import Conflict, Forbidden, InvalidInput
from .ledger import assert_stock_non_negative, lock_book, set_stock
from .reorders import maybe_reorder

logger = logging.getLogger(__name__)

AWAITING_PUBLISHER = (
    "Quantity in stock is less than threshold...Publisher order is waiting for confirmation"
)


@dataclass
class StockUpdate:
    isbn: str
    previous_quantity: int
    new_quantity: int
    threshold: int
    reorder_triggered: bool
    message: str
    reorder_order_id: Optional[int] = None

    def to_dict(self):
        return asdict(self)


def coerce_int(value, field, minimum=0):
    """
    Accept ints and integer strings; reject bools, fractions and anything
    below ``minimum``.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidInput(f"{field} is required")
    if isinstance(value, bool):
        raise InvalidInput(f"{field} must be an integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidInput(f"{field} must be an integer")
        value = int(value)
    try:
        number = int(str(value).strip()) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{field} must be an integer")

    if number < minimum:
        if minimum == 0:
            raise InvalidInput(f"{field} must be zero or a positive number")
        raise InvalidInput(f"{field} must be at least {minimum}")
    return number


def sell_stock(session, isbn, new_quantity, reorder_quantity=20):
    """
    Set a book's stock to a lower value. Checks run in order and the first
    failure wins: unknown book, bad quantity, increase, already below
    threshold, no change.
    """
    with transaction(session):
        book = lock_book(session, isbn)
        current = book.quantity_in_stock
        threshold = book.threshold

        new_quantity = coerce_int(new_quantity, "quantity_in_stock")

        if new_quantity > current:
            raise Forbidden(
                "You can't add quantity manually. You must wait for the "
                "publisher order and confirm it when it arrives."
            )
        if current < threshold:
            raise Forbidden(AWAITING_PUBLISHER)
        if new_quantity == current:
            raise InvalidInput("No change detected in quantity")

        if not set_stock(session, book, current, new_quantity):
            raise Conflict("Stock changed while updating, please retry")
        assert_stock_non_negative(session, isbn)

        order = maybe_reorder(session, book, current, reorder_quantity)
        order_id = order.order_id if order is not None else None

    message = f"Book quantity decreased from {current} to {new_quantity}."
    if new_quantity < threshold:
        message += " " + AWAITING_PUBLISHER

    logger.info(
        "Manual sell on %s: %s -> %s (reorder=%s)", isbn, current, new_quantity, order_id
    )
    return StockUpdate(
        isbn=isbn,
        previous_quantity=current,
        new_quantity=new_quantity,
        threshold=threshold,
        reorder_triggered=order_id is not None,
        message=message,
        reorder_order_id=order_id,
    )
