import logging
from decimal import Decimal

from sqlalchemy import delete, select

from .db import transaction
from .errors import InvalidInput, NotFound
from .models import Book, CartEntry
from .stock import coerce_int

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def add_to_cart(session, customer_id, isbn, quantity):
    """
    Add ``quantity`` copies to the customer's cart, accumulating onto an
    existing line. The stock check here is advisory; checkout checks again.
    """
    quantity = coerce_int(quantity, "quantity", minimum=1)
    if not isbn:
        raise InvalidInput("isbn is required")

    with transaction(session):
        book = session.get(Book, isbn)
        if book is None:
            raise NotFound("Book not found")

        entry = session.get(CartEntry, (customer_id, isbn))
        wanted = quantity + (entry.quantity if entry else 0)
        if book.quantity_in_stock < wanted:
            raise InvalidInput(
                f"Only {book.quantity_in_stock} copies of {isbn} in stock"
            )

        if entry:
            entry.quantity = wanted
        else:
            entry = CartEntry(customer_id=customer_id, isbn=isbn, quantity=quantity)
            session.add(entry)

    logger.info("Cart %s: %s x%s (line total %s)", customer_id, isbn, quantity, wanted)
    return {"isbn": isbn, "quantity": wanted}


def remove_from_cart(session, customer_id, isbn):
    with transaction(session):
        entry = session.get(CartEntry, (customer_id, isbn))
        if entry is None:
            raise NotFound("Book is not in the cart")
        session.delete(entry)


def clear_cart(session, customer_id):
    with transaction(session):
        result = session.execute(
            delete(CartEntry).where(CartEntry.customer_id == customer_id)
        )
    return result.rowcount


def view_cart(session, customer_id):
    rows = session.execute(
        select(CartEntry.isbn, Book.title, CartEntry.quantity, Book.price)
        .join(Book, Book.isbn == CartEntry.isbn)
        .where(CartEntry.customer_id == customer_id)
        .order_by(Book.title, CartEntry.isbn)
    ).all()

    items = []
    total = Decimal("0")
    for isbn, title, quantity, price in rows:
        subtotal = (Decimal(price) * quantity).quantize(CENTS)
        total += subtotal
        items.append(
            {
                "isbn": isbn,
                "title": title,
                "quantity": quantity,
                "unit_price": str(Decimal(price).quantize(CENTS)),
                "subtotal": str(subtotal),
            }
        )
    return {"items": items, "total": str(total.quantize(CENTS))}
