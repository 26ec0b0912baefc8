"""
Stock ledger primitives.

``books.quantity_in_stock`` is only ever changed through the functions in this
module. Each of them runs inside the caller's transaction, reads the current
row from the database (never a cached copy) and writes with a conditional
UPDATE so concurrent writers cannot push stock below zero or lose updates.
"""
import logging

from sqlalchemy import select, update

from .errors import InsufficientStock, NotFound, StockGuardViolation
from .models import Book

logger = logging.getLogger(__name__)


def lock_book(session, isbn):
    """
    Load a book with a row lock and fresh column values.
    """
    book = session.execute(
        select(Book)
        .where(Book.isbn == isbn)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if book is None:
        raise NotFound("Book not found")
    return book


def current_stock(session, isbn):
    return session.execute(
        select(Book.quantity_in_stock).where(Book.isbn == isbn)
    ).scalar_one()


def decrement_stock(session, book, quantity):
    """
    Remove ``quantity`` units; fails with InsufficientStock when the row no
    longer holds that many, whatever the in-memory ``book`` says.
    """
    result = session.execute(
        update(Book)
        .where(Book.isbn == book.isbn, Book.quantity_in_stock >= quantity)
        .values(quantity_in_stock=Book.quantity_in_stock - quantity)
        .execution_options(synchronize_session=False)
    )
    session.refresh(book)
    if result.rowcount == 0:
        logger.warning(
            "Stock shortfall for %s: requested %s, available %s",
            book.isbn,
            quantity,
            book.quantity_in_stock,
        )
        raise InsufficientStock(book.isbn, quantity, book.quantity_in_stock)
    return book.quantity_in_stock


def set_stock(session, book, expected, new_quantity):
    """
    Compare-and-set used by the manual sell path. Returns False when another
    transaction changed the row since ``expected`` was read.
    """
    result = session.execute(
        update(Book)
        .where(Book.isbn == book.isbn, Book.quantity_in_stock == expected)
        .values(quantity_in_stock=new_quantity)
        .execution_options(synchronize_session=False)
    )
    session.refresh(book)
    return result.rowcount == 1


def increment_stock(session, book, quantity):
    session.execute(
        update(Book)
        .where(Book.isbn == book.isbn)
        .values(quantity_in_stock=Book.quantity_in_stock + quantity)
        .execution_options(synchronize_session=False)
    )
    session.refresh(book)
    return book.quantity_in_stock


def assert_stock_non_negative(session, isbn):
    """
    Post-condition re-read after a stock write in the same transaction.
    """
    if current_stock(session, isbn) < 0:
        logger.error("Negative stock detected for %s, rolling back", isbn)
        raise StockGuardViolation()
