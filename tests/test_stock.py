"""Tests for the stock ledger and the admin manual sell path."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from bookstore_service import ledger
from bookstore_service.db import is_stock_guard_error, transaction
from bookstore_service.errors import (
    Conflict,
    Forbidden,
    InsufficientStock,
    InvalidInput,
    NotFound,
    StockGuardViolation,
)
from bookstore_service.models import Book, ORDER_PENDING, PublisherOrder
from bookstore_service.stock import coerce_int, sell_stock

from conftest import SMALL_ISBN, SPEC_ISBN


def _pending_orders(session, isbn):
    return session.execute(
        select(PublisherOrder).where(
            PublisherOrder.isbn == isbn, PublisherOrder.status == ORDER_PENDING
        )
    ).scalars().all()


def _stock(session, isbn):
    return ledger.current_stock(session, isbn)


def test_sell_below_threshold_triggers_single_reorder(session, books):
    before = datetime.utcnow()

    result = sell_stock(session, SPEC_ISBN, 9, reorder_quantity=20)

    assert result.previous_quantity == 12
    assert result.new_quantity == 9
    assert result.threshold == 10
    assert result.reorder_triggered is True
    assert "Publisher order is waiting for confirmation" in result.message
    assert _stock(session, SPEC_ISBN) == 9

    orders = _pending_orders(session, SPEC_ISBN)
    assert len(orders) == 1
    assert orders[0].order_id == result.reorder_order_id
    assert orders[0].quantity_ordered == 20
    assert before - timedelta(seconds=1) <= orders[0].order_date <= datetime.utcnow()


def test_sell_above_threshold_does_not_reorder(session, books):
    result = sell_stock(session, SPEC_ISBN, 11)

    assert result.reorder_triggered is False
    assert result.message == "Book quantity decreased from 12 to 11."
    assert _pending_orders(session, SPEC_ISBN) == []


def test_sell_when_already_below_threshold_is_forbidden(session, books):
    sell_stock(session, SPEC_ISBN, 9)

    with pytest.raises(Forbidden, match="less than threshold"):
        sell_stock(session, SPEC_ISBN, 5)

    assert _stock(session, SPEC_ISBN) == 9
    assert len(_pending_orders(session, SPEC_ISBN)) == 1


@pytest.mark.parametrize("new_quantity", [13, 100, "50"])
def test_manual_increase_is_always_forbidden(session, books, new_quantity):
    with pytest.raises(Forbidden, match="publisher order"):
        sell_stock(session, SPEC_ISBN, new_quantity)
    assert _stock(session, SPEC_ISBN) == 12


def test_unknown_book_wins_over_invalid_quantity(session, books):
    with pytest.raises(NotFound):
        sell_stock(session, "0000000000000", None)


@pytest.mark.parametrize("bad", [None, "", -1, "abc", 2.5, True])
def test_invalid_quantity_is_rejected(session, books, bad):
    with pytest.raises(InvalidInput):
        sell_stock(session, SPEC_ISBN, bad)
    assert _stock(session, SPEC_ISBN) == 12


def test_same_quantity_is_no_change(session, books):
    with pytest.raises(InvalidInput, match="No change"):
        sell_stock(session, SPEC_ISBN, 12)


def test_integer_strings_are_accepted(session, books):
    result = sell_stock(session, SPEC_ISBN, " 11 ")
    assert result.new_quantity == 11


def test_sell_to_zero(session, books):
    result = sell_stock(session, SMALL_ISBN, 0)

    assert result.new_quantity == 0
    assert result.reorder_triggered is True
    assert _stock(session, SMALL_ISBN) == 0


def test_coerce_int_minimum():
    assert coerce_int("7", "quantity", minimum=1) == 7
    assert coerce_int(3.0, "quantity") == 3
    with pytest.raises(InvalidInput, match="at least 1"):
        coerce_int(0, "quantity", minimum=1)


def test_decrement_with_stale_copy_cannot_oversell(session_factory, books):
    stale = session_factory()
    fresh = session_factory()
    try:
        book = stale.get(Book, SMALL_ISBN)
        assert book.quantity_in_stock == 3

        with transaction(fresh):
            ledger.decrement_stock(fresh, ledger.lock_book(fresh, SMALL_ISBN), 3)

        with pytest.raises(InsufficientStock) as excinfo:
            with transaction(stale):
                ledger.decrement_stock(stale, book, 1)

        assert excinfo.value.isbn == SMALL_ISBN
        assert excinfo.value.available == 0
        assert ledger.current_stock(stale, SMALL_ISBN) == 0
    finally:
        stale.close()
        fresh.close()


def test_set_stock_detects_concurrent_change(session_factory, books):
    first = session_factory()
    second = session_factory()
    try:
        book = first.get(Book, SPEC_ISBN)
        sell_stock(second, SPEC_ISBN, 11)

        with transaction(first):
            assert ledger.set_stock(first, book, 12, 10) is False
        assert ledger.current_stock(first, SPEC_ISBN) == 11
    finally:
        first.close()
        second.close()


def test_sell_reports_conflict_when_compare_and_set_fails(session, books, monkeypatch):
    monkeypatch.setattr("bookstore_service.stock.set_stock", lambda *a: False)

    with pytest.raises(Conflict):
        sell_stock(session, SPEC_ISBN, 11)


def test_storage_guard_rejects_negative_stock(session, books):
    with pytest.raises(StockGuardViolation):
        with transaction(session):
            session.execute(
                update(Book)
                .where(Book.isbn == SMALL_ISBN)
                .values(quantity_in_stock=-1)
                .execution_options(synchronize_session=False)
            )

    assert _stock(session, SMALL_ISBN) == 3


def test_storage_guard_is_a_forbidden_error():
    assert issubclass(StockGuardViolation, Forbidden)
    assert StockGuardViolation().status_code == 403


def test_lock_book_unknown(session, books):
    with pytest.raises(NotFound):
        ledger.lock_book(session, "9999999999999")


def test_only_the_stock_check_counts_as_a_guard_violation():
    named = IntegrityError(
        "UPDATE books", {}, Exception("CHECK constraint failed: ck_books_stock_non_negative")
    )
    unnamed = IntegrityError(
        "UPDATE books",
        {},
        Exception('new row violates check constraint on "quantity_in_stock"'),
    )
    not_null = IntegrityError(
        "UPDATE books", {}, Exception("NOT NULL constraint failed: books.quantity_in_stock")
    )

    assert is_stock_guard_error(named)
    assert is_stock_guard_error(unnamed)
    assert not is_stock_guard_error(not_null)


def test_null_stock_is_not_reported_as_negative_stock(session, books):
    with pytest.raises(IntegrityError):
        with transaction(session):
            session.execute(
                update(Book)
                .where(Book.isbn == SMALL_ISBN)
                .values(quantity_in_stock=None)
                .execution_options(synchronize_session=False)
            )

    assert _stock(session, SMALL_ISBN) == 3
