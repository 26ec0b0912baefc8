"""
Publisher restock orders.

A book that drops below its threshold gets a Pending order; an admin confirms
it when the delivery arrives, which is the only way stock ever goes up.
"""
import logging
from datetime import datetime

import requests
from sqlalchemy import case, func, select

from .db import transaction
from .errors import NotFound
from .ledger import assert_stock_non_negative, increment_stock, lock_book
from .models import Book, ORDER_CONFIRMED, ORDER_PENDING, PublisherOrder

logger = logging.getLogger(__name__)


def maybe_reorder(session, book, previous_quantity, reorder_quantity):
    """
    Record a Pending order if the last write left ``book`` below threshold.

    Fires when stock crosses below the threshold and on every further
    decrement while it stays below. An already Pending order for the same
    ISBN does not suppress a new one.
    """
    new_quantity = book.quantity_in_stock
    if new_quantity >= book.threshold or new_quantity >= previous_quantity:
        return None

    pending = session.execute(
        select(func.count(PublisherOrder.order_id)).where(
            PublisherOrder.isbn == book.isbn,
            PublisherOrder.status == ORDER_PENDING,
        )
    ).scalar_one()
    if pending:
        logger.warning(
            "Book %s already has %s pending publisher order(s); creating another",
            book.isbn,
            pending,
        )

    order = PublisherOrder(
        isbn=book.isbn,
        quantity_ordered=int(reorder_quantity),
        status=ORDER_PENDING,
        order_date=datetime.utcnow(),
    )
    session.add(order)
    session.flush()
    logger.info(
        "Reorder %s created for %s (stock %s -> %s, threshold %s, qty %s)",
        order.order_id,
        book.isbn,
        previous_quantity,
        new_quantity,
        book.threshold,
        order.quantity_ordered,
    )
    return order


def order_to_dict(order, title=None):
    return {
        "order_id": order.order_id,
        "isbn": order.isbn,
        "title": title if title is not None else order.book.title,
        "quantity_ordered": order.quantity_ordered,
        "status": order.status,
        "order_date": order.order_date.isoformat(),
        "confirmed_date": order.confirmed_date.isoformat()
        if order.confirmed_date
        else None,
    }


def list_pending_orders(session):
    rows = session.execute(
        select(PublisherOrder, Book.title)
        .join(Book, Book.isbn == PublisherOrder.isbn)
        .where(PublisherOrder.status == ORDER_PENDING)
        .order_by(PublisherOrder.order_date.asc(), PublisherOrder.order_id.asc())
    ).all()
    return [order_to_dict(order, title) for order, title in rows]


def book_order_summary(session, isbn):
    book = session.get(Book, isbn)
    if book is None:
        raise NotFound("Book not found")

    row = session.execute(
        select(
            func.count(PublisherOrder.order_id),
            func.coalesce(func.sum(PublisherOrder.quantity_ordered), 0),
            func.coalesce(
                func.sum(case((PublisherOrder.status == ORDER_CONFIRMED, 1), else_=0)), 0
            ),
            func.coalesce(
                func.sum(case((PublisherOrder.status == ORDER_PENDING, 1), else_=0)), 0
            ),
        ).where(PublisherOrder.isbn == isbn)
    ).one()

    return {
        "book": {"isbn": book.isbn, "title": book.title},
        "orders": {
            "total_orders": int(row[0]),
            "total_quantity_ordered": int(row[1]),
            "confirmed_orders": int(row[2]),
            "pending_orders": int(row[3]),
        },
    }


def confirm_order(session, order_id):
    """
    Apply a Pending order's quantity to stock and close it, atomically.
    A second confirmation of the same order sees no Pending row -> NotFound.
    """
    with transaction(session):
        order = session.execute(
            select(PublisherOrder)
            .where(
                PublisherOrder.order_id == order_id,
                PublisherOrder.status == ORDER_PENDING,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise NotFound("Order not found or already confirmed")

        book = lock_book(session, order.isbn)
        previous = book.quantity_in_stock
        new_quantity = increment_stock(session, book, order.quantity_ordered)

        order.status = ORDER_CONFIRMED
        order.confirmed_date = datetime.utcnow()
        session.flush()
        assert_stock_non_negative(session, book.isbn)

    logger.info(
        "Order %s confirmed: %s stock %s -> %s",
        order.order_id,
        order.isbn,
        previous,
        new_quantity,
    )
    return {
        "order_id": order.order_id,
        "isbn": order.isbn,
        "quantity_ordered": order.quantity_ordered,
        "previous_quantity": previous,
        "new_quantity": new_quantity,
        "status": order.status,
    }


# ---------------------------------------------------------
# Publisher notifications (sent after commit, never inside
# a stock transaction)
# ---------------------------------------------------------

def _publisher_payload(order):
    book = order.book
    return {
        "order_id": order.order_id,
        "isbn": order.isbn,
        "title": book.title,
        "publisher": book.publisher.name if book.publisher else None,
        "quantity_ordered": order.quantity_ordered,
        "order_date": order.order_date.isoformat(),
    }


def notify_publisher(session, order_id, url, timeout=3):
    """
    POST a Pending order to the publisher endpoint. On failure the order is
    left un-notified so retry_pending_notifications() can pick it up later.
    """
    if not url:
        return False

    order = session.get(PublisherOrder, order_id)
    if order is None or order.notified_at is not None:
        return False

    try:
        resp = requests.post(url, json=_publisher_payload(order), timeout=timeout)
        if not resp.ok:
            raise RuntimeError(f"Publisher returned {resp.status_code}")
    except (requests.RequestException, RuntimeError) as e:
        logger.warning("Failed to notify publisher of order %s: %s", order_id, e)
        return False

    with transaction(session):
        order.notified_at = datetime.utcnow()
    logger.info("Publisher notified of order %s", order_id)
    return True


def retry_pending_notifications(session, url, timeout=3):
    order_ids = session.execute(
        select(PublisherOrder.order_id)
        .where(
            PublisherOrder.status == ORDER_PENDING,
            PublisherOrder.notified_at.is_(None),
        )
        .order_by(PublisherOrder.order_id)
    ).scalars().all()

    sent = 0
    for order_id in order_ids:
        if notify_publisher(session, order_id, url, timeout=timeout):
            sent += 1
    return {"attempted": len(order_ids), "sent": sent}
