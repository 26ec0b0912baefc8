"""
Checkout: turn a customer's cart into a recorded sale.

The whole body runs in one transaction. Either every cart line is paid for,
decremented and recorded (plus any resulting publisher reorders), or nothing
is written at all.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List

from sqlalchemy import delete, select

from .cart import CENTS
from .db import transaction
from .errors import EmptyCart, InsufficientStock
from .ledger import assert_stock_non_negative, decrement_stock, lock_book
from .models import Book, CartEntry, Sale, SaleItem
from .payments import validate_payment
from .reorders import maybe_reorder

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    sale_id: int
    total: Decimal
    card_last4: str
    card_network: str
    reorder_order_ids: List[int] = field(default_factory=list)

    def to_dict(self):
        return {
            "sale_id": self.sale_id,
            "total": str(self.total),
            "card_last4": self.card_last4,
            "card_network": self.card_network,
            "reorder_order_ids": list(self.reorder_order_ids),
        }


def checkout(
    session,
    customer_id,
    card_number,
    expiry,
    reorder_quantity=20,
    max_years_ahead=10,
    today=None,
):
    # Payment problems are reported before any database work starts
    payment = validate_payment(
        card_number, expiry, today=today, max_years_ahead=max_years_ahead
    )

    with transaction(session):
        lines = session.execute(
            select(CartEntry)
            .where(CartEntry.customer_id == customer_id)
            .order_by(CartEntry.isbn)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        if not lines:
            raise EmptyCart()

        # Lock every book first, in ISBN order, and price from current rows
        books = {line.isbn: lock_book(session, line.isbn) for line in lines}
        total = sum(
            (Decimal(books[line.isbn].price) * line.quantity for line in lines),
            Decimal("0"),
        ).quantize(CENTS)

        sale = Sale(
            customer_id=customer_id,
            total_price=total,
            card_last4=payment.last4,
            card_network=payment.network,
            card_expiry=payment.expiry,
            sale_date=datetime.utcnow(),
        )
        session.add(sale)
        session.flush()

        reorders = []
        for line in lines:
            book = books[line.isbn]
            previous = book.quantity_in_stock
            if previous < line.quantity:
                raise InsufficientStock(book.isbn, line.quantity, previous)
            decrement_stock(session, book, line.quantity)
            assert_stock_non_negative(session, book.isbn)

            session.add(
                SaleItem(
                    sale_id=sale.sale_id,
                    isbn=book.isbn,
                    quantity=line.quantity,
                    unit_price=book.price,
                )
            )
            order = maybe_reorder(session, book, previous, reorder_quantity)
            if order is not None:
                reorders.append(order.order_id)

        session.execute(
            delete(CartEntry)
            .where(CartEntry.customer_id == customer_id)
            .execution_options(synchronize_session=False)
        )
        sale_id = sale.sale_id

    logger.info(
        "Sale %s recorded for customer %s: %s lines, total %s, card %s ****%s",
        sale_id,
        customer_id,
        len(lines),
        total,
        payment.network,
        payment.last4,
    )
    return CheckoutResult(
        sale_id=sale_id,
        total=total,
        card_last4=payment.last4,
        card_network=payment.network,
        reorder_order_ids=reorders,
    )


def past_orders(session, customer_id):
    sales = session.execute(
        select(Sale)
        .where(Sale.customer_id == customer_id)
        .order_by(Sale.sale_date.desc(), Sale.sale_id.desc())
    ).scalars().all()

    titles = dict(
        session.execute(
            select(Book.isbn, Book.title)
            .join(SaleItem, SaleItem.isbn == Book.isbn)
            .join(Sale, Sale.sale_id == SaleItem.sale_id)
            .where(Sale.customer_id == customer_id)
        ).all()
    )

    return [
        {
            "order_no": s.sale_id,
            "order_date": s.sale_date.isoformat(),
            "total_price": str(Decimal(s.total_price).quantize(CENTS)),
            "card": "**** " + s.card_last4,
            "items": [
                {
                    "isbn": item.isbn,
                    "title": titles.get(item.isbn),
                    "quantity": item.quantity,
                    "unit_price": str(Decimal(item.unit_price).quantize(CENTS)),
                }
                for item in s.items
            ],
        }
        for s in sales
    ]
