import logging
import re
from decimal import Decimal, InvalidOperation

from sqlalchemy import select

from .db import transaction
from .errors import Conflict, InvalidInput, NotFound
from .models import Author, Book, CATEGORIES, Publisher
from .stock import coerce_int

logger = logging.getLogger(__name__)

ISBN_RE = re.compile(r"[0-9]{13}")


def normalize_isbn(value):
    isbn = re.sub(r"[\s-]", "", str(value or ""))
    if not ISBN_RE.fullmatch(isbn):
        raise InvalidInput("ISBN must be 13 digits")
    return isbn


def _parse_price(value):
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidInput("price must be a number")
    if not price.is_finite() or price <= 0:
        raise InvalidInput("price must be greater than zero")
    return price.quantize(Decimal("0.01"))


def _author_names(value):
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    names = []
    for name in value:
        name = str(name).strip()
        if name and name not in names:
            names.append(name)
    return names


def _get_or_create_publisher(session, name):
    publisher = session.execute(
        select(Publisher).where(Publisher.name == name)
    ).scalar_one_or_none()
    if publisher is None:
        publisher = Publisher(name=name)
        session.add(publisher)
        session.flush()
        logger.info("Created publisher %r", name)
    return publisher


def _get_or_create_author(session, name):
    author = session.execute(
        select(Author).where(Author.author_name == name)
    ).scalar_one_or_none()
    if author is None:
        author = Author(author_name=name)
        session.add(author)
        session.flush()
    return author


def add_book(session, data, default_threshold=10):
    """
    Admin: register a new title with its publisher and authors.

    Request JSON:
      {
        "isbn": "9781234567897",
        "title": "...",
        "category": "Science",
        "price": "19.99",
        "publisher": "Prentice Hall",
        "authors": ["A. Writer", "B. Writer"],   # or "A. Writer, B. Writer"
        "publication_year": 2008,                  # optional
        "quantity_in_stock": 12,                   # optional, default 0
        "threshold": 10                            # optional
      }
    """
    isbn = normalize_isbn(data.get("isbn"))
    title = (data.get("title") or "").strip()
    category = data.get("category")
    publisher_name = (data.get("publisher") or "").strip()
    if not title or not category or data.get("price") is None:
        raise InvalidInput("Missing required fields: isbn, title, price, category")
    if category not in CATEGORIES:
        raise InvalidInput(f"category must be one of: {', '.join(CATEGORIES)}")
    if not publisher_name:
        raise InvalidInput("publisher is required")

    price = _parse_price(data.get("price"))
    stock = coerce_int(data.get("quantity_in_stock", 0), "quantity_in_stock")
    threshold = coerce_int(
        data.get("threshold", default_threshold), "threshold", minimum=1
    )
    year = data.get("publication_year")
    if year is not None:
        year = coerce_int(year, "publication_year", minimum=1)
    authors = _author_names(data.get("authors"))

    with transaction(session):
        if session.get(Book, isbn) is not None:
            raise Conflict("Book with this ISBN already exists")

        publisher = _get_or_create_publisher(session, publisher_name)
        book = Book(
            isbn=isbn,
            title=title,
            publisher_id=publisher.publisher_id,
            publication_year=year,
            price=price,
            category=category,
            quantity_in_stock=stock,
            threshold=threshold,
        )
        book.authors = [_get_or_create_author(session, name) for name in authors]
        session.add(book)

    logger.info("Added book %s (%s), stock %s, threshold %s", isbn, title, stock, threshold)
    return {"isbn": isbn, "title": title}


def book_to_dict(book):
    return {
        "isbn": book.isbn,
        "title": book.title,
        "category": book.category,
        "price": str(book.price),
        "publication_year": book.publication_year,
        "publisher": book.publisher.name if book.publisher else None,
        "authors": [a.author_name for a in book.authors],
        "quantity_in_stock": book.quantity_in_stock,
        "threshold": book.threshold,
        "availability": "Available" if book.quantity_in_stock > 0 else "Out of Stock",
    }


def get_book(session, isbn):
    book = session.get(Book, isbn)
    if book is None:
        raise NotFound("Book not found")
    return book_to_dict(book)
