"""Shared pytest fixtures for the bookstore service tests."""

from __future__ import annotations

from datetime import date

import pytest

from bookstore_service import auth, catalog
from bookstore_service.app import create_app

SPEC_ISBN = "9781234567897"
SMALL_ISBN = "9780132350884"
LAST_COPY_ISBN = "9780201616224"
VISA = "4111111111111111"


def months_from_today(months: int, today: date | None = None) -> str:
    """Return an ``MM/YY`` expiry ``months`` away from ``today``."""

    today = today or date.today()
    index = today.year * 12 + (today.month - 1) + months
    year, month = divmod(index, 12)
    return f"{month + 1:02d}/{year % 100:02d}"


@pytest.fixture
def app(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'bookstore.db'}",
            "JWT_SECRET": "test-secret",
            "REORDER_QUANTITY": 20,
            "PUBLISHER_WEBHOOK_URL": None,
            "EXPOSE_ERROR_DETAILS": False,
        }
    )
    yield app
    app.extensions["bookstore"]["engine"].dispose()


@pytest.fixture
def session_factory(app):
    return app.extensions["bookstore"]["SessionLocal"]


@pytest.fixture
def session(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def books(session):
    """Three titles: one at 12/10, one small run at 3/2, one last copy at 1/1."""

    catalog.add_book(
        session,
        {
            "isbn": SPEC_ISBN,
            "title": "Stock Keeping for Booksellers",
            "category": "Science",
            "price": "25.00",
            "publisher": "Harbor Press",
            "authors": "Ada Writer, Ben Author",
            "quantity_in_stock": 12,
            "threshold": 10,
        },
    )
    catalog.add_book(
        session,
        {
            "isbn": SMALL_ISBN,
            "title": "Clean Code",
            "category": "Science",
            "price": "10.50",
            "publisher": "Prentice Hall",
            "authors": ["Robert C. Martin"],
            "quantity_in_stock": 3,
            "threshold": 2,
        },
    )
    catalog.add_book(
        session,
        {
            "isbn": LAST_COPY_ISBN,
            "title": "The Pragmatic Programmer",
            "category": "Science",
            "price": "40.00",
            "publisher": "Addison-Wesley",
            "authors": "Andrew Hunt, David Thomas",
            "quantity_in_stock": 1,
            "threshold": 1,
        },
    )
    return [SPEC_ISBN, SMALL_ISBN, LAST_COPY_ISBN]


def _register(session, username):
    return auth.register_customer(
        session,
        {
            "username": username,
            "password": f"{username}-pass",
            "first_name": username.title(),
            "last_name": "Reader",
            "email": f"{username}@example.com",
            "phone": "555-0100",
            "address": "1 Main St",
        },
    )


@pytest.fixture
def customer_id(session):
    return _register(session, "alice")


@pytest.fixture
def other_customer_id(session):
    return _register(session, "bob")


@pytest.fixture
def admin_id(session):
    return auth.create_admin(session, "admin", "Admin@123", "admin@bookstore.local")


@pytest.fixture
def client(app):
    return app.test_client()


def _login(client, username, password):
    resp = client.post(
        "/api/customers/login", json={"username": username, "password": password}
    )
    assert resp.status_code == 200, resp.get_json()
    return {"Authorization": f"Bearer {resp.get_json()['access_token']}"}


@pytest.fixture
def customer_headers(client, customer_id):
    return _login(client, "alice", "alice-pass")


@pytest.fixture
def admin_headers(client, admin_id):
    return _login(client, "admin", "Admin@123")
