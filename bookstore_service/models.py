# bookstore_service/models.py
from datetime import datetime

from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
)

Base = declarative_base()

CATEGORIES = ("Science", "Art", "Religion", "History", "Geography")

ORDER_PENDING = "Pending"
ORDER_CONFIRMED = "Confirmed"

ROLE_CUSTOMER = "CUSTOMER"
ROLE_ADMIN = "ADMIN"

# Name of the storage-level guard on books.quantity_in_stock
STOCK_NON_NEGATIVE = "ck_books_stock_non_negative"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(
        Enum(ROLE_CUSTOMER, ROLE_ADMIN, name="user_role"),
        nullable=False,
        default=ROLE_CUSTOMER,
    )
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    profile = relationship("CustomerProfile", uselist=False, back_populates="user")


class CustomerProfile(Base):
    """
    Shipping/contact details, kept apart so admin accounts stay minimal.
    """
    __tablename__ = "customer_profiles"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    phone_number = Column(String(30))
    shipping_address = Column(Text)

    user = relationship("User", back_populates="profile")


class RevokedToken(Base):
    __tablename__ = "revoked_tokens"

    token = Column(String(512), primary_key=True)
    revoked_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    # token expiry, after which the row can be pruned
    expires_at = Column(DateTime, index=True)


class Publisher(Base):
    __tablename__ = "publishers"

    publisher_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False)


class Author(Base):
    __tablename__ = "authors"

    author_id = Column(Integer, primary_key=True, autoincrement=True)
    author_name = Column(String(255), unique=True, nullable=False)


book_authors = Table(
    "book_authors",
    Base.metadata,
    Column("isbn", String(13), ForeignKey("books.isbn"), nullable=False),
    Column("author_id", Integer, ForeignKey("authors.author_id"), nullable=False),
    PrimaryKeyConstraint("isbn", "author_id"),
)


class Book(Base):
    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint("quantity_in_stock >= 0", name=STOCK_NON_NEGATIVE),
        CheckConstraint("threshold >= 1", name="ck_books_threshold_positive"),
        CheckConstraint("price > 0", name="ck_books_price_positive"),
    )

    isbn = Column(String(13), primary_key=True)
    title = Column(String(255), nullable=False)
    publisher_id = Column(Integer, ForeignKey("publishers.publisher_id"), nullable=False)
    publication_year = Column(Integer)
    price = Column(Numeric(10, 2), nullable=False)
    category = Column(Enum(*CATEGORIES, name="book_category"), nullable=False)
    quantity_in_stock = Column(Integer, nullable=False, default=0)
    threshold = Column(Integer, nullable=False, default=10)

    publisher = relationship("Publisher")
    authors = relationship("Author", secondary=book_authors, order_by="Author.author_name")


class PublisherOrder(Base):
    """
    Restock request sent to a publisher when a book drops below threshold.
    Pending -> Confirmed; only order confirmation moves it forward.
    """
    __tablename__ = "publisher_orders"
    __table_args__ = (
        CheckConstraint("quantity_ordered > 0", name="ck_publisher_orders_quantity"),
    )

    order_id = Column(Integer, primary_key=True, autoincrement=True)
    isbn = Column(String(13), ForeignKey("books.isbn"), nullable=False, index=True)
    quantity_ordered = Column(Integer, nullable=False)
    status = Column(
        Enum(ORDER_PENDING, ORDER_CONFIRMED, name="publisher_order_status"),
        nullable=False,
        default=ORDER_PENDING,
    )
    order_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    confirmed_date = Column(DateTime)
    # Set once the publisher endpoint accepted the order
    notified_at = Column(DateTime)

    book = relationship("Book")


class CartEntry(Base):
    __tablename__ = "shopping_cart"
    __table_args__ = (
        PrimaryKeyConstraint("customer_id", "isbn"),
        CheckConstraint("quantity > 0", name="ck_shopping_cart_quantity"),
    )

    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    isbn = Column(String(13), ForeignKey("books.isbn"), nullable=False)
    quantity = Column(Integer, nullable=False)

    book = relationship("Book")


class Sale(Base):
    __tablename__ = "sales"

    sale_id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    total_price = Column(Numeric(12, 2), nullable=False)
    # Never the full card number
    card_last4 = Column(String(4), nullable=False)
    card_network = Column(String(20), nullable=False)
    card_expiry = Column(String(5), nullable=False)
    sale_date = Column(DateTime, nullable=False, default=datetime.utcnow)

    items = relationship("SaleItem", back_populates="sale", order_by="SaleItem.id")


class SaleItem(Base):
    __tablename__ = "sale_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_sale_items_quantity"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    sale_id = Column(Integer, ForeignKey("sales.sale_id"), nullable=False, index=True)
    isbn = Column(String(13), ForeignKey("books.isbn"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)

    sale = relationship("Sale", back_populates="items")
    book = relationship("Book")
