import os
import logging
from functools import wraps

import click
from flask import Blueprint, Flask, current_app, g, jsonify, request
from flask_cors import CORS
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.exceptions import HTTPException

from . import auth, cart, catalog, checkout, reorders, stock
from .config import Config
from .db import init_db, is_stock_guard_error, make_engine, make_session_factory
from .errors import BookstoreError, Conflict, Forbidden, Internal, StockGuardViolation
from .models import ROLE_ADMIN, ROLE_CUSTOMER
from .schemas import (
    BookCreateRequest,
    CartAddRequest,
    CheckoutRequest,
    LoginRequest,
    ProfileUpdateRequest,
    RegisterRequest,
    StockUpdateRequest,
    parse_request,
)

# ---------------------------------------------------------
# Logging
# ---------------------------------------------------------
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")


# ---------------------------------------------------------
# Helpers
# ---------------------------------------------------------

def get_session():
    return current_app.extensions["bookstore"]["SessionLocal"]()


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _request(schema):
    return parse_request(schema, _json_body())


def _bearer_token():
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header.split(" ", 1)[1].strip() or None


def login_required(role=None):
    """
    Verify the bearer token and expose its claims as ``g.user``.
    Customer identity always comes from here, never from the request body.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            token = _bearer_token()
            if not token:
                return jsonify({"error": "Unauthorized", "message": "No token provided"}), 401

            session = get_session()
            try:
                claims = auth.decode_token(
                    session,
                    token,
                    current_app.config["JWT_SECRET"],
                    current_app.config["JWT_ALGORITHM"],
                )
            finally:
                session.close()

            if role and claims.get("role") != role:
                logger.warning("User %s denied on %s", claims.get("username"), request.path)
                raise Forbidden(
                    "You are not an admin" if role == ROLE_ADMIN else "Customer access only"
                )
            g.user = claims
            g.token = token
            return func(*args, **kwargs)

        return wrapper

    return decorator


customer_required = login_required(ROLE_CUSTOMER)
admin_required = login_required(ROLE_ADMIN)


def _notify_publisher(session, order_ids):
    url = current_app.config.get("PUBLISHER_WEBHOOK_URL")
    if not url:
        return
    timeout = current_app.config.get("PUBLISHER_WEBHOOK_TIMEOUT", 3)
    for order_id in order_ids:
        # already committed; an unstamped order is picked up by the retry route
        try:
            reorders.notify_publisher(session, order_id, url, timeout=timeout)
        except SQLAlchemyError:
            logger.exception("Could not record publisher notification for order %s", order_id)


# ---------------------------------------------------------
# Health
# ---------------------------------------------------------

@api.get("/health")
def health_check():
    return jsonify({"status": "ok", "service": "bookstore_service"}), 200


# ---------------------------------------------------------
# Customers
# ---------------------------------------------------------

@api.post("/customers/register")
def register_customer():
    data = _request(RegisterRequest)
    session = get_session()
    try:
        user_id = auth.register_customer(session, data)
        return jsonify({"message": "Customer registered successfully", "user_id": user_id}), 201
    finally:
        session.close()


@api.post("/customers/login")
def login():
    data = _request(LoginRequest)
    session = get_session()
    try:
        user = auth.authenticate(session, data.get("username"), data.get("password"))
        token = auth.issue_token(
            user,
            current_app.config["JWT_SECRET"],
            current_app.config["JWT_ALGORITHM"],
            current_app.config["JWT_EXP_MINUTES"],
        )
        logger.info("User %s logged in", user.username)
        return jsonify(
            {
                "access_token": token,
                "user": {
                    "id": user.id,
                    "username": user.username,
                    "role": user.role,
                    "first_name": user.first_name,
                    "last_name": user.last_name,
                },
            }
        )
    finally:
        session.close()


@api.post("/customers/logout")
@login_required()
def logout():
    """
    Revoke the current token; customers also lose their cart.
    """
    session = get_session()
    try:
        removed = 0
        if g.user["role"] == ROLE_CUSTOMER:
            removed = cart.clear_cart(session, g.user["user_id"])
        auth.revoke_token(session, g.token, expires_at=auth.token_expiry(g.user))
        return jsonify({"message": "Logged out and cart cleared", "removed_items": removed})
    finally:
        session.close()


@api.put("/customers/profile")
@customer_required
def update_profile():
    data = _request(ProfileUpdateRequest)
    session = get_session()
    try:
        profile = auth.update_profile(session, g.user["user_id"], data)
        return jsonify({"message": "Profile updated successfully", "profile": profile})
    finally:
        session.close()


# ---------------------------------------------------------
# Cart
# ---------------------------------------------------------

@api.get("/cart")
@customer_required
def view_cart():
    session = get_session()
    try:
        return jsonify(cart.view_cart(session, g.user["user_id"]))
    finally:
        session.close()


@api.post("/cart")
@customer_required
def add_to_cart():
    data = _request(CartAddRequest)
    session = get_session()
    try:
        line = cart.add_to_cart(session, g.user["user_id"], data.get("isbn"), data.get("quantity"))
        return jsonify({"message": "Added to cart", "item": line}), 200
    finally:
        session.close()


@api.delete("/cart/<isbn>")
@customer_required
def remove_from_cart(isbn):
    session = get_session()
    try:
        cart.remove_from_cart(session, g.user["user_id"], isbn)
        return jsonify({"message": "Removed from cart"})
    finally:
        session.close()


@api.delete("/cart")
@customer_required
def clear_cart():
    session = get_session()
    try:
        removed = cart.clear_cart(session, g.user["user_id"])
        return jsonify({"message": "Cart cleared", "removed_items": removed})
    finally:
        session.close()


# ---------------------------------------------------------
# Checkout & past orders
# ---------------------------------------------------------

@api.post("/checkout")
@customer_required
def checkout_cart():
    """
    Request JSON:
      {"card_number": "4111 1111 1111 1111", "expiry": "MM/YY"}
    """
    data = _request(CheckoutRequest)
    session = get_session()
    try:
        result = checkout.checkout(
            session,
            g.user["user_id"],
            data.get("card_number"),
            data.get("expiry"),
            reorder_quantity=current_app.config["REORDER_QUANTITY"],
            max_years_ahead=current_app.config["CARD_MAX_YEARS_AHEAD"],
        )
        _notify_publisher(session, result.reorder_order_ids)
        body = result.to_dict()
        body["message"] = "Checkout successful!"
        return jsonify(body), 201
    finally:
        session.close()


@api.get("/orders")
@customer_required
def past_orders():
    session = get_session()
    try:
        return jsonify(checkout.past_orders(session, g.user["user_id"]))
    finally:
        session.close()


# ---------------------------------------------------------
# Books
# ---------------------------------------------------------

@api.get("/books/<isbn>")
def get_book(isbn):
    session = get_session()
    try:
        return jsonify(catalog.get_book(session, isbn))
    finally:
        session.close()


@api.post("/admin/books")
@admin_required
def add_book():
    data = _request(BookCreateRequest)
    session = get_session()
    try:
        book = catalog.add_book(
            session, data, default_threshold=current_app.config["DEFAULT_THRESHOLD"]
        )
        return jsonify({"message": "Book added successfully!", "book": book}), 201
    finally:
        session.close()


@api.put("/admin/books/<isbn>/stock")
@admin_required
def sell_stock(isbn):
    """
    Request JSON: {"quantity_in_stock": 9}
    Only decreases are accepted; increases come from confirmed publisher orders.
    """
    data = _request(StockUpdateRequest)
    session = get_session()
    try:
        update = stock.sell_stock(
            session,
            isbn,
            data.get("quantity_in_stock"),
            reorder_quantity=current_app.config["REORDER_QUANTITY"],
        )
        if update.reorder_order_id is not None:
            _notify_publisher(session, [update.reorder_order_id])
        body = update.to_dict()
        return jsonify({"success": True, "message": body.pop("message"), "updated": body})
    finally:
        session.close()


@api.get("/admin/books/<isbn>/orders")
@admin_required
def book_order_summary(isbn):
    session = get_session()
    try:
        return jsonify(reorders.book_order_summary(session, isbn))
    finally:
        session.close()


# ---------------------------------------------------------
# Publisher orders
# ---------------------------------------------------------

@api.get("/admin/orders/pending")
@admin_required
def list_pending_orders():
    session = get_session()
    try:
        return jsonify({"success": True, "data": reorders.list_pending_orders(session)})
    finally:
        session.close()


@api.post("/admin/orders/<int:order_id>/confirm")
@admin_required
def confirm_order(order_id):
    session = get_session()
    try:
        result = reorders.confirm_order(session, order_id)
        return jsonify(
            {"success": True, "message": "Order confirmed and stock updated", "order": result}
        )
    finally:
        session.close()


@api.post("/admin/orders/notify/retry")
@admin_required
def retry_publisher_notifications():
    session = get_session()
    try:
        result = reorders.retry_pending_notifications(
            session,
            current_app.config.get("PUBLISHER_WEBHOOK_URL"),
            timeout=current_app.config.get("PUBLISHER_WEBHOOK_TIMEOUT", 3),
        )
        return jsonify(result), 200
    finally:
        session.close()


# ---------------------------------------------------------
# Error mapping
# ---------------------------------------------------------

def handle_bookstore_error(e):
    if e.status_code >= 500:
        logger.error("%s: %s", e.kind, e.message)
    return jsonify(e.to_dict()), e.status_code


def handle_integrity_error(e):
    if is_stock_guard_error(e):
        return handle_bookstore_error(StockGuardViolation())
    logger.warning("Integrity error on %s: %s", request.path, e.orig)
    return handle_bookstore_error(Conflict("Record conflicts with existing data"))


def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        return jsonify({"error": e.name, "message": e.description}), e.code

    logger.exception("Unhandled error on %s %s", request.method, request.path)
    body = Internal().to_dict()
    if current_app.config.get("EXPOSE_ERROR_DETAILS"):
        body["details"] = f"{type(e).__name__}: {e}"
    return jsonify(body), 500


# ---------------------------------------------------------
# App factory
# ---------------------------------------------------------

def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)
    CORS(app)

    engine = make_engine(
        app.config["SQLALCHEMY_DATABASE_URI"],
        echo=app.config["SQLALCHEMY_ECHO"],
        isolation_level=app.config.get("DATABASE_ISOLATION_LEVEL"),
    )
    # Create tables if not present
    init_db(engine)
    app.extensions["bookstore"] = {
        "engine": engine,
        "SessionLocal": make_session_factory(engine),
    }

    app.register_blueprint(api)
    app.register_error_handler(BookstoreError, handle_bookstore_error)
    app.register_error_handler(IntegrityError, handle_integrity_error)
    app.register_error_handler(Exception, handle_unexpected_error)

    @app.cli.command("init-db")
    def init_db_command():
        """Create all tables."""
        init_db(engine)
        click.echo("Database initialized")

    @app.cli.command("create-admin")
    @click.option("--username", default="admin")
    @click.option("--email", default="admin@bookstore.local")
    @click.password_option()
    def create_admin_command(username, email, password):
        """Create an admin account."""
        session = app.extensions["bookstore"]["SessionLocal"]()
        try:
            auth.create_admin(session, username, password, email)
        finally:
            session.close()
        click.echo(f"Admin {username} created")

    @app.cli.command("prune-tokens")
    def prune_tokens_command():
        """Delete revoked tokens that have expired."""
        session = app.extensions["bookstore"]["SessionLocal"]()
        try:
            pruned = auth.prune_revoked_tokens(session)
        finally:
            session.close()
        click.echo(f"Pruned {pruned} expired tokens")

    logger.info("Bookstore service ready on %s", engine.url.render_as_string(hide_password=True))
    return app


if __name__ == "__main__":
    port = int(os.getenv("PORT", "5000"))
    create_app().run(host="0.0.0.0", port=port, debug=True)
