"""
Error kinds raised by the bookstore services.

Every error carries a stable ``kind`` and an HTTP status so the Flask layer
can render it without knowing which service raised it.
"""


class BookstoreError(Exception):
    kind = "Internal"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self):
        return {"error": self.kind, "message": self.message}


class InvalidInput(BookstoreError):
    kind = "InvalidInput"
    status_code = 400
    default_message = "Invalid input"


class Unauthorized(BookstoreError):
    kind = "Unauthorized"
    status_code = 401
    default_message = "Authentication required"


class Forbidden(BookstoreError):
    kind = "Forbidden"
    status_code = 403
    default_message = "Operation not allowed"


class StockGuardViolation(Forbidden):
    """A write would have left ``quantity_in_stock`` negative."""

    default_message = "Cannot update book: quantity cannot be negative"


class NotFound(BookstoreError):
    kind = "NotFound"
    status_code = 404
    default_message = "Not found"


class Conflict(BookstoreError):
    kind = "Conflict"
    status_code = 409
    default_message = "Conflict"


class InsufficientStock(BookstoreError):
    kind = "InsufficientStock"
    status_code = 409

    def __init__(self, isbn, requested=None, available=None):
        if requested is not None and available is not None:
            message = (
                f"Not enough stock for {isbn}: requested {requested}, "
                f"only {available} available"
            )
        else:
            message = f"Not enough stock for {isbn}"
        super().__init__(message)
        self.isbn = isbn
        self.requested = requested
        self.available = available

    def to_dict(self):
        data = super().to_dict()
        data["isbn"] = self.isbn
        return data


class EmptyCart(BookstoreError):
    kind = "EmptyCart"
    status_code = 400
    default_message = "Cart is empty"


class InvalidPayment(BookstoreError):
    kind = "InvalidPayment"
    status_code = 402
    default_message = "Invalid credit card info"


class Internal(BookstoreError):
    pass
