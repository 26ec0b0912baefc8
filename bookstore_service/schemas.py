"""
Request schemas

One pydantic model per operation that takes a JSON body. They only check
field types; value rules (ranges, formats, required fields) stay in the
services so their messages are the same however they are called.
"""

from typing import List, Optional, Union

from pydantic import BaseModel, StrictFloat, StrictInt, StrictStr, ValidationError

from .errors import InvalidInput

# Counts arrive as JSON numbers or integer strings; bools, lists and objects are rejected
IntField = Optional[Union[StrictInt, StrictFloat, StrictStr]]
TextField = Optional[StrictStr]


class RegisterRequest(BaseModel):
    username: TextField = None
    password: TextField = None
    first_name: TextField = None
    last_name: TextField = None
    email: TextField = None
    phone: TextField = None
    address: TextField = None


class LoginRequest(BaseModel):
    username: TextField = None
    password: TextField = None


class ProfileUpdateRequest(BaseModel):
    first_name: TextField = None
    last_name: TextField = None
    email: TextField = None
    password: TextField = None
    phone: TextField = None
    address: TextField = None


class CartAddRequest(BaseModel):
    isbn: TextField = None
    quantity: IntField = None


class CheckoutRequest(BaseModel):
    card_number: Optional[Union[StrictStr, StrictInt]] = None
    expiry: TextField = None


class BookCreateRequest(BaseModel):
    isbn: TextField = None
    title: TextField = None
    category: TextField = None
    price: Optional[Union[StrictStr, StrictInt, StrictFloat]] = None
    publisher: TextField = None
    authors: Optional[Union[StrictStr, List[StrictStr]]] = None
    publication_year: IntField = None
    quantity_in_stock: IntField = None
    threshold: IntField = None


class StockUpdateRequest(BaseModel):
    quantity_in_stock: IntField = None


def _describe(exc):
    loc = exc.errors()[0]["loc"]
    field = str(loc[0]) if loc else "body"
    return f"{field} has an invalid type"


def parse_request(schema, data):
    """
    Validate ``data`` against ``schema`` and return only the fields the
    client actually sent, so services can tell "absent" from "null".
    """
    try:
        model = schema.model_validate(data)
    except ValidationError as exc:
        raise InvalidInput(_describe(exc)) from exc
    return model.model_dump(exclude_unset=True)
