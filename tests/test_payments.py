"""Tests for card number and expiry validation."""

from __future__ import annotations

from datetime import date

import pytest

from bookstore_service.errors import InvalidPayment
from bookstore_service.payments import (
    card_network,
    luhn_valid,
    validate_card_number,
    validate_expiry,
    validate_payment,
)

TODAY = date(2026, 10, 15)


@pytest.mark.parametrize(
    "number",
    ["4111111111111111", "4012888888881881", "5555555555554444", "2223003122003222"],
)
def test_luhn_accepts_known_test_cards(number):
    assert luhn_valid(number)


@pytest.mark.parametrize("number", ["4111111111111112", "5555555555554445"])
def test_luhn_rejects_single_digit_errors(number):
    assert not luhn_valid(number)


def test_card_network_by_prefix():
    assert card_network("4111111111111111") == "Visa"
    assert card_network("5105105105105100") == "Mastercard"
    assert card_network("2720990000000000") == "Mastercard"
    assert card_network("6011111111111117") is None
    assert card_network("5011111111111111") is None


def test_card_number_separators_are_ignored():
    digits, network = validate_card_number("4111 1111-1111 1111")
    assert digits == "4111111111111111"
    assert network == "Visa"


@pytest.mark.parametrize(
    "number, message",
    [
        (None, "required"),
        ("4111-abcd-1111-1111", "digits only"),
        ("411111111111111", "16 digits"),
        ("41111111111111111", "16 digits"),
        ("6011111111111117", "Unsupported"),
        ("4111111111111112", "checksum"),
    ],
)
def test_bad_card_numbers(number, message):
    with pytest.raises(InvalidPayment, match=message):
        validate_card_number(number)


def test_expiry_current_month_is_still_valid():
    assert validate_expiry("10/26", today=TODAY) == (2026, 10)


def test_expiry_last_month_is_expired():
    with pytest.raises(InvalidPayment, match="expired"):
        validate_expiry("09/26", today=TODAY)


@pytest.mark.parametrize("expiry", ["1026", "10/2026", "1/26", "ab/cd", ""])
def test_expiry_format(expiry):
    with pytest.raises(InvalidPayment):
        validate_expiry(expiry, today=TODAY)


@pytest.mark.parametrize("expiry", ["00/27", "13/27"])
def test_expiry_month_range(expiry):
    with pytest.raises(InvalidPayment, match="between 01 and 12"):
        validate_expiry(expiry, today=TODAY)


def test_expiry_sanity_cap():
    assert validate_expiry("10/36", today=TODAY) == (2036, 10)
    with pytest.raises(InvalidPayment, match="too far"):
        validate_expiry("11/36", today=TODAY)
    with pytest.raises(InvalidPayment, match="too far"):
        validate_expiry("01/29", today=TODAY, max_years_ahead=2)


def test_validate_payment_keeps_only_last_four():
    info = validate_payment("4111 1111 1111 1111", "12/28", today=TODAY)

    assert info.last4 == "1111"
    assert info.network == "Visa"
    assert info.expiry == "12/28"
    assert info.masked == "**** **** **** 1111"
    assert "4111111111111111" not in repr(info)


@pytest.mark.parametrize(
    "number",
    ["411111111111111²", "4111١111111111111", "４111111111111111"],
)
def test_non_ascii_digits_are_rejected(number):
    with pytest.raises(InvalidPayment, match="digits only"):
        validate_card_number(number)


def test_non_ascii_expiry_digits_are_rejected():
    with pytest.raises(InvalidPayment, match="MM/YY"):
        validate_expiry("1٢/28", today=TODAY)
