"""
Card checks run before checkout touches the database.

This only validates that a card number and expiry are well formed; no
issuer is contacted.
"""
import re
from dataclasses import dataclass
from datetime import date

from .errors import InvalidPayment

CARD_LENGTH = 16
DIGITS_RE = re.compile(r"[0-9]+")
EXPIRY_RE = re.compile(r"([0-9]{2})/([0-9]{2})")

# network -> leading-digit ranges (inclusive, compared on equal-length prefixes)
CARD_NETWORKS = {
    "Visa": [("4", "4")],
    "Mastercard": [("51", "55"), ("2221", "2720")],
}


@dataclass(frozen=True)
class PaymentInfo:
    network: str
    last4: str
    expiry: str

    @property
    def masked(self):
        return "**** **** **** " + self.last4


def normalize_card_number(card_number):
    if card_number is None:
        raise InvalidPayment("Card number is required")
    digits = re.sub(r"[\s-]", "", str(card_number))
    if not DIGITS_RE.fullmatch(digits):
        raise InvalidPayment("Card number must contain digits only")
    if len(digits) != CARD_LENGTH:
        raise InvalidPayment(f"Card number must be {CARD_LENGTH} digits")
    return digits


def luhn_valid(digits):
    total = 0
    for i, ch in enumerate(reversed(digits)):
        d = int(ch)
        if i % 2 == 1:
            d *= 2
            if d > 9:
                d -= 9
        total += d
    return total % 10 == 0


def card_network(digits):
    for network, ranges in CARD_NETWORKS.items():
        for low, high in ranges:
            prefix = digits[: len(low)]
            if low <= prefix <= high:
                return network
    return None


def validate_card_number(card_number):
    digits = normalize_card_number(card_number)
    network = card_network(digits)
    if network is None:
        raise InvalidPayment("Unsupported card network")
    if not luhn_valid(digits):
        raise InvalidPayment("Card number failed checksum validation")
    return digits, network


def validate_expiry(expiry, today=None, max_years_ahead=10):
    """
    ``MM/YY``; the card is valid through the end of its expiry month.
    Returns ``(year, month)``.
    """
    if not expiry:
        raise InvalidPayment("Expiry date is required")
    match = EXPIRY_RE.fullmatch(str(expiry).strip())
    if not match:
        raise InvalidPayment("Expiry date must use the MM/YY format")

    month = int(match.group(1))
    year = 2000 + int(match.group(2))
    if not 1 <= month <= 12:
        raise InvalidPayment("Expiry month must be between 01 and 12")

    today = today or date.today()
    if (year, month) < (today.year, today.month):
        raise InvalidPayment("Card has expired")

    months_ahead = (year - today.year) * 12 + (month - today.month)
    if months_ahead > max_years_ahead * 12:
        raise InvalidPayment("Expiry date is too far in the future")
    return year, month


def validate_payment(card_number, expiry, today=None, max_years_ahead=10):
    digits, network = validate_card_number(card_number)
    year, month = validate_expiry(expiry, today=today, max_years_ahead=max_years_ahead)
    return PaymentInfo(
        network=network,
        last4=digits[-4:],
        expiry=f"{month:02d}/{year % 100:02d}",
    )
