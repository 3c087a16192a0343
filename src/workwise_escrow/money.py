"""Fixed-point money helpers.

Amounts are ``Decimal`` quantized to cents in Python, INTEGER cents in
SQLite, and two-digit strings on the wire.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from workwise_escrow.core.exceptions import ServiceError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
# Largest single amount accepted; running balances stay far inside SQLite INTEGER range.
MAX_AMOUNT = Decimal("1000000000.00")


def quantize(amount: Decimal) -> Decimal:
    """Round half-up to cents."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
    """Convert an exact two-digit Decimal to integer cents."""
    cents = amount * 100
    if cents != cents.to_integral_value():
        msg = f"Amount has more than two fraction digits: {amount}"
        raise ValueError(msg)
    return int(cents)


def from_cents(cents: int) -> Decimal:
    """Convert integer cents to a cent-quantized Decimal."""
    return (Decimal(cents) / 100).quantize(CENT)


def format_amount(amount: Decimal) -> str:
    return str(amount.quantize(CENT))


def parse_amount(value: object, field_name: str = "amount") -> Decimal:
    """
    Parse a wire amount into a positive Decimal with at most two fraction digits.

    Accepts strings ("950.00") and integers. Binary floats and booleans are
    rejected because they cannot be represented exactly.

    Raises:
        ServiceError: INVALID_AMOUNT on any malformed, non-positive or
            over-precise value.
    """
    if isinstance(value, bool) or isinstance(value, float) or value is None:
        raise ServiceError(
            "INVALID_AMOUNT",
            f"Field '{field_name}' must be a decimal string or integer",
            400,
            {"field": field_name},
        )
    if not isinstance(value, (str, int)):
        raise ServiceError(
            "INVALID_AMOUNT",
            f"Field '{field_name}' must be a decimal string or integer",
            400,
            {"field": field_name},
        )

    try:
        amount = Decimal(value.strip() if isinstance(value, str) else value)
    except InvalidOperation as exc:
        raise ServiceError(
            "INVALID_AMOUNT",
            f"Field '{field_name}' is not a valid amount",
            400,
            {"field": field_name},
        ) from exc

    if not amount.is_finite():
        raise ServiceError(
            "INVALID_AMOUNT",
            f"Field '{field_name}' is not a valid amount",
            400,
            {"field": field_name},
        )
    if amount <= 0:
        raise ServiceError(
            "INVALID_AMOUNT",
            f"Field '{field_name}' must be positive",
            400,
            {"field": field_name},
        )
    if amount > MAX_AMOUNT:
        raise ServiceError(
            "INVALID_AMOUNT",
            f"Field '{field_name}' must not exceed {MAX_AMOUNT}",
            400,
            {"field": field_name, "maximum": str(MAX_AMOUNT)},
        )

    try:
        exact = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ServiceError(
            "INVALID_AMOUNT",
            f"Field '{field_name}' is not a valid amount",
            400,
            {"field": field_name},
        ) from exc
    if amount != exact:
        raise ServiceError(
            "INVALID_AMOUNT",
            f"Field '{field_name}' must have at most two fraction digits",
            400,
            {"field": field_name},
        )
    return exact


def compute_fee(gross: Decimal, fee_percent: Decimal) -> tuple[Decimal, Decimal]:
    """
    Split a gross amount into (platform_fee, net).

    The fee is rounded half-up to cents; net is whatever remains so that
    fee + net always equals gross exactly.
    """
    fee = quantize(gross * fee_percent / Decimal(100))
    return fee, gross - fee
