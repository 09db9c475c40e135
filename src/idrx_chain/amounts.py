"""Exact token amount arithmetic.

IDRX is deployed with different decimal precision per network (2 on most
chains, 0 on Polygon and BNB Smart Chain). Amounts are carried as
``decimal.Decimal`` together with the precision of the base unit they
represent, and every conversion goes through integer arithmetic on the
decimal's digit tuple, so the result never depends on the active decimal
context or on binary floating point.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Union

from .exceptions import InvalidAmountFormatError

AmountLike = Union[Decimal, int, str]

# uint256, the widest value the contract stores
MAX_BASE_UNITS = 2**256 - 1
_MAX_BASE_UNIT_DIGITS = len(str(MAX_BASE_UNITS))

_DECIMAL_LITERAL = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


def _check_decimals(decimals: int) -> None:
    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")


def _to_decimal(value: AmountLike) -> Decimal:
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, bool):
        raise InvalidAmountFormatError(value, "booleans are not amounts")
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, str):
        if not _DECIMAL_LITERAL.match(value):
            raise InvalidAmountFormatError(value)
        try:
            amount = Decimal(value)
        except InvalidOperation as e:
            raise InvalidAmountFormatError(value) from e
    else:
        # floats are rejected: their binary value is not the literal the caller typed
        raise InvalidAmountFormatError(value, f"unsupported type {type(value).__name__}")

    if not amount.is_finite():
        raise InvalidAmountFormatError(value, "amount must be finite")
    return amount


def _check_magnitude(value: Decimal, decimals: int, original: AmountLike) -> None:
    # adjusted() is the exponent of the leading digit, so this runs before any
    # integer is built from a literal like "1e50000000"
    if value and value.adjusted() + decimals >= _MAX_BASE_UNIT_DIGITS:
        raise InvalidAmountFormatError(original, "exceeds the uint256 range")


def to_base_units(amount: AmountLike, decimals: int) -> int:
    """Scale a decimal amount to integer base units.

    Computes ``amount * 10**decimals`` exactly and truncates toward zero.

    Raises:
        InvalidAmountFormatError: If amount is malformed or its base units
            do not fit in a uint256
    """
    _check_decimals(decimals)
    value = _to_decimal(amount)
    _check_magnitude(value, decimals, amount)
    sign, digits, exponent = value.as_tuple()
    shift = exponent + decimals
    if not value or shift < -len(digits):
        units = 0
    else:
        coefficient = int("".join(map(str, digits)))
        if shift >= 0:
            units = coefficient * 10 ** shift
        else:
            units = coefficient // 10 ** (-shift)
    if units > MAX_BASE_UNITS:
        raise InvalidAmountFormatError(amount, "exceeds the uint256 range")
    return -units if sign else units


def from_base_units(value: int, decimals: int) -> "TokenAmount":
    """Exact inverse of to_base_units."""
    _check_decimals(decimals)
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"base units must be an int, got {type(value).__name__}")
    sign, digits, _ = Decimal(value).as_tuple()
    return TokenAmount(Decimal((sign, digits, -decimals)), decimals)


def parse_token_amount(text: str, decimals: int) -> "TokenAmount":
    """Parse a decimal literal such as ``"1000.50"``.

    Raises:
        InvalidAmountFormatError: If text is not a finite decimal literal, or
            is too large for a uint256 at this precision
    """
    _check_decimals(decimals)
    if not isinstance(text, str):
        raise InvalidAmountFormatError(text, "expected a string")
    return TokenAmount(_to_decimal(text), decimals)


@dataclass(frozen=True)
class TokenAmount:
    """A precise token amount at a given base-unit precision."""

    amount: Decimal
    decimals: int

    def __post_init__(self) -> None:
        _check_decimals(self.decimals)
        amount = _to_decimal(self.amount)
        _check_magnitude(amount, self.decimals, self.amount)
        object.__setattr__(self, "amount", amount)

    @classmethod
    def parse(cls, text: str, decimals: int) -> "TokenAmount":
        return parse_token_amount(text, decimals)

    @classmethod
    def from_base_units(cls, value: int, decimals: int) -> "TokenAmount":
        return from_base_units(value, decimals)

    def to_base_units(self) -> int:
        """Base units at this amount's own precision."""
        return to_base_units(self.amount, self.decimals)

    def with_decimals(self, decimals: int) -> "TokenAmount":
        """Same value, reinterpreted at another chain's precision."""
        return TokenAmount(self.amount, decimals)

    def is_representable(self, decimals: int | None = None) -> bool:
        """True if converting to base units loses no fractional digits."""
        precision = self.decimals if decimals is None else decimals
        if self.amount.is_zero():
            return True
        _, digits, exponent = self.amount.as_tuple()
        trailing_zeros = len(digits) - len("".join(map(str, digits)).rstrip("0"))
        return -(exponent + trailing_zeros) <= precision

    def is_zero(self) -> bool:
        return self.amount.is_zero()

    def format(self) -> str:
        """Render with exactly ``decimals`` fractional digits."""
        digits = len(self.amount.as_tuple().digits)
        with localcontext() as ctx:
            ctx.prec = max(ctx.prec, digits + self.decimals + abs(self.amount.adjusted()) + 2)
            quantum = Decimal((0, (1,), -self.decimals))
            rounded = self.amount.quantize(quantum, rounding=ROUND_HALF_UP)
        return f"{rounded:f}"

    def __str__(self) -> str:
        return self.format()


__all__ = [
    "MAX_BASE_UNITS",
    "TokenAmount",
    "to_base_units",
    "from_base_units",
    "parse_token_amount",
]
