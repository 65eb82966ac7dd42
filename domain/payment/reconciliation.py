"""
Monetary amounts and reconciliation of gateway-reported amounts.

Amounts are always ``Decimal``. Rendering for gateways goes through
``format_major_units`` / ``format_minor_units`` which never depend on locale.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Union

from domain.gateway.profile import AmountUnit


class RoundingMode(str, Enum):
    # decimal.ROUND_HALF_UP rounds ties away from zero
    HALF_AWAY_FROM_ZERO = ROUND_HALF_UP
    HALF_EVEN = ROUND_HALF_EVEN


class ReconciliationStatus(str, Enum):
    MATCH = "match"
    MISMATCH = "mismatch"


def _quantum(scale: int) -> Decimal:
    return Decimal(1).scaleb(-scale)


def parse_decimal(raw: Union[str, int, Decimal, None]) -> Decimal:
    """Parse a gateway amount string using '.' as the decimal separator."""
    if raw is None:
        raise ValueError("amount is missing")
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        raise ValueError(f"invalid amount: {raw!r}") from None
    if not value.is_finite():
        raise ValueError(f"invalid amount: {raw!r}")
    return value


@dataclass(frozen=True)
class MonetaryAmount:
    value: Decimal
    currency: str
    unit: AmountUnit = AmountUnit.MAJOR
    scale: int = 2

    @classmethod
    def from_minor_units(
        cls,
        minor: Union[str, int, Decimal],
        currency: str,
        *,
        factor: Decimal = Decimal(100),
        scale: int = 2,
    ) -> "MonetaryAmount":
        """Convert an integer minor-unit amount (cents) into major units."""
        return cls(parse_decimal(minor) / factor, currency.upper(), AmountUnit.MAJOR, scale)

    @classmethod
    def major(cls, value: Union[str, int, Decimal], currency: str, *, scale: int = 2) -> "MonetaryAmount":
        return cls(parse_decimal(value), currency.upper(), AmountUnit.MAJOR, scale)

    def to_major_units(self, factor: Decimal = Decimal(100)) -> "MonetaryAmount":
        if self.unit is AmountUnit.MAJOR:
            return self
        return MonetaryAmount(self.value / factor, self.currency, AmountUnit.MAJOR, self.scale)

    def __str__(self) -> str:
        return f"{format_major_units(self.value, self.scale)} {self.currency}"


def format_major_units(value: Decimal, scale: int = 2, rounding: RoundingMode = RoundingMode.HALF_AWAY_FROM_ZERO) -> str:
    """Fixed-point rendering, e.g. ``49.99`` for scale 2."""
    return f"{value.quantize(_quantum(scale), rounding=rounding.value):f}"


def format_minor_units(
    value: Decimal,
    factor: Decimal = Decimal(100),
    rounding: RoundingMode = RoundingMode.HALF_AWAY_FROM_ZERO,
) -> str:
    """Integer minor-unit rendering, e.g. ``4999`` for 49.99."""
    return f"{(value * factor).quantize(Decimal(1), rounding=rounding.value):f}"


@dataclass(frozen=True)
class ReconciliationResult:
    status: ReconciliationStatus
    reported: Optional[Decimal] = None
    authoritative: Optional[Decimal] = None
    reason: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.status is ReconciliationStatus.MATCH


def reconcile(
    reported: MonetaryAmount,
    authoritative: MonetaryAmount,
    rounding: RoundingMode = RoundingMode.HALF_AWAY_FROM_ZERO,
    scale: int = 2,
) -> ReconciliationResult:
    """Compare a gateway-reported amount with the order's authoritative amount.

    Both sides are rounded to ``scale`` decimals with ``rounding`` before the
    comparison. A currency difference is always a mismatch.
    """
    for amount in (reported, authoritative):
        if amount.unit is not AmountUnit.MAJOR:
            raise ValueError("reconcile expects major-unit amounts; convert minor units first")

    quantum = _quantum(scale)
    left = reported.value.quantize(quantum, rounding=rounding.value)
    right = authoritative.value.quantize(quantum, rounding=rounding.value)

    if reported.currency.upper() != authoritative.currency.upper():
        return ReconciliationResult(
            ReconciliationStatus.MISMATCH,
            left,
            right,
            f"currency {reported.currency} != {authoritative.currency}",
        )
    if left != right:
        return ReconciliationResult(ReconciliationStatus.MISMATCH, left, right, f"amount {left} != {right}")
    return ReconciliationResult(ReconciliationStatus.MATCH, left, right)
