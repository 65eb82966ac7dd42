from decimal import Decimal

import pytest

from domain.gateway import AmountUnit
from domain.payment.reconciliation import (
    MonetaryAmount,
    ReconciliationStatus,
    RoundingMode,
    format_major_units,
    format_minor_units,
    parse_decimal,
    reconcile,
)


def test_amounts_equal_after_rounding_match():
    result = reconcile(MonetaryAmount.major("100.005", "EUR"), MonetaryAmount.major("100.01", "EUR"))
    assert result.status is ReconciliationStatus.MATCH
    assert result.matched


def test_one_cent_difference_is_a_mismatch():
    result = reconcile(MonetaryAmount.major("99.99", "EUR"), MonetaryAmount.major("100.00", "EUR"))
    assert result.status is ReconciliationStatus.MISMATCH
    assert result.reported == Decimal("99.99")
    assert result.authoritative == Decimal("100.00")
    assert "99.99" in result.reason


def test_currency_difference_is_a_mismatch_even_for_equal_values():
    result = reconcile(MonetaryAmount.major("49.99", "usd"), MonetaryAmount.major("49.99", "EUR"))
    assert result.status is ReconciliationStatus.MISMATCH
    assert "currency" in result.reason


def test_scale_controls_comparison_precision():
    reported = MonetaryAmount.major("1.2341", "KWD", scale=3)
    authoritative = MonetaryAmount.major("1.234", "KWD", scale=3)
    assert reconcile(reported, authoritative, scale=3).matched
    assert not reconcile(MonetaryAmount.major("1.231", "KWD"), authoritative, scale=3).matched
    assert reconcile(MonetaryAmount.major("1.231", "KWD"), authoritative).matched


def test_minor_units_are_converted_before_comparison():
    reported = MonetaryAmount.from_minor_units("4999", "EUR")
    assert reported.value == Decimal("49.99")
    assert reconcile(reported, MonetaryAmount.major("49.99", "EUR")).matched


def test_reconcile_refuses_minor_unit_values():
    minor = MonetaryAmount(Decimal("4999"), "EUR", AmountUnit.MINOR)
    with pytest.raises(ValueError):
        reconcile(minor, MonetaryAmount.major("49.99", "EUR"))
    assert minor.to_major_units().value == Decimal("49.99")


def test_half_even_rounding_can_be_selected():
    result = reconcile(
        MonetaryAmount.major("10.125", "EUR"),
        MonetaryAmount.major("10.12", "EUR"),
        rounding=RoundingMode.HALF_EVEN,
    )
    assert result.matched


def test_formatting_is_fixed_point():
    assert format_major_units(Decimal("49.9")) == "49.90"
    assert format_major_units(Decimal("0.005")) == "0.01"
    assert format_major_units(Decimal("1E+2")) == "100.00"
    assert format_minor_units(Decimal("49.99")) == "4999"
    assert format_minor_units(Decimal("0.125")) == "13"


@pytest.mark.parametrize("raw", [None, "", "abc", "NaN", "Infinity"])
def test_parse_decimal_rejects_invalid_input(raw):
    with pytest.raises(ValueError):
        parse_decimal(raw)
