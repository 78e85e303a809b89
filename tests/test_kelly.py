"""
Tests for core/kelly.py

Run with: pytest tests/test_kelly.py -v
"""

import pytest

from slip_edge.core.errors import InvalidOddsError
from slip_edge.core.kelly import (
    breakeven_probability,
    ev_percent,
    expected_value,
    kelly_fraction,
    kelly_full,
    kelly_to_units,
)


class TestExpectedValue:

    def test_positive_edge(self):
        assert expected_value(0.55, 1.909) == pytest.approx(0.05, abs=1e-3)

    def test_negative_edge(self):
        assert expected_value(0.50, 1.909) == pytest.approx(-0.0455, abs=1e-3)

    @pytest.mark.parametrize("prob, decimal_odds", [
        (0.55, 2.0),
        (0.45, 2.0),
        (0.30, 3.5),
        (0.25, 3.5),
        (0.70, 1.40),
        (0.72, 1.40),
    ])
    def test_sign_matches_breakeven(self, prob, decimal_odds):
        ev = expected_value(prob, decimal_odds)
        assert (ev > 0) == (prob > breakeven_probability(decimal_odds))

    def test_ev_percent(self):
        assert ev_percent(0.035) == pytest.approx(3.5)

    @pytest.mark.parametrize("prob, decimal_odds", [
        (0.0, 2.0),
        (1.0, 2.0),
        (0.5, 1.0),
        (0.5, 1.005),
    ])
    def test_invalid_inputs_raise(self, prob, decimal_odds):
        with pytest.raises(InvalidOddsError):
            expected_value(prob, decimal_odds)


class TestKelly:
    """Full and fractional Kelly sizing."""

    def test_full_kelly_even_money(self):
        assert kelly_full(0.55, 2.0) == pytest.approx(0.10)

    def test_full_kelly_clamped_at_zero(self):
        assert kelly_full(0.45, 2.0) == 0.0

    def test_quarter_kelly(self):
        assert kelly_fraction(0.55, 2.0) == pytest.approx(0.025)

    def test_cap_applied(self):
        # Full Kelly 0.40 → quarter 0.10 → capped at 5%
        assert kelly_fraction(0.70, 2.0) == pytest.approx(0.05)

    def test_cap_disabled(self):
        assert kelly_fraction(0.70, 2.0, max_fraction=None) == pytest.approx(0.10)

    def test_custom_fraction_and_cap(self):
        assert kelly_fraction(0.55, 2.0, fraction=0.5, max_fraction=0.03) == pytest.approx(0.03)

    def test_never_negative(self):
        assert kelly_fraction(0.30, 2.0) == 0.0

    def test_negative_fraction_rejected(self):
        with pytest.raises(ValueError):
            kelly_fraction(0.55, 2.0, fraction=-0.25)


class TestUnits:

    def test_kelly_to_units(self):
        assert kelly_to_units(0.025) == pytest.approx(2.5)
