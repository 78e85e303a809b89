"""Expected value and Kelly criterion sizing: the single source of truth.

All functions here are **pure**: no I/O, no database, no logging.
Import from this module; never reimplement EV or Kelly locally in services.

Design decisions
----------------
* **EV is per unit staked** in decimal-odds space: ``EV = p · d − 1``.  The
  breakeven crossing is exact: ``EV > 0 ⟺ p > 1/d``.
* **Full Kelly is clamped at zero.**  A negative ``f*`` means the bet has
  negative EV; the recommendation is "do not bet", never a negative stake.
* **Fractional Kelly** is a plain scalar multiple of full Kelly (25% by
  default).  An optional hard cap clips extreme recommendations.  Parlays
  use the same formulas with the combined price and adjusted probability.

Run tests with::

    pytest tests/test_kelly.py -v
"""

from __future__ import annotations

from typing import Final

from slip_edge.core.odds_math import validate_decimal_price, validate_probability

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Default fraction of full Kelly (quarter-Kelly).
DEFAULT_KELLY_FRACTION: Final[float] = 0.25

#: Hard cap on any single-leg fractional Kelly output.
MAX_LEG_KELLY: Final[float] = 0.05

#: Hard cap on a parlay's fractional Kelly output.
MAX_PARLAY_KELLY: Final[float] = 0.03


# ---------------------------------------------------------------------------
# Expected value
# ---------------------------------------------------------------------------


def expected_value(win_prob: float, decimal_odds: float) -> float:
    """Expected profit per unit staked.

    ``EV = p · d − 1``, algebraically identical to
    ``p · (d − 1) − (1 − p)``.  Examples::

        expected_value(0.55, 1.909) →  0.050   (+5.0%)
        expected_value(0.50, 1.909) → −0.045

    Raises:
        InvalidOddsError: If ``win_prob`` ∉ (0, 1) or ``decimal_odds < 1.01``.
    """
    validate_probability(win_prob, "win_prob")
    validate_decimal_price(decimal_odds)
    return win_prob * decimal_odds - 1.0


def ev_percent(ev: float) -> float:
    """EV expressed as a percentage of stake."""
    return ev * 100.0


def breakeven_probability(decimal_odds: float) -> float:
    """Probability at which a price has exactly zero EV (``1/d``)."""
    return 1.0 / validate_decimal_price(decimal_odds)


# ---------------------------------------------------------------------------
# Kelly
# ---------------------------------------------------------------------------


def kelly_full(win_prob: float, decimal_odds: float) -> float:
    """Full Kelly fraction for a simple win/loss bet, clamped at zero.

    The Kelly criterion maximises long-run geometric bankroll growth::

        f*  =  (b · p − q) / b          b = d − 1,  q = 1 − p

    Examples::

        kelly_full(0.55, 1.909) → 0.055
        kelly_full(0.45, 1.909) → 0.0     (negative EV → never bet)

    Raises:
        InvalidOddsError: If ``win_prob`` ∉ (0, 1) or ``decimal_odds < 1.01``.

    References:
        Kelly, J. L. (1956). A New Interpretation of Information Rate.
        *Bell System Technical Journal*, 35(4), 917–926.
    """
    validate_probability(win_prob, "win_prob")
    validate_decimal_price(decimal_odds)

    profit_per_unit = decimal_odds - 1.0
    loss_prob = 1.0 - win_prob
    full = (profit_per_unit * win_prob - loss_prob) / profit_per_unit
    return max(0.0, full)


def kelly_fraction(
    win_prob: float,
    decimal_odds: float,
    *,
    fraction: float = DEFAULT_KELLY_FRACTION,
    max_fraction: float | None = MAX_LEG_KELLY,
) -> float:
    """Fractional Kelly: ``fraction × f*``, optionally capped.

    Args:
        win_prob: Blended true probability, in ``(0, 1)``.
        decimal_odds: Decimal price ≥ 1.01.
        fraction: Multiplier applied to full Kelly (0.25 = quarter-Kelly).
        max_fraction: Hard cap on the output; ``None`` disables it.

    Returns:
        Fractional Kelly in ``[0, max_fraction]``.
    """
    if fraction < 0.0:
        raise ValueError(f"fraction must be ≥ 0, got {fraction!r}.")
    scaled = kelly_full(win_prob, decimal_odds) * fraction
    if max_fraction is not None:
        scaled = min(scaled, max_fraction)
    return scaled


# ---------------------------------------------------------------------------
# Utility: unit conversion
# ---------------------------------------------------------------------------


def kelly_to_units(kelly_fraction_val: float) -> float:
    """Convert a Kelly fraction to units (1 unit = 1% of bankroll).

    Examples::

        kelly_to_units(0.025) → 2.5
    """
    return kelly_fraction_val * 100.0
