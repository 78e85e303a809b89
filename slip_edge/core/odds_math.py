"""Fundamental odds mathematics: the single source of truth.

Every function here is **pure**: no I/O, no logging, no side effects.
Import from this module; never reimplement locally in services.

The three pillars exposed are:

1. **Odds conversion**: American / decimal / fractional ↔ implied probability.
2. **Vig removal**: proportional normalisation for 2-way and N-way markets.
3. **Validation**: the price and probability contracts every downstream
   calculation relies on.

Design decisions
----------------
* Every price is normalised to **decimal** before any arithmetic.  CLV,
  EV and Kelly are all computed in decimal space so that legs quoted in
  different formats compare correctly.
* Vig removal is **proportional** (``p_i / Σ p``).  This is a deliberate
  simplifying assumption: it is exact when the bookmaker spreads margin
  evenly across outcomes and generalises to N-way markets with no iteration.
  It leaves the favourite-longshot bias in place; a Shin-style solver is not
  used anywhere in the pipeline.
* Decimal prices below :data:`MIN_DECIMAL_PRICE` (1.01) are rejected: they
  imply a bet that cannot return a profit.

Run tests with::

    pytest tests/test_odds_math.py -v
"""

from __future__ import annotations

from fractions import Fraction
from typing import Final, Sequence

from slip_edge.core.errors import InvalidOddsError

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

#: American-odds magnitude floor.  |odds| < 100 is not a representable
#: American price and indicates a parsing error upstream.
_MIN_AMERICAN_MAGNITUDE: Final[int] = 100

#: Smallest decimal price accepted by EV / Kelly math.
MIN_DECIMAL_PRICE: Final[float] = 1.01

#: Values in this closed range are read as decimal odds by ``fmt="auto"``.
_AUTO_DECIMAL_RANGE: Final[tuple[float, float]] = (1.0, 10.0)

#: Supported price formats.
PRICE_FORMATS: Final[frozenset[str]] = frozenset(
    {"american", "decimal", "fractional", "auto"}
)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_probability(prob: float, name: str = "probability") -> float:
    """Return ``prob`` unchanged if it lies in ``(0, 1)`` exclusive.

    Raises:
        InvalidOddsError: If ``prob`` is ≤ 0, ≥ 1, or NaN.
    """
    if not (0.0 < prob < 1.0):
        raise InvalidOddsError(
            f"{name} must be in (0, 1) exclusive, got {prob!r}."
        )
    return prob


def validate_decimal_price(decimal_odds: float, name: str = "decimal_odds") -> float:
    """Return ``decimal_odds`` unchanged if it is ≥ :data:`MIN_DECIMAL_PRICE`.

    Raises:
        InvalidOddsError: If the price is below 1.01 (implies certain loss).
    """
    if not decimal_odds >= MIN_DECIMAL_PRICE:
        raise InvalidOddsError(
            f"{name}={decimal_odds!r} is below the {MIN_DECIMAL_PRICE} floor; "
            "a price this short cannot return a profit."
        )
    return decimal_odds


# ---------------------------------------------------------------------------
# Odds conversion
# ---------------------------------------------------------------------------


def american_to_decimal(american: int | float) -> float:
    """Convert American odds to decimal (European) format.

    Decimal odds represent the total payout per unit staked, **including**
    the return of the stake itself.  Examples::

        american_to_decimal(-110) → 1.9091   (risk 110 to win 100)
        american_to_decimal(+150) → 2.5000   (risk 100 to win 150)

    Raises:
        InvalidOddsError: If ``|american| < 100``.
    """
    if abs(american) < _MIN_AMERICAN_MAGNITUDE:
        raise InvalidOddsError(
            f"Invalid American odds {american!r}: magnitude must be ≥ 100. "
            "Check upstream odds parsing for data errors."
        )
    if american > 0:
        return american / 100.0 + 1.0
    return 100.0 / abs(american) + 1.0


def fractional_to_decimal(fractional: str | Fraction) -> float:
    """Convert fractional odds (``"5/2"``) to decimal (``3.5``).

    Raises:
        InvalidOddsError: If the string is not ``n/d`` with a non-zero
            denominator.
    """
    try:
        frac = Fraction(str(fractional).strip())
    except (ValueError, ZeroDivisionError) as exc:
        raise InvalidOddsError(f"Cannot parse fractional odds {fractional!r}.") from exc
    return 1.0 + float(frac)


def decimal_to_american(decimal_odds: float) -> int:
    """Convert decimal odds to the nearest American integer.

    Inverse of :func:`american_to_decimal`.  Values ≥ 2.0 are returned as
    positive (underdog); values < 2.0 as negative (favourite).

    Raises:
        InvalidOddsError: If ``decimal_odds ≤ 1.0``.
    """
    if decimal_odds <= 1.0:
        raise InvalidOddsError(
            f"Decimal odds {decimal_odds!r} must be > 1.0 to convert to American."
        )
    if decimal_odds >= 2.0:
        return round((decimal_odds - 1.0) * 100)
    return round(-100.0 / (decimal_odds - 1.0))


def to_decimal(price: int | float | str, fmt: str = "american") -> float:
    """Normalise a price in any supported format to decimal odds.

    Args:
        price: The native price.  American and decimal prices may be numbers
            or numeric strings (``"+150"``); fractional prices are ``"n/d"``.
        fmt: One of ``"american"``, ``"decimal"``, ``"fractional"`` or
            ``"auto"``.  ``"auto"`` reads strings containing ``/`` as
            fractional, numbers in ``[1, 10]`` as decimal and everything else
            as American.

    Returns:
        Decimal odds > 1.0.

    Raises:
        InvalidOddsError: On an unknown format, an unparseable price, or a
            decimal result ≤ 1.0.
    """
    if fmt not in PRICE_FORMATS:
        raise InvalidOddsError(f"Unknown price format {fmt!r}.")

    if fmt == "auto":
        if isinstance(price, str) and "/" in price:
            fmt = "fractional"
        else:
            numeric = _parse_number(price)
            lo, hi = _AUTO_DECIMAL_RANGE
            fmt = "decimal" if lo <= numeric <= hi else "american"

    if fmt == "fractional":
        decimal_odds = fractional_to_decimal(str(price))
    elif fmt == "decimal":
        decimal_odds = _parse_number(price)
    else:
        decimal_odds = american_to_decimal(_parse_number(price))

    if decimal_odds <= 1.0:
        raise InvalidOddsError(
            f"Price {price!r} ({fmt}) converts to decimal {decimal_odds!r} ≤ 1.0."
        )
    return decimal_odds


def _parse_number(price: int | float | str) -> float:
    if isinstance(price, str):
        try:
            return float(price.strip().replace("+", ""))
        except ValueError as exc:
            raise InvalidOddsError(f"Cannot parse price {price!r}.") from exc
    if price != price:  # NaN
        raise InvalidOddsError("Price is NaN.")
    return float(price)


def implied_probability(decimal_odds: float) -> float:
    """Raw implied probability from decimal odds (vig-inclusive): ``1/d``."""
    if decimal_odds <= 0.0:
        raise InvalidOddsError(f"decimal_odds must be positive, got {decimal_odds!r}.")
    return 1.0 / decimal_odds


def probability_to_decimal(prob: float) -> float:
    """Fair decimal price for a probability in ``(0, 1)``."""
    return 1.0 / validate_probability(prob)


# ---------------------------------------------------------------------------
# Vig removal (proportional)
# ---------------------------------------------------------------------------


def overround(probabilities: Sequence[float]) -> float:
    """Sum of raw implied probabilities (``> 1`` when a margin is present)."""
    return float(sum(probabilities))


def vig_percentage(probabilities: Sequence[float]) -> float:
    """Bookmaker margin as a percentage of stake (``(K − 1) × 100``)."""
    return (overround(probabilities) - 1.0) * 100.0


def remove_vig(probabilities: Sequence[float]) -> list[float]:
    """Extract no-vig probabilities by proportional normalisation.

    ``p_i' = p_i / Σ p_j`` for every outcome.  Works identically for
    two-way and N-way markets, always sums to 1.0 and preserves the relative
    ordering of the inputs.

    Raises:
        InvalidOddsError: If the list is empty or any entry is ≤ 0.
    """
    if not probabilities:
        raise InvalidOddsError("Cannot remove vig from an empty market.")
    if any(p <= 0.0 for p in probabilities):
        raise InvalidOddsError(
            f"Implied probabilities must all be positive, got {list(probabilities)!r}."
        )
    total = overround(probabilities)
    return [p / total for p in probabilities]


def no_vig_from_decimal(decimal_odds: Sequence[float]) -> list[float]:
    """Convenience wrapper: decimal prices for every outcome → no-vig probs."""
    return remove_vig([implied_probability(d) for d in decimal_odds])


def check_arbitrage(decimal_a: float, decimal_b: float) -> float | None:
    """Return the guaranteed profit fraction of a two-way arb, else ``None``.

    An arbitrage exists when the best prices on both sides of a market sum
    to an overround below 1.0::

        check_arbitrage(2.10, 2.05) → 0.0360   (3.6% locked in)
        check_arbitrage(1.91, 1.91) → None
    """
    total = implied_probability(decimal_a) + implied_probability(decimal_b)
    if total < 1.0:
        return 1.0 - total
    return None
