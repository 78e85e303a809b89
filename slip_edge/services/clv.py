"""
Closing Line Value (CLV) calculation service.

CLV compares the price a leg was taken at with where the market closed:

    clv_percent = (closing_decimal - entry_decimal) / entry_decimal

computed in decimal-odds space and expressed as a fraction (0.02 = 2%).
Positive CLV means the closing decimal price is above the entry price.

Each leg carries a ``closing_status``:

    available - a closing price was found and CLV computed
    unknown   - the market has not closed (or no record exists)
    error     - the closing lookup failed

Neither ``unknown`` nor ``error`` is fatal; the leg simply has no CLV.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from slip_edge.core.errors import DataUnavailable
from slip_edge.services.ev import Leg
from slip_edge.services.historical import ClosingPrice

logger = logging.getLogger(__name__)

STATUS_AVAILABLE = "available"
STATUS_UNKNOWN = "unknown"
STATUS_ERROR = "error"

# (game_key, market, selection, sportsbook) -> ClosingPrice | None
ClosingLookup = Callable[[str, str, str, Optional[str]], Optional[ClosingPrice]]


def clv_category(clv: Optional[float]) -> str:
    """Bucket a CLV fraction: excellent / good / positive / neutral / negative / poor."""
    if clv is None:
        return "unknown"
    pct = clv * 100.0
    if pct > 5:
        return "excellent"
    elif pct > 2:
        return "good"
    elif pct > 0:
        return "positive"
    elif pct < -5:
        return "poor"
    elif pct < 0:
        return "negative"
    return "neutral"


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LegCLV:
    """CLV outcome for one leg."""

    game_key: str
    market: str
    selection: str
    sportsbook: str
    entry_decimal: float
    closing_status: str
    closing_decimal: Optional[float] = None
    closing_price: Optional[float | str] = None
    closing_observed_at: Optional[datetime] = None
    clv_percent: Optional[float] = None

    @property
    def beat_market(self) -> bool:
        return self.clv_percent is not None and self.clv_percent > 0

    def grade(self) -> str:
        """Human-readable CLV grade for display."""
        return clv_category(self.clv_percent)


@dataclass(frozen=True)
class CLVAggregate:
    clv_mean: Optional[float]
    clv_worst: Optional[float]
    beat_market_count: int
    lagged_market_count: int
    legs_with_data: int

    @property
    def has_data(self) -> bool:
        return self.legs_with_data > 0


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------

def clv_fraction(entry_decimal: float, closing_decimal: float) -> float:
    return (closing_decimal - entry_decimal) / entry_decimal


def calculate_leg_clv(leg: Leg, closing_lookup: ClosingLookup) -> LegCLV:
    """
    Look up the closing price for a leg and compute its CLV.

    ``closing_lookup`` is usually ``HistoricalPriorService.get_closing_price``
    called with ``strict=True`` so provider failures surface as ``error``.
    """
    base = dict(
        game_key=leg.game_key,
        market=leg.market_type,
        selection=leg.selection,
        sportsbook=leg.sportsbook,
        entry_decimal=leg.decimal_odds,
    )

    try:
        closing = closing_lookup(leg.game_key, leg.market_type, leg.selection, leg.sportsbook or None)
    except DataUnavailable as exc:
        logger.warning("CLV lookup failed for %s %s: %s", leg.game_key, leg.selection, exc)
        return LegCLV(closing_status=STATUS_ERROR, **base)

    if closing is None:
        return LegCLV(closing_status=STATUS_UNKNOWN, **base)

    return LegCLV(
        closing_status=STATUS_AVAILABLE,
        closing_decimal=closing.decimal,
        closing_price=closing.price,
        closing_observed_at=closing.observed_at,
        clv_percent=clv_fraction(leg.decimal_odds, closing.decimal),
        **base,
    )


def aggregate_clv(leg_clvs: Iterable[LegCLV]) -> CLVAggregate:
    """Summarise per-leg CLV.  Legs without a CLV value are ignored."""
    values: List[float] = [c.clv_percent for c in leg_clvs if c.clv_percent is not None]

    if not values:
        return CLVAggregate(
            clv_mean=None,
            clv_worst=None,
            beat_market_count=0,
            lagged_market_count=0,
            legs_with_data=0,
        )

    return CLVAggregate(
        clv_mean=sum(values) / len(values),
        clv_worst=min(values),
        beat_market_count=sum(1 for v in values if v > 0),
        lagged_market_count=sum(1 for v in values if v < 0),
        legs_with_data=len(values),
    )
