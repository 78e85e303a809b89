"""
Line movement signal engine.

Quantifies how the sharp book's price for an outcome moved between open and
close, and turns that into a hold / strong_hold / hedge / replace call.

All signals are computed on implied probability (p = 1/decimal) from the
sharp book only:

    drift_open        p_close - p_open
    drift_60          p_close - p_t60   (t60 falls back to open)
    velocity_120      least-squares slope of p over the trailing window
                      before close, in probability points per hour
    favorite_pressure (fav_close - fav_open) - (dog_close - dog_open),
                      two-way moneyline only
    spread_tightening |open point| - |close point|, spread only

Raw signals are normalised to [0, 1] against per-market bounds.  The
normalised signals are unsigned; ``favorability`` puts the direction back
so the smart score can tell movement toward a selection from movement
against it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from slip_edge.core.config import MARKET_MONEYLINE, MARKET_SPREAD, EngineConfig, MarketBounds, canonical_market
from slip_edge.core.odds_math import implied_probability
from slip_edge.core.provider import BaseDataProvider, OddsQuote

logger = logging.getLogger(__name__)

HOLD = "hold"
STRONG_HOLD = "strong_hold"
HEDGE = "hedge"
REPLACE = "replace"

# Recommendation thresholds (EV as a fraction).
REPLACE_FP_SIGNAL = 0.7
REPLACE_MAX_EV = 0.01
HEDGE_DRIFT_60 = -0.02
STRONG_HOLD_LM_SIGNAL = 0.6
STRONG_HOLD_MIN_EV = 0.02


@dataclass(frozen=True)
class MovementSignal:
    """Raw and normalised movement signals for one outcome.  Not persisted."""

    game_key: str
    market: str
    sharp_book: str
    outcome: str
    drift_open: float
    drift_60: float
    velocity_120: float
    favorite_pressure: float
    lm_signal: float
    vel_signal: float
    fp_signal: float
    spread_tightening: float = 0.0

    @property
    def line_move_signal(self) -> float:
        return line_move_signal(self.lm_signal, self.vel_signal)

    @property
    def favorability(self) -> float:
        return movement_favorability(self)


class MovementAnchors(NamedTuple):
    open: float
    t60: float
    close: float


# ---------------------------------------------------------------------------
# Pure signal math
# ---------------------------------------------------------------------------

def movement_anchors(
    quotes: Sequence[OddsQuote],
    commence_time: Optional[datetime] = None,
    closing_decimal: Optional[float] = None,
    t60_offset_minutes: int = 60,
) -> Optional[MovementAnchors]:
    """
    Open, t-60 and close decimal prices from one outcome's quote history.

    ``quotes`` must be a single book/outcome series.  Returns None when the
    series is empty.
    """
    if not quotes:
        return None
    ordered = sorted(quotes, key=lambda q: q.observed_at)

    opening = ordered[0].decimal_odds

    t60 = opening
    if commence_time is not None:
        cutoff = commence_time - timedelta(minutes=t60_offset_minutes)
        before = [q for q in ordered if q.observed_at <= cutoff]
        if before:
            t60 = before[-1].decimal_odds

    if closing_decimal is not None:
        close = closing_decimal
    else:
        pre_start = [q for q in ordered if commence_time is None or q.observed_at < commence_time]
        close = (pre_start or ordered)[-1].decimal_odds

    return MovementAnchors(opening, t60, close)


def velocity(
    quotes: Sequence[OddsQuote],
    close_time: datetime,
    window_minutes: int = 120,
) -> float:
    """Slope of implied probability (points per hour) over the window before ``close_time``."""
    start = close_time - timedelta(minutes=window_minutes)
    window = [q for q in quotes if start <= q.observed_at <= close_time]
    if len(window) < 2:
        return 0.0

    hours = np.array([(q.observed_at - start).total_seconds() / 3600.0 for q in window])
    probs = np.array([implied_probability(q.decimal_odds) for q in window])
    if np.ptp(hours) == 0:
        return 0.0

    slope, _ = np.polyfit(hours, probs, 1)
    return float(slope)


def favorite_pressure(sides: Dict[str, Tuple[float, float]]) -> float:
    """
    Favorite drift minus underdog drift.

    ``sides`` maps outcome -> (p_open, p_close).  The favorite is the side
    with the higher closing probability.  Returns 0 unless exactly two sides
    exist; a three-way market has no single underdog.
    """
    if len(sides) != 2:
        return 0.0
    fav_name = max(sides, key=lambda name: sides[name][1])
    dog_name = next(name for name in sides if name != fav_name)
    fav_open, fav_close = sides[fav_name]
    dog_open, dog_close = sides[dog_name]
    return (fav_close - fav_open) - (dog_close - dog_open)


def normalize_signals(
    drift_open: float,
    velocity_120: float,
    fav_pressure: float,
    bounds: MarketBounds,
) -> Tuple[float, float, float]:
    """(LM, Vel, FP) signals, each ``min(|raw| / bound, 1)``."""
    lm = min(abs(drift_open) / bounds.drift, 1.0)
    vel = min(abs(velocity_120) / bounds.velocity, 1.0)
    fp = min(abs(fav_pressure) / bounds.favorite_pressure, 1.0)
    return lm, vel, fp


def line_move_signal(lm_signal: float, vel_signal: float) -> float:
    return 0.5 * lm_signal + 0.5 * vel_signal


def movement_favorability(signal: Optional[MovementSignal]) -> float:
    """
    Signed line-move signal in [-1, 1].

    Positive when the sharp price shortened toward the selection, negative
    when it drifted away.  None counts as neutral.
    """
    if signal is None:
        return 0.0
    lm = float(np.sign(signal.drift_open)) * signal.lm_signal
    vel = float(np.sign(signal.velocity_120)) * signal.vel_signal
    return line_move_signal(lm, vel)


def movement_recommendation(signal: Optional[MovementSignal], ev: float) -> str:
    """First matching rule wins; no signal means hold."""
    if signal is None:
        return HOLD
    if signal.fp_signal > REPLACE_FP_SIGNAL and signal.drift_open < 0 and ev < REPLACE_MAX_EV:
        return REPLACE
    if signal.drift_60 < HEDGE_DRIFT_60 and ev < 0:
        return HEDGE
    if signal.lm_signal > STRONG_HOLD_LM_SIGNAL and ev > STRONG_HOLD_MIN_EV:
        return STRONG_HOLD
    return HOLD


def spread_tightening(quotes: Sequence[OddsQuote]) -> float:
    """|open point| - |close point|; positive when the spread shrank."""
    pointed = sorted((q for q in quotes if q.point is not None), key=lambda q: q.observed_at)
    if len(pointed) < 2:
        return 0.0
    return abs(pointed[0].point) - abs(pointed[-1].point)


def movement_summary(signal: Optional[MovementSignal]) -> str:
    """One-line description of the movement for display."""
    if signal is None:
        return "No movement data"

    drift = signal.drift_open
    vel = signal.velocity_120
    if abs(drift) < 0.005 and abs(vel) < 0.005:
        return "Stable line"

    if drift > 0.01:
        summary = "Line moved toward selection"
    elif drift < -0.01:
        summary = "Line moved away from selection"
    else:
        summary = "Minimal line movement"

    if abs(vel) > 0.01:
        summary += ", accelerating toward" if vel > 0 else ", accelerating away"
    if signal.fp_signal > 0.6:
        summary += ", high favorite pressure"
    return summary


# ---------------------------------------------------------------------------
# Provider-backed engine
# ---------------------------------------------------------------------------

class LineMovementEngine:
    """
    Computes :class:`MovementSignal` objects from the data provider.

    ``compute_signals`` returns None when the sharp book has no history for
    the outcome.  Provider failures (``LookupFailure``) propagate so the
    caller can record them against the leg.
    """

    def __init__(self, provider: BaseDataProvider, config: Optional[EngineConfig] = None):
        self.provider = provider
        self.config = config or EngineConfig.default()

    def _closing_decimal(self, game_key: str, market: str, outcome: str) -> Optional[float]:
        record = self.provider.query_closing_record(game_key, market, outcome, self.config.sharp_book)
        return record.closing_decimal if record is not None else None

    def _series(self, quotes: List[OddsQuote], outcome: str) -> List[OddsQuote]:
        return [q for q in quotes if q.selection == outcome]

    def compute_signals(self, game_key: str, market: str, outcome: str) -> Optional[MovementSignal]:
        market = canonical_market(market)
        sharp = self.config.sharp_book
        bounds = self.config.movement

        quotes = self.provider.query_quotes(game_key, market, sportsbook=sharp)
        series = self._series(quotes, outcome)
        if not series:
            logger.debug("No %s history for %s %s %s", sharp, game_key, market, outcome)
            return None

        commence = self.provider.query_commence_time(game_key)
        anchors = movement_anchors(
            series,
            commence_time=commence,
            closing_decimal=self._closing_decimal(game_key, market, outcome),
            t60_offset_minutes=bounds.t60_offset_minutes,
        )

        p_open = implied_probability(anchors.open)
        p_60 = implied_probability(anchors.t60)
        p_close = implied_probability(anchors.close)

        close_time = commence if commence is not None else series[-1].observed_at
        vel = velocity(series, close_time, bounds.velocity_window_minutes)

        fp = 0.0
        if market == MARKET_MONEYLINE:
            fp = self._favorite_pressure(game_key, market, quotes, commence)
        tightening = spread_tightening(series) if market == MARKET_SPREAD else 0.0

        lm_sig, vel_sig, fp_sig = normalize_signals(p_close - p_open, vel, fp, bounds.for_market(market))

        signal = MovementSignal(
            game_key=game_key,
            market=market,
            sharp_book=sharp,
            outcome=outcome,
            drift_open=p_close - p_open,
            drift_60=p_close - p_60,
            velocity_120=vel,
            favorite_pressure=fp,
            lm_signal=lm_sig,
            vel_signal=vel_sig,
            fp_signal=fp_sig,
            spread_tightening=tightening,
        )
        logger.debug(
            "Movement %s %s %s: drift_open=%.4f drift_60=%.4f vel=%.4f fp=%.4f",
            game_key, market, outcome, signal.drift_open, signal.drift_60, vel, fp,
        )
        return signal

    def _favorite_pressure(
        self,
        game_key: str,
        market: str,
        quotes: List[OddsQuote],
        commence: Optional[datetime],
    ) -> float:
        sides: Dict[str, Tuple[float, float]] = {}
        for outcome in sorted({q.selection for q in quotes}):
            anchors = movement_anchors(
                self._series(quotes, outcome),
                commence_time=commence,
                closing_decimal=self._closing_decimal(game_key, market, outcome),
                t60_offset_minutes=self.config.movement.t60_offset_minutes,
            )
            if anchors is not None:
                sides[outcome] = (implied_probability(anchors.open), implied_probability(anchors.close))
        return favorite_pressure(sides)
