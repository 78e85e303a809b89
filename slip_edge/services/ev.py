"""
Leg scoring: EV, Kelly sizing and the per-leg quality gate.

A ``Leg`` is built from raw input, blended by ``ProbabilityBlender`` and then
passed through ``score_leg`` which returns a new, fully scored ``Leg``.
Scored legs are never mutated; CLV and movement stages build their own
objects that reference them.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional

from slip_edge.core.config import EngineConfig, canonical_market
from slip_edge.core.kelly import ev_percent, expected_value, kelly_fraction, kelly_full
from slip_edge.core.odds_math import decimal_to_american, to_decimal
from slip_edge.services.blender import BlendConfidence, BlendResult, LegProbabilities

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LegMetrics:
    ev: float
    ev_percent: float
    kelly_full: float
    kelly_fractional: float
    variance: float
    passes_filters: bool


@dataclass
class Leg:
    """
    A single wager candidate.

    ``decimal_odds`` is derived from ``price``/``price_format`` when not
    supplied.  ``probabilities``, ``metrics``, ``confidence`` and ``issues``
    are filled in by :func:`score_leg`.
    """

    game_key: str
    sport: Optional[str]
    market_type: str
    selection: str
    price: float | str
    price_format: str = "american"
    sportsbook: str = ""
    decimal_odds: Optional[float] = None
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    opposite_price: Optional[float | str] = None
    point: Optional[float] = None

    probabilities: Optional[LegProbabilities] = None
    metrics: Optional[LegMetrics] = None
    confidence: Optional[BlendConfidence] = None
    issues: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.market_type = canonical_market(self.market_type) or self.market_type
        if self.decimal_odds is None:
            self.decimal_odds = to_decimal(self.price, self.price_format)

    @property
    def american_odds(self) -> int:
        return decimal_to_american(self.decimal_odds)

    @property
    def opposite_decimal(self) -> Optional[float]:
        if self.opposite_price is None:
            return None
        return to_decimal(self.opposite_price, self.price_format)

    @property
    def is_scored(self) -> bool:
        return self.metrics is not None

    @property
    def teams(self) -> frozenset:
        return frozenset(t.lower() for t in (self.home_team, self.away_team) if t)

    @property
    def is_player_prop(self) -> bool:
        return self.market_type.startswith("player_")

    @property
    def label(self) -> str:
        return f"{self.selection} ({self.market_type}) @ {self.decimal_odds:.2f}"


def passes_quality_gate(
    ev_pct: float,
    true_prob: float,
    confidence_score: float,
    config: EngineConfig,
    is_parlay_leg: bool = False,
) -> bool:
    q = config.quality
    return (
        ev_pct >= config.min_ev_percent(is_parlay_leg)
        and q.prob_min <= true_prob <= q.prob_max
        and confidence_score >= q.min_confidence_score
    )


def identify_leg_issues(
    ev: float,
    true_prob: float,
    confidence: BlendConfidence,
    config: EngineConfig,
    is_parlay_leg: bool = False,
) -> List[str]:
    """Human-readable reasons a leg is weak.  Empty list for a clean leg."""
    q = config.quality
    issues = []

    if ev < 0:
        issues.append("Negative EV")
    elif ev_percent(ev) < config.min_ev_percent(is_parlay_leg):
        issues.append("Below minimum EV threshold")

    if true_prob < q.prob_min:
        issues.append("Probability too low (high variance)")
    elif true_prob > q.prob_max:
        issues.append("Probability too high (low payout)")

    if not confidence.sharp_available:
        issues.append("No sharp line available")

    if confidence.score < q.low_confidence_warning:
        issues.append("Low confidence score")

    return issues


def score_leg(
    leg: Leg,
    blend: BlendResult,
    config: Optional[EngineConfig] = None,
    is_parlay_leg: bool = False,
) -> Leg:
    """
    Attach probabilities, metrics, confidence and issues to a leg.

    Returns a new ``Leg``; the input is left untouched.  Never raises for a
    weak leg: failing the quality gate only sets ``passes_filters=False``
    and populates ``issues``.
    """
    config = config or EngineConfig.default()
    p = blend.probabilities.true
    d = leg.decimal_odds

    ev = expected_value(p, d)
    full = kelly_full(p, d)
    fractional = kelly_fraction(p, d, fraction=config.kelly_fraction, max_fraction=config.max_leg_kelly)
    passes = passes_quality_gate(ev_percent(ev), p, blend.confidence.score, config, is_parlay_leg)

    metrics = LegMetrics(
        ev=ev,
        ev_percent=ev_percent(ev),
        kelly_full=full,
        kelly_fractional=fractional,
        variance=p * (1.0 - p),
        passes_filters=passes,
    )
    issues = list(leg.issues) + identify_leg_issues(ev, p, blend.confidence, config, is_parlay_leg)

    logger.debug(
        "Scored %s: p=%.4f ev=%.2f%% kelly=%.4f passes=%s",
        leg.label, p, metrics.ev_percent, fractional, passes,
    )
    return replace(
        leg,
        probabilities=blend.probabilities,
        metrics=metrics,
        confidence=blend.confidence,
        issues=issues,
    )
