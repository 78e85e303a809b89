"""
Parlay engine for Slip Edge.

Aggregates scored legs into a correlation-adjusted parlay, scores it, and
builds the recommendation layer (weak legs, line shopping, cross-book
arbitrage, correlation and CLV/movement notes, hedge options).  Also builds
optimal cross-game parlays from a pool of +EV legs.

Parlays compound edge but also variance; Kelly sizing here is capped harder
than for singles.
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from slip_edge.core.config import EngineConfig, SmartScoreWeights
from slip_edge.core.errors import EmptySlipError, InvalidOddsError
from slip_edge.core.kelly import ev_percent, expected_value, kelly_fraction, kelly_full, kelly_to_units
from slip_edge.core.odds_math import check_arbitrage, decimal_to_american, validate_decimal_price
from slip_edge.core.provider import OddsQuote
from slip_edge.services.clv import CLVAggregate
from slip_edge.services.ev import Leg
from slip_edge.services.line_movement import REPLACE, MovementSignal, movement_summary

logger = logging.getLogger(__name__)

CORRELATION_MATRIX: Dict[str, float] = {
    "same_game_same_market": 0.20,
    "same_game_diff_market": 0.10,
    "same_player_props": 0.15,
    "same_team_diff_game": 0.05,
    "different_games": 0.00,
}

# factor = max(CORRELATION_FLOOR, 1 - total / CORRELATION_SCALE)
CORRELATION_FLOOR = 0.5
CORRELATION_SCALE = 2.0

# Minimum leg EV (fraction) for inclusion in a generated parlay.
MIN_EDGE_THRESHOLD = 0.01

# Generated tickets recommending fewer units than this are dropped.
MIN_PARLAY_UNITS = 0.05

# Conservative stake multiplier relative to fractional Kelly.
CONSERVATIVE_STAKE_RATIO = 0.4


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ParlayOdds:
    decimal: float
    american: int


@dataclass(frozen=True)
class ParlayProbability:
    naive: float
    adjusted: float
    correlation_factor: float


@dataclass(frozen=True)
class ParlayMetrics:
    ev: float
    ev_percent: float
    kelly_full: float
    kelly_fractional: float
    avg_leg_ev: float
    smart_score: float


@dataclass(frozen=True)
class QualityGates:
    all_legs_pass: bool
    correlation_acceptable: bool
    avg_edge_acceptable: bool
    parlay_ev_acceptable: bool

    @property
    def all_pass(self) -> bool:
        return (
            self.all_legs_pass
            and self.correlation_acceptable
            and self.avg_edge_acceptable
            and self.parlay_ev_acceptable
        )


@dataclass(frozen=True)
class CorrelatedPair:
    legs: Tuple[int, int]
    correlation: float


@dataclass(frozen=True)
class ParlayAnalysis:
    legs: List[Leg]
    odds: ParlayOdds
    probability: ParlayProbability
    metrics: ParlayMetrics
    quality_gates: QualityGates
    confidence: str
    verdict: str
    correlated_pairs: List[CorrelatedPair] = field(default_factory=list)


@dataclass(frozen=True)
class LineShoppingOpportunity:
    position: int
    selection: str
    current_book: str
    current_odds: float
    best_book: str
    best_odds: float
    ev_gain: float

    @property
    def ev_gain_percent(self) -> float:
        return self.ev_gain * 100.0


@dataclass(frozen=True)
class ArbitrageOpportunity:
    position: int
    selection: str
    selection_book: str
    selection_odds: float
    opposite: str
    opposite_book: str
    opposite_odds: float
    profit: float

    @property
    def profit_percent(self) -> float:
        return self.profit * 100.0


@dataclass
class Recommendations:
    primary_action: str
    weak_legs: List[Dict] = field(default_factory=list)
    line_shopping: List[LineShoppingOpportunity] = field(default_factory=list)
    arbitrage: List[ArbitrageOpportunity] = field(default_factory=list)
    improvements: List[Dict] = field(default_factory=list)
    suggested_stake: Dict[str, float] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Correlation
# ---------------------------------------------------------------------------

def _player_name(leg: Leg) -> str:
    parts = (leg.selection or "").split()
    return parts[0].lower() if parts else ""


def pairwise_correlation(a: Leg, b: Leg) -> float:
    """Correlation estimate for one pair of legs."""
    if a.game_key == b.game_key:
        if a.market_type == b.market_type:
            return CORRELATION_MATRIX["same_game_same_market"]
        return CORRELATION_MATRIX["same_game_diff_market"]

    if a.teams & b.teams:
        return CORRELATION_MATRIX["same_team_diff_game"]

    if a.is_player_prop and b.is_player_prop and _player_name(a) and _player_name(a) == _player_name(b):
        return CORRELATION_MATRIX["same_player_props"]

    return CORRELATION_MATRIX["different_games"]


def correlation_factor(legs: Sequence[Leg]) -> Tuple[float, List[CorrelatedPair]]:
    """
    Multiplicative haircut on the naive joint probability.

    Returns ``(factor, pairs)`` where ``factor`` is in [0.5, 1] and ``pairs``
    lists the positively correlated leg pairs.
    """
    total = 0.0
    pairs = []
    for i, j in itertools.combinations(range(len(legs)), 2):
        corr = pairwise_correlation(legs[i], legs[j])
        total += corr
        if corr > 0:
            pairs.append(CorrelatedPair((i, j), corr))
    factor = max(CORRELATION_FLOOR, 1.0 - total / CORRELATION_SCALE)
    return factor, pairs


def combined_decimal_odds(decimal_odds: Iterable[float]) -> float:
    total = 1.0
    for d in decimal_odds:
        total *= validate_decimal_price(d)
    return total


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def smart_score(
    ev: float,
    kelly: float,
    clv_signal: float = 0.0,
    line_move: float = 0.0,
    variance: float = 0.0,
    corr_factor: float = 1.0,
    confidence: float = 0.0,
    weights: Optional[SmartScoreWeights] = None,
) -> float:
    """
    Composite 0-100 ranking score.

    ``ev``, ``kelly`` and ``clv_signal`` are fractions; ``confidence`` is in
    [0, 1] and ``line_move`` is the signed movement favourability in
    [-1, 1].  Deterministic for identical inputs.
    """
    w = weights or SmartScoreWeights()
    ev_norm = min(max(ev / w.ev_cap, 0.0), 1.0)
    kelly_norm = min(max(kelly / w.kelly_cap, 0.0), 1.0)
    clv_norm = min(max(clv_signal / w.clv_cap, 0.0), 1.0)
    confidence_norm = min(max(confidence, 0.0), 1.0)
    move_norm = min(max(line_move, -1.0), 1.0)
    variance_penalty = max(0.0, variance)
    correlation_penalty = max(0.0, 1.0 - corr_factor)

    score = (
        w.ev * ev_norm
        + w.kelly * kelly_norm
        + w.clv * clv_norm
        + w.confidence * confidence_norm
        + w.line_move * move_norm
        - w.variance_penalty * variance_penalty
        - w.correlation_penalty * correlation_penalty
    )
    return max(0.0, min(100.0, score * 100.0))


def verdict(ev: float) -> str:
    if ev < -0.05:
        return "STRONG AVOID"
    if ev < 0:
        return "NEGATIVE EV"
    if ev < 0.01:
        return "MARGINAL"
    if ev < 0.02:
        return "PLAYABLE"
    if ev < 0.05:
        return "GOOD VALUE"
    return "EXCELLENT VALUE"


def confidence_label(ev: float, corr_factor: float) -> str:
    if ev > 0.05 and corr_factor > 0.85:
        return "high"
    if ev > 0.02 and corr_factor > 0.75:
        return "medium"
    return "low"


def primary_action(ev: float) -> str:
    if ev < 0:
        return "AVOID - Negative expected value"
    if ev < 0.02:
        return "MARGINAL - Consider improvements"
    if ev < 0.05:
        return "PLAYABLE - Positive expected value"
    return "STRONG PLAY - High expected value"


def analyze_parlay(
    legs: Sequence[Leg],
    config: Optional[EngineConfig] = None,
    clv_signal: float = 0.0,
    line_move: float = 0.0,
) -> ParlayAnalysis:
    """
    Aggregate scored legs into a parlay.

    ``line_move`` is the mean signed movement favourability of the legs.

    Raises:
        EmptySlipError: No legs.
        InvalidOddsError: A leg has no valid price or was never scored.
    """
    config = config or EngineConfig.default()
    if not legs:
        raise EmptySlipError("A parlay needs at least one leg")
    for leg in legs:
        if not leg.is_scored:
            raise InvalidOddsError(f"Leg {leg.selection!r} has not been scored")

    decimal = combined_decimal_odds(leg.decimal_odds for leg in legs)

    naive = 1.0
    for leg in legs:
        naive *= leg.probabilities.true
    factor, pairs = correlation_factor(legs)
    adjusted = naive * factor

    ev = expected_value(adjusted, decimal)
    full = kelly_full(adjusted, decimal)
    fractional = kelly_fraction(
        adjusted, decimal,
        fraction=config.kelly_fraction,
        max_fraction=config.max_parlay_kelly,
    )
    avg_leg_ev = sum(leg.metrics.ev for leg in legs) / len(legs)
    avg_confidence = sum(leg.confidence.score for leg in legs) / len(legs) / 100.0

    score = smart_score(
        ev, fractional,
        clv_signal=clv_signal,
        line_move=line_move,
        variance=1.0 - adjusted,
        corr_factor=factor,
        confidence=avg_confidence,
        weights=config.smart_score,
    )

    q = config.quality
    gates = QualityGates(
        all_legs_pass=all(leg.metrics.passes_filters for leg in legs),
        correlation_acceptable=factor >= q.min_correlation_factor,
        avg_edge_acceptable=avg_leg_ev >= q.min_avg_leg_ev,
        parlay_ev_acceptable=ev >= q.min_parlay_ev,
    )

    logger.info(
        "Parlay %d legs @ %.3f: p_adj=%.4f (factor %.2f) ev=%.2f%% score=%.0f",
        len(legs), decimal, adjusted, factor, ev_percent(ev), score,
    )

    return ParlayAnalysis(
        legs=list(legs),
        odds=ParlayOdds(decimal=decimal, american=decimal_to_american(decimal)),
        probability=ParlayProbability(naive=naive, adjusted=adjusted, correlation_factor=factor),
        metrics=ParlayMetrics(
            ev=ev,
            ev_percent=ev_percent(ev),
            kelly_full=full,
            kelly_fractional=fractional,
            avg_leg_ev=avg_leg_ev,
            smart_score=score,
        ),
        quality_gates=gates,
        confidence=confidence_label(ev, factor),
        verdict=verdict(ev),
        correlated_pairs=pairs,
    )


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------

def weak_legs(legs: Sequence[Leg], config: Optional[EngineConfig] = None) -> List[Dict]:
    """Legs below the weak-leg EV line or outside the probability band."""
    config = config or EngineConfig.default()
    q = config.quality
    weak = []
    for position, leg in enumerate(legs, start=1):
        p = leg.probabilities.true
        ev = leg.metrics.ev
        if ev < q.weak_leg_ev:
            issue = "Below EV threshold"
        elif p < q.prob_min:
            issue = "Probability too low"
        elif p > q.prob_max:
            issue = "Probability too high"
        else:
            continue
        weak.append({
            "position": position,
            "selection": leg.selection,
            "issue": issue,
            "current_ev_percent": round(leg.metrics.ev_percent, 2),
            "suggestion": "Consider removing or replacing",
        })
    return weak


def _latest_by_selection(quotes: Iterable[OddsQuote]) -> Dict[str, Dict[str, OddsQuote]]:
    """selection -> book -> most recent quote."""
    latest: Dict[str, Dict[str, OddsQuote]] = {}
    for q in quotes:
        books = latest.setdefault(q.selection, {})
        current = books.get(q.sportsbook)
        if current is None or q.observed_at >= current.observed_at:
            books[q.sportsbook] = q
    return latest


def line_shopping_opportunities(
    legs: Sequence[Leg],
    quotes_by_leg: Sequence[Sequence[OddsQuote]],
) -> List[LineShoppingOpportunity]:
    """
    Best available price per leg across all quoted books.

    ``quotes_by_leg[i]`` holds quotes for ``legs[i]``'s game/market; only
    each book's most recent price counts.  Only strictly better prices
    produce an opportunity.
    """
    opportunities = []
    for position, (leg, quotes) in enumerate(zip(legs, quotes_by_leg), start=1):
        latest = _latest_by_selection(quotes).get(leg.selection, {})

        best_odds = leg.decimal_odds
        best_book = leg.sportsbook
        for q in latest.values():
            if q.decimal_odds > best_odds:
                best_odds = q.decimal_odds
                best_book = q.sportsbook

        if best_odds > leg.decimal_odds:
            gain = expected_value(leg.probabilities.true, best_odds) - leg.metrics.ev
            opportunities.append(LineShoppingOpportunity(
                position=position,
                selection=leg.selection,
                current_book=leg.sportsbook,
                current_odds=leg.decimal_odds,
                best_book=best_book,
                best_odds=best_odds,
                ev_gain=gain,
            ))
    return opportunities


def arbitrage_opportunities(
    legs: Sequence[Leg],
    quotes_by_leg: Sequence[Sequence[OddsQuote]],
) -> List[ArbitrageOpportunity]:
    """
    Two-way markets where the best prices across books lock in a profit.

    The leg's own entry price competes with the quoted prices for its side.
    Markets quoting anything other than exactly two sides are skipped.
    """
    found = []
    for position, (leg, quotes) in enumerate(zip(legs, quotes_by_leg), start=1):
        latest = _latest_by_selection(quotes)
        opposites = [name for name in latest if name != leg.selection]
        if len(opposites) != 1 or len(latest) > 2:
            continue

        best_book, best_odds = leg.sportsbook, leg.decimal_odds
        for q in latest.get(leg.selection, {}).values():
            if q.decimal_odds > best_odds:
                best_book, best_odds = q.sportsbook, q.decimal_odds
        other = max(latest[opposites[0]].values(), key=lambda q: q.decimal_odds)

        profit = check_arbitrage(best_odds, other.decimal_odds)
        if profit is None:
            continue
        logger.info(
            "Arbitrage on %s: %s @ %.3f (%s) vs %s @ %.3f (%s), %.2f%%",
            leg.game_key, leg.selection, best_odds, best_book,
            other.selection, other.decimal_odds, other.sportsbook, profit * 100,
        )
        found.append(ArbitrageOpportunity(
            position=position,
            selection=leg.selection,
            selection_book=best_book,
            selection_odds=best_odds,
            opposite=other.selection,
            opposite_book=other.sportsbook,
            opposite_odds=other.decimal_odds,
            profit=profit,
        ))
    return found


MovementInput = Sequence[Tuple[Leg, Optional[MovementSignal], str]]


def build_recommendations(
    parlay: ParlayAnalysis,
    config: Optional[EngineConfig] = None,
    line_shopping: Optional[List[LineShoppingOpportunity]] = None,
    clv: Optional[CLVAggregate] = None,
    movement: Optional[MovementInput] = None,
    arbitrage: Optional[List[ArbitrageOpportunity]] = None,
) -> Recommendations:
    """Pure function of the parlay and its enrichment results."""
    config = config or EngineConfig.default()
    ev = parlay.metrics.ev
    factor = parlay.probability.correlation_factor

    recs = Recommendations(
        primary_action=primary_action(ev),
        weak_legs=weak_legs(parlay.legs, config),
        line_shopping=list(line_shopping or []),
        arbitrage=list(arbitrage or []),
        suggested_stake={
            "kelly_fractional_percent": round(kelly_to_units(parlay.metrics.kelly_fractional), 2),
            "conservative_percent": round(parlay.metrics.kelly_fractional * CONSERVATIVE_STAKE_RATIO * 100, 2),
        },
    )

    if factor < config.correlation_warning_threshold:
        recs.improvements.append({
            "type": "correlation",
            "message": "High correlation detected between legs",
            "impact_percent": round((1.0 - factor) * 100),
            "suggestion": "Consider legs from different games",
        })

    for arb in recs.arbitrage:
        recs.improvements.append({
            "type": "arbitrage",
            "message": f"Leg {arb.position} market can be arbitraged across books",
            "selection": f"{arb.selection} @ {arb.selection_odds:.3f} ({arb.selection_book})",
            "opposite": f"{arb.opposite} @ {arb.opposite_odds:.3f} ({arb.opposite_book})",
            "profit_percent": round(arb.profit_percent, 2),
        })

    if 0 < ev < 0.02:
        recs.improvements.append({
            "type": "ev_boost",
            "message": "Parlay EV below optimal threshold",
            "current_ev_percent": round(parlay.metrics.ev_percent, 2),
            "target_ev_percent": 2.0,
            "suggestion": "Replace lowest EV legs or shop for better lines",
        })

    if clv is not None and clv.has_data:
        if clv.lagged_market_count > clv.beat_market_count:
            recs.improvements.append({
                "type": "clv_warning",
                "message": "Most legs show negative CLV",
                "beat_market": clv.beat_market_count,
                "lagged_market": clv.lagged_market_count,
                "avg_clv_percent": round(clv.clv_mean * 100, 2),
            })
        elif clv.beat_market_count > 0:
            recs.improvements.append({
                "type": "clv_positive",
                "message": "Good CLV performance detected",
                "beat_market": clv.beat_market_count,
                "avg_clv_percent": round(clv.clv_mean * 100, 2),
            })

    if movement:
        against = [
            leg.selection for leg, signal, _ in movement
            if signal is not None and signal.drift_open < -0.02 and leg.metrics.ev < 0.01
        ]
        if against:
            recs.improvements.append({
                "type": "movement_warning",
                "message": f"{len(against)} legs show strong movement against position",
                "affected_legs": against,
                "suggestion": "Consider hedging or replacing these legs",
            })

        to_replace = [
            {"selection": leg.selection, "reason": movement_summary(signal)}
            for leg, signal, rec in movement if rec == REPLACE
        ]
        if to_replace:
            recs.improvements.append({
                "type": "replacement_suggested",
                "message": "Movement analysis suggests replacing some legs",
                "legs_to_replace": to_replace,
            })

    return recs


# ---------------------------------------------------------------------------
# Hedging
# ---------------------------------------------------------------------------

def calculate_hedge(
    stake: float,
    original_odds: float,
    opposite_odds: float,
    target: Union[str, float] = "breakeven",
) -> float:
    """
    Hedge stake on the opposite side.

    ``target`` is ``"breakeven"``, ``"equal"`` or a fraction of the original
    profit to lock in (0.5 = half).
    """
    validate_decimal_price(original_odds, "original_odds")
    validate_decimal_price(opposite_odds, "opposite_odds")
    payout = stake * original_odds

    if target == "breakeven":
        return stake * (original_odds - 1.0) / opposite_odds
    if target == "equal":
        return payout / opposite_odds
    if isinstance(target, (int, float)):
        locked = stake * (original_odds - 1.0) * target
        return (payout - locked - stake) / opposite_odds
    raise ValueError(f"Unknown hedge target {target!r}")


def hedge_options(
    parlay: ParlayAnalysis,
    stake: float = 100.0,
    opposite_odds: float = 2.0,
) -> Optional[List[Dict]]:
    """Breakeven and lock-half-profit hedges.  Only produced for 2-leg slips."""
    if len(parlay.legs) != 2:
        return None

    decimal = parlay.odds.decimal
    return [
        {
            "scenario": "Guarantee Breakeven",
            "original_stake": stake,
            "hedge_stake": round(calculate_hedge(stake, decimal, opposite_odds, "breakeven"), 2),
            "guaranteed_return": 0.0,
        },
        {
            "scenario": "Lock 50% Profit",
            "original_stake": stake,
            "hedge_stake": round(calculate_hedge(stake, decimal, opposite_odds, 0.5), 2),
            "guaranteed_profit": round((decimal - 1.0) * stake * 0.5, 2),
        },
    ]


# ---------------------------------------------------------------------------
# Optimal parlay builder
# ---------------------------------------------------------------------------

def build_optimal_parlays(
    legs: Sequence[Leg],
    max_legs: int = 3,
    max_parlays: int = 10,
    config: Optional[EngineConfig] = None,
) -> List[Dict]:
    """
    Build cross-game parlays from a pool of scored legs.

    Only legs with EV above ``MIN_EDGE_THRESHOLD`` qualify.  Combinations
    repeating a game are skipped, tickets are ranked by EV and once a game
    appears in an accepted ticket no later ticket may reuse it.  Tickets
    recommending fewer than ``MIN_PARLAY_UNITS`` are dropped.
    """
    config = config or EngineConfig.default()
    logger.info("Building parlays from %d legs (max_legs=%d)", len(legs), max_legs)

    qualified = [leg for leg in legs if leg.is_scored and leg.metrics.ev > MIN_EDGE_THRESHOLD]
    if len(qualified) < 2:
        logger.info("Not enough qualified legs for parlays (need 2+, have %d)", len(qualified))
        return []

    tickets = []
    for num_legs in range(2, max_legs + 1):
        for combo in itertools.combinations(qualified, num_legs):
            game_keys = [leg.game_key for leg in combo]
            if len(game_keys) != len(set(game_keys)):
                continue

            analysis = analyze_parlay(combo, config)
            kelly_frac = analysis.metrics.kelly_fractional
            units = round(kelly_to_units(kelly_frac), 2)
            if units < MIN_PARLAY_UNITS:
                continue

            tickets.append({
                "legs": list(combo),
                "num_legs": num_legs,
                "analysis": analysis,
                "parlay_odds": analysis.odds.decimal,
                "parlay_american_odds": analysis.odds.american,
                "joint_prob": analysis.probability.adjusted,
                "expected_value": analysis.metrics.ev,
                "kelly_fractional": round(kelly_frac, 6),
                "recommended_units": units,
                "leg_summary": " + ".join(leg.selection for leg in combo),
            })

    tickets.sort(key=lambda t: t["expected_value"], reverse=True)

    selected: List[Dict] = []
    used_games: set = set()
    for ticket in tickets:
        games = {leg.game_key for leg in ticket["legs"]}
        if games & used_games:
            continue
        selected.append(ticket)
        used_games.update(games)
        if len(selected) >= max_parlays:
            break

    logger.info(
        "Generated %d parlays, returning top %d non-overlapping (best EV: %.4f)",
        len(tickets), len(selected),
        selected[0]["expected_value"] if selected else 0.0,
    )
    return selected


def format_parlay_ticket(ticket: Dict) -> str:
    """Human-readable ticket from ``build_optimal_parlays`` output."""
    lines = [
        f"{ticket['num_legs']}-Leg Parlay @ {ticket['parlay_american_odds']:+d}",
        f"   Legs: {ticket['leg_summary']}",
        f"   Joint Prob: {ticket['joint_prob']:.2%}",
        f"   Expected Value: {ticket['expected_value']:.2%}",
        f"   Kelly Rec: {ticket['recommended_units']:.2f} units",
    ]
    return "\n".join(lines)
