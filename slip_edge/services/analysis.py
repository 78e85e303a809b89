"""
Slip analysis orchestration.

Runs every leg of a slip through the full pipeline and aggregates the result:

    quotes -> sharp / consensus / prior -> blend -> score
           -> CLV (closing lookup) -> movement signals + recommendation

Legs are enriched concurrently on a thread pool.  Each leg writes only its
own ``LegAnalysis``; a lookup failure on one leg is logged and recorded in
that leg's issues and never aborts the slip.  Structurally invalid prices
(``InvalidOddsError``) and empty slips (``EmptySlipError``) are fatal.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Dict, List, Optional, Sequence

from slip_edge.core.config import EngineConfig
from slip_edge.core.errors import DataUnavailable, EmptySlipError
from slip_edge.core.provider import BaseDataProvider, OddsQuote
from slip_edge.services.blender import (
    ProbabilityBlender,
    consensus_probability,
    entry_book_opposite_decimal,
    sharp_probability,
)
from slip_edge.services.clv import CLVAggregate, LegCLV, aggregate_clv, calculate_leg_clv
from slip_edge.services.ev import Leg, score_leg
from slip_edge.services.historical import HistoricalPriorService
from slip_edge.services.line_movement import (
    LineMovementEngine,
    MovementSignal,
    movement_recommendation,
    movement_summary,
)
from slip_edge.services.parlay_engine import (
    ParlayAnalysis,
    Recommendations,
    analyze_parlay,
    arbitrage_opportunities,
    build_optimal_parlays,
    build_recommendations,
    hedge_options,
    line_shopping_opportunities,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LegAnalysis:
    """A scored leg plus its CLV and movement enrichment."""

    leg: Leg
    clv: LegCLV
    movement: Optional[MovementSignal]
    movement_recommendation: str
    quotes: List[OddsQuote] = field(default_factory=list)
    enrichment_issues: List[str] = field(default_factory=list)

    @property
    def issues(self) -> List[str]:
        return list(self.leg.issues) + list(self.enrichment_issues)

    @property
    def movement_summary(self) -> str:
        return movement_summary(self.movement)

    def to_tracking_record(self, model_version: str) -> Dict[str, Any]:
        """Row for the suggestion-tracking store; keys match ``TrackedLeg``."""
        leg = self.leg
        return {
            "game_key": leg.game_key,
            "sport": leg.sport,
            "market_type": leg.market_type,
            "selection": leg.selection,
            "opening_sportsbook": leg.sportsbook,
            "opening_odds": leg.decimal_odds,
            "opening_odds_american": leg.american_odds,
            "suggested_probability": leg.probabilities.true,
            "ev_at_suggestion": leg.metrics.ev,
            "kelly_size_suggested": leg.metrics.kelly_fractional,
            "confidence_score": leg.confidence.score,
            "model_version": model_version,
            "notes": f"Slip analysis - EV: {leg.metrics.ev_percent:.1f}%",
        }


@dataclass
class SlipAnalysis:
    legs: List[LegAnalysis]
    parlay: ParlayAnalysis
    clv: CLVAggregate
    recommendations: Recommendations
    hedge_options: Optional[List[Dict]] = None
    tracked_ids: List[int] = field(default_factory=list)

    @property
    def leg_clvs(self) -> List[LegCLV]:
        return [la.clv for la in self.legs]


class SlipAnalyzer:
    """
    Usage::

        analyzer = SlipAnalyzer(SQLDataProvider(), config=EngineConfig.from_env())
        result = analyzer.analyze_slip([Leg(...), Leg(...)])
        print(result.parlay.verdict)
    """

    def __init__(
        self,
        provider: BaseDataProvider,
        config: Optional[EngineConfig] = None,
        historical: Optional[HistoricalPriorService] = None,
    ):
        self.provider = provider
        self.config = config or EngineConfig.default()
        self.historical = historical or HistoricalPriorService(provider, config=self.config)
        self.blender = ProbabilityBlender(self.config)
        self.movement = LineMovementEngine(provider, self.config)

    # ------------------------------------------------------------------
    # Per-leg pipeline
    # ------------------------------------------------------------------

    def _fetch_quotes(self, leg: Leg, issues: List[str]) -> List[OddsQuote]:
        try:
            return self.provider.query_quotes(leg.game_key, leg.market_type)
        except DataUnavailable as exc:
            logger.warning("Quote lookup failed for %s: %s", leg.label, exc)
            issues.append("Odds lookup failed")
            return []

    def _movement(self, leg: Leg, issues: List[str]) -> Optional[MovementSignal]:
        try:
            return self.movement.compute_signals(leg.game_key, leg.market_type, leg.selection)
        except DataUnavailable as exc:
            logger.warning("Movement lookup failed for %s: %s", leg.label, exc)
            issues.append("Movement data unavailable")
            return None

    def enrich_leg(self, leg: Leg, is_parlay_leg: bool = False) -> LegAnalysis:
        """Blend, score and enrich a single leg."""
        issues: List[str] = []
        quotes = self._fetch_quotes(leg, issues)

        sharp = sharp_probability(quotes, leg.selection, self.config.sharp_book)
        consensus = consensus_probability(
            quotes, leg.selection,
            self.config.consensus_books,
            self.config.min_consensus_books,
        )
        prior = self.historical.get_hit_rate(leg.sport, leg.market_type, leg.selection)

        opposite = leg.opposite_decimal
        if opposite is None:
            opposite = entry_book_opposite_decimal(quotes, leg.selection, leg.sportsbook)

        blend = self.blender.blend(
            leg.decimal_odds,
            opposite_decimal=opposite,
            sharp=sharp,
            consensus=consensus.probability if consensus else None,
            consensus_books=consensus.book_count if consensus else None,
            prior=prior,
        )
        scored = score_leg(leg, blend, self.config, is_parlay_leg)

        clv = calculate_leg_clv(scored, partial(self.historical.get_closing_price, strict=True))
        if clv.closing_status == "error":
            issues.append("Closing line lookup failed")

        signal = self._movement(scored, issues)
        recommendation = movement_recommendation(signal, scored.metrics.ev)

        return LegAnalysis(
            leg=scored,
            clv=clv,
            movement=signal,
            movement_recommendation=recommendation,
            quotes=quotes,
            enrichment_issues=issues,
        )

    # ------------------------------------------------------------------
    # Slip
    # ------------------------------------------------------------------

    def analyze_slip(self, legs: Sequence[Leg], track: bool = False) -> SlipAnalysis:
        """
        Full analysis of a slip.

        Args:
            legs: Unscored legs in display order.
            track: Record each leg for CLV follow-up when parlay EV > 0.

        Raises:
            EmptySlipError: No legs.
            InvalidOddsError: A leg carries a structurally invalid price.
        """
        if not legs:
            raise EmptySlipError("Bet slip legs required")

        is_parlay = len(legs) > 1
        workers = max(1, min(self.config.enrichment_workers, len(legs)))
        logger.info("Analyzing slip with %d legs (%d workers)", len(legs), workers)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self.enrich_leg, leg, is_parlay) for leg in legs]
            enriched = [f.result() for f in futures]

        clv = aggregate_clv(la.clv for la in enriched)
        line_move = sum(
            la.movement.favorability for la in enriched if la.movement is not None
        ) / len(enriched)

        scored_legs = [la.leg for la in enriched]
        quotes_by_leg = [la.quotes for la in enriched]
        parlay = analyze_parlay(
            scored_legs,
            self.config,
            clv_signal=max(0.0, clv.clv_mean) if clv.clv_mean is not None else 0.0,
            line_move=line_move,
        )

        recommendations = build_recommendations(
            parlay,
            self.config,
            line_shopping=line_shopping_opportunities(scored_legs, quotes_by_leg),
            arbitrage=arbitrage_opportunities(scored_legs, quotes_by_leg),
            clv=clv,
            movement=[(la.leg, la.movement, la.movement_recommendation) for la in enriched],
        )

        result = SlipAnalysis(
            legs=enriched,
            parlay=parlay,
            clv=clv,
            recommendations=recommendations,
            hedge_options=hedge_options(parlay),
        )

        if track and parlay.metrics.ev > 0:
            result.tracked_ids = self._track(enriched)

        logger.info(
            "Slip verdict %s (EV %.2f%%, score %.0f)",
            parlay.verdict, parlay.metrics.ev_percent, parlay.metrics.smart_score,
        )
        return result

    def generate_parlays(
        self,
        candidates: Sequence[Leg],
        max_legs: int = 3,
        max_parlays: int = 10,
    ) -> List[Dict]:
        """
        Score a pool of candidate legs and build cross-game parlays from it.

        Raises:
            EmptySlipError: No candidates.
            InvalidOddsError: A candidate carries a structurally invalid price.
        """
        if not candidates:
            raise EmptySlipError("Candidate legs required")

        workers = max(1, min(self.config.enrichment_workers, len(candidates)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            enriched = list(pool.map(partial(self.enrich_leg, is_parlay_leg=True), candidates))

        return build_optimal_parlays(
            [la.leg for la in enriched],
            max_legs=max_legs,
            max_parlays=max_parlays,
            config=self.config,
        )

    def _track(self, enriched: List[LegAnalysis]) -> List[int]:
        record_leg = getattr(self.provider, "record_leg", None)
        if record_leg is None:
            logger.debug("Provider %s cannot record legs; skipping tracking", type(self.provider).__name__)
            return []

        ids = []
        for la in enriched:
            try:
                ids.append(record_leg(la.to_tracking_record(self.config.model_version)))
            except DataUnavailable as exc:
                logger.warning("Tracking failed for %s: %s", la.leg.label, exc)
        return ids

    def clear_cache(self) -> None:
        self.historical.clear_cache()
