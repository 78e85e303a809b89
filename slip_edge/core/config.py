"""Engine configuration: every tunable constant in one place.

This module is the **registry** for the blending policy, quality-gate
thresholds, movement normalisation bounds and smart-score weights.  Nowhere
else in the codebase should these numbers be hard-coded.

Architecture
------------
:class:`EngineConfig` is a frozen dataclass composed of smaller frozen
bundles (:class:`BlendWeights`, :class:`QualityGate`, :class:`MovementBounds`,
:class:`SmartScoreWeights`).  It is built **once** at process start,
either :meth:`EngineConfig.default` or :meth:`EngineConfig.from_env`, and
injected into every service constructor.  Services never read the
environment themselves.

Typical usage::

    from slip_edge.core.config import EngineConfig

    cfg = EngineConfig.from_env()
    analyzer = SlipAnalyzer(provider, config=cfg)

    # Override a single bundle for an A/B test:
    from dataclasses import replace
    custom = replace(cfg, sharp_book="circasports")
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Final

from dotenv import load_dotenv

#: Market-type identifiers used across quotes, results and movement bounds.
MARKET_MONEYLINE: Final[str] = "moneyline"
MARKET_SPREAD: Final[str] = "spread"
MARKET_TOTAL: Final[str] = "total"

#: Aliases seen in feeds for the same three markets.
MARKET_ALIASES: Final[dict[str, str]] = {
    "h2h": MARKET_MONEYLINE,
    "ml": MARKET_MONEYLINE,
    "moneyline": MARKET_MONEYLINE,
    "spreads": MARKET_SPREAD,
    "spread": MARKET_SPREAD,
    "totals": MARKET_TOTAL,
    "total": MARKET_TOTAL,
}


def canonical_market(market_type: str) -> str:
    """Map a feed's market key (``"h2h"``, ``"spreads"``) to its canonical name."""
    key = (market_type or "").strip().lower()
    return MARKET_ALIASES.get(key, key)


# ---------------------------------------------------------------------------
# Component bundles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BlendWeights:
    """Relative weights of the three probability estimators.

    Attributes:
        sharp: Weight of the sharp-book no-vig probability (the anchor).
        consensus: Weight of the multi-book no-vig consensus.
        prior: Weight of the historical hit-rate prior.
        consensus_full_books: Number of books at which the consensus carries
            its full weight; fewer books scale it down linearly.
        confidence_sharp / confidence_consensus / confidence_prior: Points
            each estimator contributes to the 0–100 confidence score.
        fallback_confidence: Score assigned when neither sharp nor
            consensus exists and the entry price is used as a last resort.
    """

    sharp: float = 0.60
    consensus: float = 0.25
    prior: float = 0.15
    consensus_full_books: int = 4
    confidence_sharp: float = 50.0
    confidence_consensus: float = 30.0
    confidence_prior: float = 20.0
    fallback_confidence: float = 10.0


@dataclass(frozen=True)
class QualityGate:
    """Per-leg quality filter.

    A leg passes only if ``EV% ≥ min_ev_percent`` (singles or parlay legs),
    ``prob_min ≤ p_true ≤ prob_max`` and ``confidence ≥ min_confidence_score``.
    """

    min_ev_percent_single: float = 1.5
    min_ev_percent_parlay_leg: float = 3.5
    prob_min: float = 0.25
    prob_max: float = 0.65
    min_confidence_score: float = 30.0
    low_confidence_warning: float = 50.0

    # Parlay-level gates (EV values are fractions, not percent).
    weak_leg_ev: float = 0.015
    min_avg_leg_ev: float = -0.05
    min_parlay_ev: float = -0.10
    min_correlation_factor: float = 0.50


@dataclass(frozen=True)
class MarketBounds:
    """Empirical normalisation bounds for one market family."""

    drift: float
    velocity: float
    favorite_pressure: float


@dataclass(frozen=True)
class MovementBounds:
    """Normalisation bounds for moneyline vs. spread/total markets."""

    moneyline: MarketBounds = field(
        default_factory=lambda: MarketBounds(drift=0.10, velocity=0.05, favorite_pressure=0.08)
    )
    other: MarketBounds = field(
        default_factory=lambda: MarketBounds(drift=0.12, velocity=0.06, favorite_pressure=0.10)
    )
    velocity_window_minutes: int = 120
    t60_offset_minutes: int = 60

    def for_market(self, market_type: str) -> MarketBounds:
        """Return the bounds for ``market_type`` (moneyline vs. everything else)."""
        if canonical_market(market_type) == MARKET_MONEYLINE:
            return self.moneyline
        return self.other


@dataclass(frozen=True)
class SmartScoreWeights:
    """Weights of the 0–100 composite smart score.

    The score is a weighted sum of components normalised to ``[0, 1]``::

        ev/ev_cap, kelly/kelly_cap, clv/clv_cap, confidence, line_move
        − variance_penalty · (1 − p_adj) − correlation_penalty · (1 − factor)

    ``confidence`` is the mean leg confidence score divided by 100.
    ``line_move`` is signed in ``[-1, 1]``: movement against the selections
    lowers the score.  The total is scaled by 100 and clamped to ``[0, 100]``.
    """

    ev: float = 0.35
    kelly: float = 0.25
    clv: float = 0.15
    confidence: float = 0.10
    line_move: float = 0.10
    variance_penalty: float = 0.10
    correlation_penalty: float = 0.05
    ev_cap: float = 0.10
    kelly_cap: float = 0.05
    clv_cap: float = 0.05


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineConfig:
    """Immutable configuration bundle for the whole engine.

    Attributes:
        sharp_book: Sportsbook key treated as the efficient reference line.
            Anchors the blend and is the only book used for movement signals.
        consensus_books: Books averaged into the no-vig consensus.
        min_consensus_books: Fewer quoting books → no consensus estimate.
        blend / quality / movement / smart_score: Component bundles.
        kelly_fraction: Fraction of full Kelly recommended for singles.
        max_leg_kelly / max_parlay_kelly: Hard caps on fractional Kelly.
        correlation_warning_threshold: Correlation factor below which a
            parlay receives a correlation warning.
        prior_cache_ttl_seconds: Lifetime of a cached historical prior.
        prior_lookback_days: Default lookback window for hit-rate queries.
        enrichment_workers: Thread-pool size for per-leg enrichment.
        model_version: Tag written with every tracked suggestion.
    """

    sharp_book: str = "pinnacle"
    consensus_books: frozenset[str] = frozenset(
        {"draftkings", "fanduel", "betmgm", "caesars"}
    )
    min_consensus_books: int = 2

    blend: BlendWeights = field(default_factory=BlendWeights)
    quality: QualityGate = field(default_factory=QualityGate)
    movement: MovementBounds = field(default_factory=MovementBounds)
    smart_score: SmartScoreWeights = field(default_factory=SmartScoreWeights)

    kelly_fraction: float = 0.25
    max_leg_kelly: float = 0.05
    max_parlay_kelly: float = 0.03
    correlation_warning_threshold: float = 0.85

    prior_cache_ttl_seconds: float = 3600.0
    prior_lookback_days: int = 90

    enrichment_workers: int = 8
    model_version: str = "v2.1"

    # ------------------------------------------------------------------ #
    #  Named constructors                                                  #
    # ------------------------------------------------------------------ #

    @classmethod
    def default(cls) -> EngineConfig:
        """Return the production defaults with no environment overrides."""
        return cls()

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Build a config from environment variables (and ``.env``).

        Read once at process start.  Unset variables keep the defaults.

        Recognised variables::

            SHARP_BOOK_KEY, CONSENSUS_BOOKS (comma-separated),
            MIN_LEG_EV_SINGLE, MIN_LEG_EV_PARLAY, PROB_MIN, PROB_MAX,
            MIN_CONFIDENCE_SCORE,
            BLEND_SHARP_WEIGHT, BLEND_CONSENSUS_WEIGHT, BLEND_PRIOR_WEIGHT,
            ML_DRIFT_BOUND, ML_VELOCITY_BOUND, ML_FP_BOUND,
            SPREAD_DRIFT_BOUND, SPREAD_VELOCITY_BOUND, SPREAD_FP_BOUND,
            SMARTSCORE_EV_WEIGHT, SMARTSCORE_KELLY_WEIGHT,
            SMARTSCORE_CLV_WEIGHT, SMARTSCORE_CONFIDENCE_WEIGHT,
            SMARTSCORE_MOVEMENT_WEIGHT,
            SMARTSCORE_VARIANCE_PENALTY, SMARTSCORE_CORRELATION_PENALTY,
            KELLY_FRACTION, PRIOR_CACHE_TTL_SECONDS, PRIOR_LOOKBACK_DAYS,
            ENRICHMENT_WORKERS, MODEL_VERSION
        """
        load_dotenv()
        base = cls()

        books_env = os.getenv("CONSENSUS_BOOKS")
        consensus_books = (
            frozenset(b.strip().lower() for b in books_env.split(",") if b.strip())
            if books_env
            else base.consensus_books
        )

        blend = replace(
            base.blend,
            sharp=_env_float("BLEND_SHARP_WEIGHT", base.blend.sharp),
            consensus=_env_float("BLEND_CONSENSUS_WEIGHT", base.blend.consensus),
            prior=_env_float("BLEND_PRIOR_WEIGHT", base.blend.prior),
        )
        quality = replace(
            base.quality,
            min_ev_percent_single=_env_float("MIN_LEG_EV_SINGLE", base.quality.min_ev_percent_single),
            min_ev_percent_parlay_leg=_env_float("MIN_LEG_EV_PARLAY", base.quality.min_ev_percent_parlay_leg),
            prob_min=_env_float("PROB_MIN", base.quality.prob_min),
            prob_max=_env_float("PROB_MAX", base.quality.prob_max),
            min_confidence_score=_env_float("MIN_CONFIDENCE_SCORE", base.quality.min_confidence_score),
        )
        movement = replace(
            base.movement,
            moneyline=MarketBounds(
                drift=_env_float("ML_DRIFT_BOUND", base.movement.moneyline.drift),
                velocity=_env_float("ML_VELOCITY_BOUND", base.movement.moneyline.velocity),
                favorite_pressure=_env_float("ML_FP_BOUND", base.movement.moneyline.favorite_pressure),
            ),
            other=MarketBounds(
                drift=_env_float("SPREAD_DRIFT_BOUND", base.movement.other.drift),
                velocity=_env_float("SPREAD_VELOCITY_BOUND", base.movement.other.velocity),
                favorite_pressure=_env_float("SPREAD_FP_BOUND", base.movement.other.favorite_pressure),
            ),
        )
        smart = replace(
            base.smart_score,
            ev=_env_float("SMARTSCORE_EV_WEIGHT", base.smart_score.ev),
            kelly=_env_float("SMARTSCORE_KELLY_WEIGHT", base.smart_score.kelly),
            clv=_env_float("SMARTSCORE_CLV_WEIGHT", base.smart_score.clv),
            confidence=_env_float("SMARTSCORE_CONFIDENCE_WEIGHT", base.smart_score.confidence),
            line_move=_env_float("SMARTSCORE_MOVEMENT_WEIGHT", base.smart_score.line_move),
            variance_penalty=_env_float("SMARTSCORE_VARIANCE_PENALTY", base.smart_score.variance_penalty),
            correlation_penalty=_env_float("SMARTSCORE_CORRELATION_PENALTY", base.smart_score.correlation_penalty),
        )

        return replace(
            base,
            sharp_book=os.getenv("SHARP_BOOK_KEY", base.sharp_book).lower(),
            consensus_books=consensus_books,
            blend=blend,
            quality=quality,
            movement=movement,
            smart_score=smart,
            kelly_fraction=_env_float("KELLY_FRACTION", base.kelly_fraction),
            prior_cache_ttl_seconds=_env_float("PRIOR_CACHE_TTL_SECONDS", base.prior_cache_ttl_seconds),
            prior_lookback_days=int(os.getenv("PRIOR_LOOKBACK_DAYS", str(base.prior_lookback_days))),
            enrichment_workers=int(os.getenv("ENRICHMENT_WORKERS", str(base.enrichment_workers))),
            model_version=os.getenv("MODEL_VERSION", base.model_version),
        )

    def min_ev_percent(self, is_parlay_leg: bool) -> float:
        """Minimum leg EV% for singles vs. parlay legs."""
        if is_parlay_leg:
            return self.quality.min_ev_percent_parlay_leg
        return self.quality.min_ev_percent_single

    def __repr__(self) -> str:
        return (
            f"EngineConfig(sharp_book={self.sharp_book!r}, "
            f"blend=({self.blend.sharp}, {self.blend.consensus}, {self.blend.prior}), "
            f"kelly_fraction={self.kelly_fraction}, "
            f"model_version={self.model_version!r})"
        )


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return float(raw)
