"""
Historical prior service.

Turns the graded result log into empirical hit rates that the probability
blender uses as its third (weakest) estimator, and resolves closing prices
for CLV grading.

    get_hit_rate()      - wins / (wins + losses) over a lookback window,
                          with a confidence tier derived from sample size.
    get_closing_price() - persisted closing snapshot, falling back to the
                          last quote observed before the event started.

Hit rates are cached per exact query tuple for a fixed TTL.  A cache hit
returns the stored snapshot even when newer results have since been graded;
staleness up to the TTL is accepted.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Final, List, Optional

from slip_edge.core.cache import BaseCache, TTLCache
from slip_edge.core.config import MARKET_MONEYLINE, MARKET_TOTAL, EngineConfig, canonical_market
from slip_edge.core.errors import DataUnavailable, LookupFailure
from slip_edge.core.provider import DECISIVE_RESULTS, BaseDataProvider, ResultRow

logger = logging.getLogger(__name__)

# Sample-size thresholds for the confidence tier (checked high → low).
TIER_THRESHOLDS: Final = (
    (100, "high"),
    (30, "medium"),
    (10, "low"),
)
TIER_VERY_LOW = "very_low"

# Fraction of the configured prior weight each tier is allowed to carry
# in the blend.  A very_low sample contributes nothing.
TIER_WEIGHTS: Final[Dict[str, float]] = {
    "high": 1.0,
    "medium": 0.66,
    "low": 0.33,
    TIER_VERY_LOW: 0.0,
}


def confidence_tier(sample_size: int) -> str:
    """Map a decisive-result count to ``high`` / ``medium`` / ``low`` / ``very_low``."""
    for threshold, tier in TIER_THRESHOLDS:
        if sample_size >= threshold:
            return tier
    return TIER_VERY_LOW


def prior_weight(tier: Optional[str]) -> float:
    """Blend-weight multiplier for a confidence tier (0.0 for unknown tiers)."""
    if tier is None:
        return 0.0
    return TIER_WEIGHTS.get(tier, 0.0)


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HistoricalStat:
    """Empirical hit rate for one (sport, market, selection, window) query."""

    sport: Optional[str]
    market_type: Optional[str]
    selection_key: Optional[str]
    lookback_days: int
    hit_rate: float
    wins: int
    losses: int
    sample_size: int
    confidence_tier: str
    computed_at: datetime
    market_stats: Dict[str, Dict[str, Optional[float]]] = field(default_factory=dict)

    @property
    def blend_weight(self) -> float:
        return prior_weight(self.confidence_tier)


@dataclass(frozen=True)
class ClosingPrice:
    """Resolved closing price for a single outcome."""

    price: float | str
    decimal: float
    sportsbook: str
    observed_at: datetime
    source: str  # "closing_snapshot" | "last_quote"


# ---------------------------------------------------------------------------
# Helpers (pure, no provider access)
# ---------------------------------------------------------------------------

def _bucket(wins: int, total: int) -> Dict[str, Optional[float]]:
    return {
        "wins": wins,
        "total": total,
        "hit_rate": (wins / total) if total > 0 else None,
    }


def calculate_market_stats(rows: List[ResultRow], market_type: Optional[str]) -> Dict[str, Dict]:
    """Split decisive results into home/away (moneyline) or over/under (totals)."""
    counts = {name: [0, 0] for name in ("home", "away", "overs", "unders")}
    market = canonical_market(market_type) if market_type else None

    for row in rows:
        won = row.result == "win"
        selection = (row.selection or "").lower()

        if market == MARKET_MONEYLINE:
            if row.home_team and row.home_team.lower() in selection:
                bucket = "home"
            elif row.away_team and row.away_team.lower() in selection:
                bucket = "away"
            else:
                continue
        elif market == MARKET_TOTAL:
            if "over" in selection:
                bucket = "overs"
            elif "under" in selection:
                bucket = "unders"
            else:
                continue
        else:
            continue

        counts[bucket][1] += 1
        if won:
            counts[bucket][0] += 1

    return {name: _bucket(w, t) for name, (w, t) in counts.items()}


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class HistoricalPriorService:
    """
    Cached access to empirical hit rates and closing prices.

    Usage::

        service = HistoricalPriorService(provider, config=cfg)
        stat = service.get_hit_rate("nba", "moneyline", "Boston Celtics")
        if stat is None:
            ...  # no prior available, not an error
    """

    def __init__(
        self,
        provider: BaseDataProvider,
        config: Optional[EngineConfig] = None,
        cache: Optional[BaseCache] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._provider = provider
        self._config = config or EngineConfig.default()
        self._cache = cache if cache is not None else TTLCache(self._config.prior_cache_ttl_seconds)
        self._now = now

    # ------------------------------------------------------------------
    # Hit rates
    # ------------------------------------------------------------------

    def get_hit_rate(
        self,
        sport: Optional[str],
        market_type: Optional[str],
        selection_key: Optional[str],
        lookback_days: Optional[int] = None,
    ) -> Optional[HistoricalStat]:
        """
        Empirical hit rate for a selection over the trailing window.

        Only decisive results count: pushes and voids are excluded from the
        denominator.  Returns ``None`` when no decisive rows match or the
        provider fails; callers treat both as "no prior available".
        """
        days = lookback_days if lookback_days is not None else self._config.prior_lookback_days
        cache_key = ("hit_rate", sport, market_type, selection_key, days)

        hit, cached = self._cache.get(cache_key)
        if hit:
            return cached

        since = self._now() - timedelta(days=days)
        try:
            rows = self._provider.query_results(
                since=since,
                sport=sport,
                market_type=market_type,
                team=selection_key,
            )
        except DataUnavailable as exc:
            logger.warning(
                "Historical lookup failed for %s/%s/%s: %s",
                sport, market_type, selection_key, exc,
            )
            return None

        decisive = [r for r in rows if r.result in DECISIVE_RESULTS]
        if not decisive:
            logger.debug("No decisive results for %s/%s/%s", sport, market_type, selection_key)
            return None

        wins = sum(1 for r in decisive if r.result == "win")
        losses = len(decisive) - wins
        total = wins + losses

        stat = HistoricalStat(
            sport=sport,
            market_type=market_type,
            selection_key=selection_key,
            lookback_days=days,
            hit_rate=wins / total,
            wins=wins,
            losses=losses,
            sample_size=total,
            confidence_tier=confidence_tier(total),
            computed_at=self._now(),
            market_stats=calculate_market_stats(decisive, market_type),
        )
        self._cache.set(cache_key, stat, self._config.prior_cache_ttl_seconds)
        logger.info(
            "Hit rate %s/%s/%s: %.3f over %d decisive results (%s)",
            sport, market_type, selection_key, stat.hit_rate, total, stat.confidence_tier,
        )
        return stat

    def clear_cache(self) -> None:
        """Invalidate every cached prior (forced refresh)."""
        self._cache.clear()
        logger.info("Historical prior cache cleared")

    def purge_expired(self) -> int:
        """Drop expired entries when the cache supports it; returns the count."""
        if isinstance(self._cache, TTLCache):
            return self._cache.purge_expired()
        return 0

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    # ------------------------------------------------------------------
    # Closing prices
    # ------------------------------------------------------------------

    def get_closing_price(
        self,
        game_key: str,
        market: str,
        selection: str,
        sportsbook: Optional[str] = None,
        *,
        strict: bool = False,
    ) -> Optional[ClosingPrice]:
        """
        Closing price for one outcome.

        Looks up the persisted closing snapshot first, then falls back to the
        most recent quote observed before the scheduled start.

        Args:
            strict: When True, a provider :class:`LookupFailure` propagates so
                the caller can distinguish "error" from "not closed yet".
                When False (default) failures are logged and ``None`` is
                returned.
        """
        try:
            return self._resolve_closing_price(game_key, market, selection, sportsbook)
        except LookupFailure as exc:
            if strict:
                raise
            logger.warning("Closing price lookup failed for %s %s %s: %s", game_key, market, selection, exc)
            return None

    def _resolve_closing_price(
        self,
        game_key: str,
        market: str,
        selection: str,
        sportsbook: Optional[str],
    ) -> Optional[ClosingPrice]:
        record = self._provider.query_closing_record(game_key, market, selection, sportsbook)
        if record is not None:
            return ClosingPrice(
                price=record.closing_price,
                decimal=record.closing_decimal,
                sportsbook=record.sportsbook,
                observed_at=record.closing_observed_at,
                source="closing_snapshot",
            )

        commence = self._provider.query_commence_time(game_key)
        quotes = [
            q for q in self._provider.query_quotes(game_key, market, sportsbook=sportsbook)
            if q.selection == selection and (commence is None or q.observed_at < commence)
        ]
        if not quotes:
            return None

        last = max(quotes, key=lambda q: q.observed_at)
        return ClosingPrice(
            price=last.price,
            decimal=last.decimal_odds,
            sportsbook=last.sportsbook,
            observed_at=last.observed_at,
            source="last_quote",
        )
